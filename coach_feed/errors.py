"""Failure taxonomy shared by the synchronizer and its adapters."""


class FeedError(Exception):
    """Base class for every failure surfaced by coach_feed."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ValidationError(FeedError):
    """A request was rejected before any network call was made."""


class GatewayError(FeedError):
    """The persistence gateway failed to fetch, insert, update or delete."""

    def __init__(self, reason: str, forbidden: bool = False, not_found: bool = False) -> None:
        super().__init__(reason)
        self.forbidden = forbidden
        self.not_found = not_found


class StorageError(FeedError):
    """Uploading or deleting an attachment failed."""


class AuthorizationError(FeedError):
    """The current user is not allowed to perform the operation."""


class SubscriptionError(FeedError):
    """The event feed refused or failed a subscription."""


class ActivationCancelled(FeedError):
    """A pending activation was superseded before it completed."""
