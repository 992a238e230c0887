"""Keeps a MessageStore in step with the gateway and the realtime feed.

Lifecycle per activation::

    IDLE -> LOADING -> SUBSCRIBING -> LIVE -> IDLE (deactivate)
                  \\            \\
                   +-> ERRORED   +-> ERRORED

Every activation and deactivation bumps a generation counter. Work that
resumes after an await (a bulk fetch, a subscription acknowledgement, an
insert event being resolved) compares the generation it started with and
is dropped if it no longer matches, so nothing reaches the store after
``deactivate`` returns.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError as RowValidationError

from .errors import (
    ActivationCancelled,
    AuthorizationError,
    FeedError,
    GatewayError,
    StorageError,
    ValidationError,
)
from .feed import EventFeed, SubscriptionHandle
from .gateway import MessageGateway
from .logger import get_logger
from .models import Attachment, AuthorSnapshot, Message, Result, Role, Scope, ScopeKind
from .storage import BlobStorage
from .store import MessageStore

logger = get_logger(__name__)

DEFAULT_FETCH_LIMIT = 50
FALLBACK_AUTHOR = AuthorSnapshot(email="unknown@user.invalid", role=Role.TRAINEE)

Listener = Callable[[Sequence[Message]], None]


class SyncState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUBSCRIBING = "subscribing"
    LIVE = "live"
    ERRORED = "errored"


class Synchronizer:
    def __init__(
        self,
        gateway: MessageGateway,
        storage: BlobStorage,
        feed: EventFeed,
        current_user_id: str,
        fetch_limit: int = DEFAULT_FETCH_LIMIT,
        fallback_author: AuthorSnapshot = FALLBACK_AUTHOR,
        auto_mark_read: bool = True,
        store: Optional[MessageStore] = None,
    ) -> None:
        self.gateway = gateway
        self.storage = storage
        self.feed = feed
        self.current_user_id = current_user_id
        self.fetch_limit = fetch_limit
        self.fallback_author = fallback_author
        self.auto_mark_read = auto_mark_read
        self.store = store if store is not None else MessageStore()

        self.state = SyncState.IDLE
        self.scope: Optional[Scope] = None
        self.last_error: Optional[FeedError] = None
        self._generation = 0
        self._handle: Optional[SubscriptionHandle] = None
        self._listeners: List[Listener] = []

    @property
    def generation(self) -> int:
        return self._generation

    def snapshot(self):
        return self.store.snapshot()

    def add_listener(self, listener: Listener) -> None:
        """Call ``listener`` with the new snapshot after every store change"""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        snapshot = self.store.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception(f"Listener {listener!r} failed")

    def _fail(self, generation: int, error: FeedError) -> Result:
        if generation == self._generation:
            self.state = SyncState.ERRORED
            self.last_error = error
        return Result.failure(error)

    # ============= LIFECYCLE =============

    async def activate(self, scope: Scope) -> Result:
        """Load ``scope`` and start following its insert events."""
        if self.scope is not None or self.state is not SyncState.IDLE:
            await self.deactivate()

        self._generation += 1
        generation = self._generation
        self.scope = scope
        self.last_error = None
        self.state = SyncState.LOADING
        logger.info(f"Activating {scope} (generation {generation})")

        try:
            fetched = await self.gateway.fetch_messages(scope, self.fetch_limit)
        except GatewayError as e:
            logger.error(f"Initial fetch for {scope} failed: {e.reason}")
            return self._fail(generation, e)

        if generation != self._generation:
            logger.debug(f"Discarding stale fetch for {scope} (generation {generation})")
            return Result.failure(ActivationCancelled(f"Activation of {scope} was cancelled"))

        # Gateway returns newest first; the store holds oldest first
        records = [m for m in reversed(fetched) if scope.contains(m)]
        self.store.initialize(records)
        self._notify()
        self.state = SyncState.SUBSCRIBING

        try:
            handle = await self.feed.subscribe(
                scope, lambda row: self._handle_insert(generation, row)
            )
        except FeedError as e:
            logger.error(f"Subscription to {scope} failed: {e.reason}")
            return self._fail(generation, e)

        if generation != self._generation:
            await self.feed.unsubscribe(handle)
            logger.debug(f"Released stale subscription for {scope}")
            return Result.failure(ActivationCancelled(f"Activation of {scope} was cancelled"))

        self._handle = handle
        self.state = SyncState.LIVE
        logger.info(f"{scope} is live with {len(self.store)} messages")

        if self.auto_mark_read and scope.kind is ScopeKind.DIRECT:
            await self._mark_read_quietly(scope)
        return Result.success(self.store.snapshot())

    async def deactivate(self) -> None:
        """Stop following the active scope. Safe to call in any state."""
        self._generation += 1
        handle, self._handle = self._handle, None
        scope, self.scope = self.scope, None
        self.state = SyncState.IDLE
        if handle is not None:
            await self.feed.unsubscribe(handle)
            logger.info(f"Deactivated {scope}")

    async def reload(self) -> Result:
        """Re-run the initial load for the active scope."""
        if self.scope is None:
            return Result.failure(ValidationError("No active scope to reload"))
        return await self.activate(self.scope)

    async def _handle_insert(self, generation: int, row: Dict[str, Any]) -> None:
        if generation != self._generation:
            return
        message_id = row.get("id")
        if not message_id:
            logger.warning(f"Ignoring feed row without id: {row}")
            return

        try:
            message = await self.gateway.fetch_one(message_id)
        except GatewayError as e:
            logger.warning(f"Could not resolve message {message_id}, using fallback author: {e.reason}")
            try:
                message = Message.from_row(row, author=self.fallback_author)
            except RowValidationError as ve:
                logger.warning(f"Dropping malformed feed row {message_id}: {ve}")
                return

        if message.author is None:
            message = message.model_copy(update={"author": self.fallback_author})

        if generation != self._generation or self.scope is None:
            return
        if not self.scope.contains(message):
            logger.warning(f"Dropping message {message.id} outside {self.scope}")
            return
        if self.store.merge(message):
            logger.debug(f"Merged message {message.id} into {self.scope}")
            self._notify()

    # ============= WRITES =============

    async def send(self, body: Optional[str], attachment: Optional[Attachment] = None) -> Result:
        """Write a message to the active scope.

        The store is not touched; the message shows up when its insert
        event arrives.
        """
        text = (body or "").strip() or None
        if text is None and attachment is None:
            return Result.failure(ValidationError("Message is empty"))
        scope = self.scope
        if scope is None:
            return Result.failure(ValidationError("No active scope to send to"))

        attachment_url = None
        if attachment is not None:
            try:
                attachment_url = await self.storage.upload(
                    attachment.data, attachment.content_type, owner_id=self.current_user_id
                )
            except StorageError as e:
                logger.error(f"Attachment upload failed: {e.reason}")
                return Result.failure(e)

        try:
            message = await self.gateway.insert_message(
                scope, self.current_user_id, body=text, attachment_url=attachment_url
            )
        except GatewayError as e:
            logger.error(f"Failed to send message to {scope}: {e.reason}")
            if attachment_url is not None:
                await self._delete_blob_quietly(attachment_url)
            if e.forbidden:
                return Result.failure(AuthorizationError(e.reason))
            return Result.failure(e)

        logger.info(f"Sent message {message.id} to {scope}")
        return Result.success(message)

    async def delete(self, message_id: str) -> Result:
        try:
            deleted = await self.gateway.delete_message(message_id, self.current_user_id)
        except GatewayError as e:
            if e.forbidden:
                logger.warning(f"{self.current_user_id} may not delete message {message_id}")
                return Result.failure(AuthorizationError(e.reason))
            logger.error(f"Failed to delete message {message_id}: {e.reason}")
            return Result.failure(e)

        if self.store.remove(message_id):
            self._notify()
        if deleted.attachment_url:
            await self._delete_blob_quietly(deleted.attachment_url)
        return Result.success()

    async def mark_read(self) -> Result:
        if self.scope is None:
            return Result.failure(ValidationError("No active scope to mark read"))
        try:
            count = await self.gateway.mark_read(self.scope, self.current_user_id)
        except GatewayError as e:
            logger.error(f"Failed to mark {self.scope} read: {e.reason}")
            return Result.failure(e)
        return Result.success(count)

    async def _mark_read_quietly(self, scope: Scope) -> None:
        try:
            await self.gateway.mark_read(scope, self.current_user_id)
        except GatewayError as e:
            logger.warning(f"Could not mark {scope} read: {e.reason}")

    async def _delete_blob_quietly(self, url: str) -> None:
        # Cleanup failures are logged only
        try:
            await self.storage.delete(url)
        except StorageError as e:
            logger.error(f"Orphaned attachment {url} could not be deleted: {e.reason}")
