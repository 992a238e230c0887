"""Message records and the scopes they belong to."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .errors import FeedError


class ScopeKind(str, Enum):
    GLOBAL = "global"
    DIRECT = "direct"
    PLAN = "plan"


class Role(str, Enum):
    TRAINER = "trainer"
    TRAINEE = "trainee"


class Scope(BaseModel):
    """Identifies one message feed.

    Direct scopes are seen from the point of view of ``owner`` and cover
    messages exchanged between ``owner`` and the peer in ``target``.
    """

    model_config = ConfigDict(frozen=True)

    kind: ScopeKind
    target: Optional[str] = None
    owner: Optional[str] = None

    @classmethod
    def global_room(cls) -> "Scope":
        return cls(kind=ScopeKind.GLOBAL)

    @classmethod
    def direct(cls, owner_id: str, peer_id: str) -> "Scope":
        return cls(kind=ScopeKind.DIRECT, target=peer_id, owner=owner_id)

    @classmethod
    def plan(cls, plan_id: str) -> "Scope":
        return cls(kind=ScopeKind.PLAN, target=plan_id)

    @classmethod
    def parse(cls, text: str, user_id: str) -> "Scope":
        """Parse 'global', 'direct:<peer id>' or 'plan:<plan id>'."""
        kind, _, target = text.strip().partition(":")
        if kind == ScopeKind.GLOBAL.value and not target:
            return cls.global_room()
        if kind == ScopeKind.DIRECT.value and target:
            return cls.direct(user_id, target)
        if kind == ScopeKind.PLAN.value and target:
            return cls.plan(target)
        raise ValueError(f"Invalid scope: {text!r}")

    def matches(
        self, author_id: str, recipient_id: Optional[str], plan_id: Optional[str]
    ) -> bool:
        if self.kind is ScopeKind.GLOBAL:
            return recipient_id is None and plan_id is None
        if self.kind is ScopeKind.PLAN:
            return plan_id == self.target
        if plan_id is not None or recipient_id is None:
            return False
        return {author_id, recipient_id} == {self.owner, self.target}

    def contains(self, message: "Message") -> bool:
        return self.matches(message.author_id, message.recipient_id, message.plan_id)

    def contains_row(self, row: Mapping[str, Any]) -> bool:
        return self.matches(row.get("author_id"), row.get("recipient_id"), row.get("plan_id"))

    def __str__(self) -> str:
        if self.kind is ScopeKind.GLOBAL:
            return "global"
        return f"{self.kind.value}:{self.target}"


class AuthorSnapshot(BaseModel):
    """Author display fields as they were when the message was read."""

    model_config = ConfigDict(frozen=True)

    email: str
    display_name: Optional[str] = None
    role: Role = Role.TRAINEE
    avatar_url: Optional[str] = None


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    author_id: str
    recipient_id: Optional[str] = None
    plan_id: Optional[str] = None
    body: Optional[str] = None
    attachment_url: Optional[str] = None
    read: bool = False
    created_at: datetime
    author: Optional[AuthorSnapshot] = None

    @field_validator("created_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def kind(self) -> ScopeKind:
        if self.plan_id is not None:
            return ScopeKind.PLAN
        if self.recipient_id is not None:
            return ScopeKind.DIRECT
        return ScopeKind.GLOBAL

    @classmethod
    def from_row(
        cls, row: Mapping[str, Any], author: Optional[AuthorSnapshot] = None
    ) -> "Message":
        """Build a message from a raw row, validating that required fields exist.

        Raises pydantic.ValidationError when the row is malformed.
        """
        fields = {name: row[name] for name in cls.model_fields if name in row and name != "author"}
        return cls(**fields, author=author)

    def to_row(self) -> Dict[str, Any]:
        """Scalar fields only, JSON-safe, as published on the event feed."""
        return self.model_dump(mode="json", exclude={"author"})


class Attachment(BaseModel):
    data: bytes
    content_type: str


class ConversationSummary(BaseModel):
    peer_id: str
    peer: Optional[AuthorSnapshot] = None
    most_recent_message: Message
    unread_count: int = 0


class Result(BaseModel):
    """Outcome of an operation that reports failures instead of raising them."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    ok: bool
    value: Any = None
    error: Optional[FeedError] = None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: FeedError) -> "Result":
        return cls(ok=False, error=error)
