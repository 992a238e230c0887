"""Common test fixtures and in-memory collaborators for coach_feed tests."""

import itertools
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from coach_feed.config import Settings
from coach_feed.errors import GatewayError, StorageError, SubscriptionError
from coach_feed.feed import SubscriptionHandle
from coach_feed.models import AuthorSnapshot, Message, Role, Scope, ScopeKind

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def at(seconds: int) -> datetime:
    return BASE_TIME + timedelta(seconds=seconds)


def make_message(
    message_id: str,
    author_id: str = "alice",
    seconds: int = 0,
    body: Optional[str] = "hi",
    **fields: Any,
) -> Message:
    return Message(id=message_id, author_id=author_id, body=body, created_at=at(seconds), **fields)


class FakeGateway:
    """MessageGateway kept in memory, with per-operation failure switches."""

    def __init__(self, messages: Optional[List[Message]] = None) -> None:
        self.messages: List[Message] = list(messages or [])
        self.authors: Dict[str, AuthorSnapshot] = {}
        self.calls: Counter = Counter()
        self.fail: Dict[str, GatewayError] = {}
        self._ids = itertools.count(1)
        self._clock = itertools.count(1000)

    def _check(self, operation: str) -> None:
        self.calls[operation] += 1
        if operation in self.fail:
            raise self.fail[operation]

    def _with_author(self, message: Message) -> Message:
        return message.model_copy(update={"author": self.authors.get(message.author_id)})

    async def fetch_messages(self, scope: Scope, limit: int = 50) -> List[Message]:
        self._check("fetch_messages")
        found = [self._with_author(m) for m in self.messages if scope.contains(m)]
        found.sort(key=lambda m: (m.created_at, m.id), reverse=True)
        return found[:limit]

    async def insert_message(self, scope, author_id, body=None, attachment_url=None) -> Message:
        self._check("insert_message")
        message = Message(
            id=f"m{next(self._ids)}",
            author_id=author_id,
            recipient_id=scope.target if scope.kind is ScopeKind.DIRECT else None,
            plan_id=scope.target if scope.kind is ScopeKind.PLAN else None,
            body=body,
            attachment_url=attachment_url,
            created_at=at(next(self._clock)),
        )
        self.messages.append(message)
        return message

    async def delete_message(self, message_id: str, requester_id: str) -> Message:
        self._check("delete_message")
        for message in self.messages:
            if message.id == message_id:
                if message.author_id != requester_id:
                    raise GatewayError("not the author", forbidden=True)
                self.messages.remove(message)
                return message
        raise GatewayError("not found", not_found=True)

    async def mark_read(self, scope: Scope, reader_id: str) -> int:
        self._check("mark_read")
        return 0

    async def fetch_one(self, message_id: str) -> Message:
        self._check("fetch_one")
        for message in self.messages:
            if message.id == message_id:
                return self._with_author(message)
        raise GatewayError("not found", not_found=True)

    async def fetch_involving(self, user_id: str) -> List[Message]:
        self._check("fetch_involving")
        return [m for m in self.messages if user_id in (m.author_id, m.recipient_id)]


class FakeStorage:
    def __init__(self) -> None:
        self.blobs: Dict[str, bytes] = {}
        self.uploads: List[str] = []
        self.deletes: List[str] = []
        self.fail_upload: Optional[StorageError] = None
        self.fail_delete: Optional[StorageError] = None

    async def upload(self, data: bytes, content_type: str, owner_id: Optional[str] = None) -> str:
        if self.fail_upload is not None:
            raise self.fail_upload
        url = f"https://blobs.test/{owner_id}/{len(self.uploads) + 1}"
        self.uploads.append(url)
        self.blobs[url] = data
        return url

    async def delete(self, url: str) -> None:
        self.deletes.append(url)
        if self.fail_delete is not None:
            raise self.fail_delete
        self.blobs.pop(url, None)


class FakeFeed:
    """EventFeed whose events are pushed by the test with ``emit``."""

    def __init__(self) -> None:
        self.subscriptions: Dict[int, tuple] = {}
        self.callbacks: List[Callable] = []
        self.unsubscribed: List[SubscriptionHandle] = []
        self.fail_subscribe: Optional[SubscriptionError] = None
        self._ids = itertools.count(1)

    async def subscribe(self, scope: Scope, on_insert) -> SubscriptionHandle:
        if self.fail_subscribe is not None:
            raise self.fail_subscribe
        handle = SubscriptionHandle(id=next(self._ids), scope=scope)
        self.subscriptions[handle.id] = (scope, on_insert)
        self.callbacks.append(on_insert)
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        self.subscriptions.pop(handle.id, None)
        self.unsubscribed.append(handle)

    async def emit(self, row: Dict[str, Any]) -> None:
        for scope, on_insert in list(self.subscriptions.values()):
            if scope.contains_row(row):
                await on_insert(row)


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test files."""
    return tmp_path


@pytest.fixture
def test_settings(temp_dir: Path, monkeypatch) -> Settings:
    """Create test settings from a mocked environment."""
    for name, value in {
        "MATRIX_HOMESERVER": "https://test.matrix.org",
        "MATRIX_USER": "@feed:matrix.org",
        "MATRIX_PASSWORD": "test_password",
        "MATRIX_FEED_ROOM_ID": "!feed:matrix.org",
        "DATABASE_TYPE": "sqlite",
        "SQLITE_DB": str(temp_dir / "coach_feed.db"),
        "FEED_USER_ID": "alice",
        "FEED_SCOPE": "direct:bob",
    }.items():
        monkeypatch.setenv(name, value)

    settings = Settings()
    settings.logging.file_path = str(temp_dir / "test.log")
    return settings


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def feed() -> FakeFeed:
    return FakeFeed()


@pytest.fixture
def trainer() -> AuthorSnapshot:
    return AuthorSnapshot(email="coach@gym.test", display_name="Coach", role=Role.TRAINER)
