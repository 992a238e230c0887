"""Realtime insert-event feed carried over a Matrix room.

Every committed message row is published as an ``m.notice`` in the feed
room with the row under ``ROW_KEY``. Subscribers register a scope and get
each row in that scope, in the order the homeserver delivers the events.
Only inserts are published; deletes never reach other clients.
"""

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol, Tuple

from nio import AsyncClient, JoinError, MatrixRoom, RoomMessageNotice, RoomSendError
from pydantic import BaseModel, ConfigDict

from .errors import SubscriptionError
from .logger import get_logger
from .models import Scope

logger = get_logger(__name__)

ROW_KEY = "coach_feed.row"

InsertCallback = Callable[[Dict[str, Any]], Awaitable[None]]


class SubscriptionHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    scope: Scope


class EventFeed(Protocol):
    async def subscribe(self, scope: Scope, on_insert: InsertCallback) -> SubscriptionHandle: ...

    async def unsubscribe(self, handle: SubscriptionHandle) -> None: ...


class MatrixEventFeed:
    def __init__(self, client: AsyncClient, room_id: str) -> None:
        self.client = client
        self.room_id = room_id
        self._subscriptions: Dict[int, Tuple[Scope, InsertCallback]] = {}
        self._next_id = 0
        self._joined = False
        client.add_event_callback(self.event_callback, RoomMessageNotice)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def join(self) -> None:
        if self._joined:
            return
        response = await self.client.join(self.room_id)
        if isinstance(response, JoinError):
            logger.error(f"Failed to join feed room {self.room_id}: {response.message}")
            raise SubscriptionError(f"Failed to join feed room {self.room_id}: {response.message}")
        self._joined = True
        logger.info(f"Joined feed room {self.room_id}")

    async def subscribe(self, scope: Scope, on_insert: InsertCallback) -> SubscriptionHandle:
        await self.join()
        self._next_id += 1
        handle = SubscriptionHandle(id=self._next_id, scope=scope)
        self._subscriptions[handle.id] = (scope, on_insert)
        logger.debug(f"Subscription {handle.id} opened for {scope}")
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        if self._subscriptions.pop(handle.id, None) is not None:
            logger.debug(f"Subscription {handle.id} closed for {handle.scope}")

    async def publish(self, row: Mapping[str, Any]) -> None:
        """Announce a committed row. Failures are logged; the row stays committed."""
        response = await self.client.room_send(
            room_id=self.room_id,
            message_type="m.room.message",
            content={
                "msgtype": "m.notice",
                "body": f"message {row['id']}",
                ROW_KEY: dict(row),
            },
        )
        if isinstance(response, RoomSendError):
            logger.error(f"Failed to publish message {row['id']}: {response.message}")

    async def event_callback(self, room: MatrixRoom, event: RoomMessageNotice) -> None:
        """Callback for feed events"""
        if room.room_id != self.room_id:
            return
        row: Optional[Dict[str, Any]] = event.source.get("content", {}).get(ROW_KEY)
        if not isinstance(row, dict):
            return

        for handle_id, (scope, on_insert) in list(self._subscriptions.items()):
            # An earlier callback may have closed this subscription
            if handle_id not in self._subscriptions:
                continue
            if scope.contains_row(row):
                await on_insert(dict(row))
