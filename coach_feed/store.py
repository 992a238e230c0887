"""In-memory message list for a single feed."""

from bisect import bisect_right
from typing import Dict, Iterable, List, Optional, Tuple

from .models import Message


class MessageStore:
    """Ordered, de-duplicated collection of messages.

    Iteration order is non-decreasing by ``created_at``. Messages that share
    a timestamp keep the order in which they were added.
    """

    def __init__(self) -> None:
        self._messages: List[Message] = []
        self._by_id: Dict[str, Message] = {}

    def initialize(self, records: Iterable[Message]) -> None:
        """Replace the whole contents, e.g. after a bulk fetch."""
        messages: List[Message] = []
        by_id: Dict[str, Message] = {}
        for record in records:
            if record.id in by_id:
                continue
            by_id[record.id] = record
            messages.append(record)
        messages.sort(key=lambda m: m.created_at)
        self._messages = messages
        self._by_id = by_id

    def merge(self, record: Message) -> bool:
        if record.id in self._by_id:
            return False
        # Feeds deliver in commit order, so this is almost always an append
        index = bisect_right(self._messages, record.created_at, key=lambda m: m.created_at)
        self._messages.insert(index, record)
        self._by_id[record.id] = record
        return True

    def remove(self, message_id: str) -> bool:
        record = self._by_id.pop(message_id, None)
        if record is None:
            return False
        self._messages.remove(record)
        return True

    def get(self, message_id: str) -> Optional[Message]:
        return self._by_id.get(message_id)

    def clear(self) -> None:
        self._messages = []
        self._by_id = {}

    def snapshot(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id
