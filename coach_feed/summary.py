"""Conversation list for direct messages."""

from typing import Dict, Iterable, List, Optional, Tuple

from .errors import GatewayError
from .gateway import MessageGateway
from .logger import get_logger
from .models import AuthorSnapshot, ConversationSummary, Message, Result, ScopeKind

logger = get_logger(__name__)


def _recency(message: Message) -> Tuple:
    # Equal timestamps fall back to the greater id
    return (message.created_at, message.id)


def _peer_of(message: Message, user_id: str) -> Optional[str]:
    if message.kind is not ScopeKind.DIRECT:
        return None
    if message.author_id == user_id:
        return message.recipient_id
    if message.recipient_id == user_id:
        return message.author_id
    return None


def _is_unread_for(message: Message, user_id: str) -> bool:
    return message.recipient_id == user_id and message.author_id != user_id and not message.read


def build_conversation_summaries(
    messages: Iterable[Message], current_user_id: str
) -> List[ConversationSummary]:
    """Group direct messages by the other participant.

    Each summary carries the most recent message exchanged with that peer and
    the number of unread messages the peer sent to ``current_user_id``. The
    list is ordered most recent conversation first.
    """
    latest: Dict[str, Message] = {}
    unread: Dict[str, int] = {}
    peers: Dict[str, AuthorSnapshot] = {}

    for message in messages:
        peer_id = _peer_of(message, current_user_id)
        if peer_id is None:
            continue
        current = latest.get(peer_id)
        if current is None or _recency(message) > _recency(current):
            latest[peer_id] = message
        unread.setdefault(peer_id, 0)
        if _is_unread_for(message, current_user_id):
            unread[peer_id] += 1
        if message.author_id == peer_id and message.author is not None:
            peers.setdefault(peer_id, message.author)

    summaries = [
        ConversationSummary(
            peer_id=peer_id,
            peer=peers.get(peer_id),
            most_recent_message=message,
            unread_count=unread[peer_id],
        )
        for peer_id, message in latest.items()
    ]
    summaries.sort(key=lambda s: _recency(s.most_recent_message), reverse=True)
    return summaries


def count_unread(messages: Iterable[Message], user_id: str) -> int:
    return sum(1 for m in messages if m.kind is ScopeKind.DIRECT and _is_unread_for(m, user_id))


async def load_conversations(gateway: MessageGateway, user_id: str) -> Result:
    try:
        messages = await gateway.fetch_involving(user_id)
    except GatewayError as e:
        logger.error(f"Failed to load conversations for {user_id}: {e.reason}")
        return Result.failure(e)
    return Result.success(build_conversation_summaries(messages, user_id))


async def load_unread_count(gateway: MessageGateway, user_id: str) -> Result:
    try:
        messages = await gateway.fetch_involving(user_id)
    except GatewayError as e:
        logger.error(f"Failed to count unread messages for {user_id}: {e.reason}")
        return Result.failure(e)
    return Result.success(count_unread(messages, user_id))
