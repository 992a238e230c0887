"""Persistence gateway: message CRUD and queries over SQLAlchemy."""

import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from sqlalchemy import and_, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import GatewayError
from .logger import get_logger
from .models import AuthorSnapshot, Message, Role, Scope, ScopeKind
from .schema import MessageRow, UserRow, utcnow

logger = get_logger(__name__)

InsertHook = Callable[[Dict[str, Any]], Awaitable[None]]


class MessageGateway(Protocol):
    async def fetch_messages(self, scope: Scope, limit: int = 50) -> List[Message]:
        """Newest first, at most ``limit`` messages."""

    async def insert_message(
        self,
        scope: Scope,
        author_id: str,
        body: Optional[str] = None,
        attachment_url: Optional[str] = None,
    ) -> Message: ...

    async def delete_message(self, message_id: str, requester_id: str) -> Message: ...

    async def mark_read(self, scope: Scope, reader_id: str) -> int: ...

    async def fetch_one(self, message_id: str) -> Message: ...

    async def fetch_involving(self, user_id: str) -> List[Message]: ...


def _scope_clause(scope: Scope):
    if scope.kind is ScopeKind.GLOBAL:
        return and_(MessageRow.recipient_id.is_(None), MessageRow.plan_id.is_(None))
    if scope.kind is ScopeKind.PLAN:
        return MessageRow.plan_id == scope.target
    return and_(
        MessageRow.plan_id.is_(None),
        or_(
            and_(MessageRow.author_id == scope.owner, MessageRow.recipient_id == scope.target),
            and_(MessageRow.author_id == scope.target, MessageRow.recipient_id == scope.owner),
        ),
    )


# Role names written by the mobile app
ROLE_ALIASES = {"entrenador": Role.TRAINER, "usuario": Role.TRAINEE}


def _role(value: Optional[str]) -> Role:
    if value in ROLE_ALIASES:
        return ROLE_ALIASES[value]
    try:
        return Role(value)
    except ValueError:
        logger.warning(f"Unknown user role {value!r}, treating as {Role.TRAINEE.value}")
        return Role.TRAINEE


def _snapshot(user: Optional[UserRow]) -> Optional[AuthorSnapshot]:
    if user is None:
        return None
    return AuthorSnapshot(
        email=user.email,
        display_name=user.display_name,
        role=_role(user.role),
        avatar_url=user.avatar_url,
    )


def _to_message(row: MessageRow, user: Optional[UserRow] = None) -> Message:
    return Message(
        id=row.id,
        author_id=row.author_id,
        recipient_id=row.recipient_id,
        plan_id=row.plan_id,
        body=row.body,
        attachment_url=row.attachment_url,
        read=row.read,
        created_at=row.created_at,
        author=_snapshot(user),
    )


class SqlMessageGateway:
    """MessageGateway backed by PostgreSQL or SQLite.

    ``on_insert`` is awaited with the scalar row of every committed insert;
    the application wires it to the event feed.
    """

    def __init__(self, engine: Engine, on_insert: Optional[InsertHook] = None) -> None:
        self.engine = engine
        self.on_insert = on_insert

    def _select_with_author(self):
        return select(MessageRow, UserRow).outerjoin(UserRow, UserRow.id == MessageRow.author_id)

    async def fetch_messages(self, scope: Scope, limit: int = 50) -> List[Message]:
        stmt = (
            self._select_with_author()
            .where(_scope_clause(scope))
            .order_by(MessageRow.created_at.desc(), MessageRow.id.desc())
            .limit(limit)
        )
        try:
            with Session(self.engine) as session:
                rows = session.execute(stmt).all()
                messages = [_to_message(message, user) for message, user in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch messages for {scope}: {e}")
            raise GatewayError(f"Failed to fetch messages: {e}") from e
        logger.debug(f"Fetched {len(messages)} messages for {scope}")
        return messages

    async def insert_message(
        self,
        scope: Scope,
        author_id: str,
        body: Optional[str] = None,
        attachment_url: Optional[str] = None,
    ) -> Message:
        if scope.kind is ScopeKind.DIRECT and author_id != scope.owner:
            raise GatewayError(f"{author_id} cannot write to {scope} of {scope.owner}", forbidden=True)

        row = MessageRow(
            id=uuid.uuid4().hex,
            author_id=author_id,
            recipient_id=scope.target if scope.kind is ScopeKind.DIRECT else None,
            plan_id=scope.target if scope.kind is ScopeKind.PLAN else None,
            body=body,
            attachment_url=attachment_url,
            read=False,
            created_at=utcnow(),
        )
        try:
            with Session(self.engine) as session:
                session.add(row)
                session.commit()
                message = _to_message(row)
        except SQLAlchemyError as e:
            logger.error(f"Failed to insert message into {scope}: {e}")
            raise GatewayError(f"Failed to insert message: {e}") from e

        logger.debug(f"Inserted message {message.id} from {author_id} into {scope}")
        if self.on_insert is not None:
            # The row is committed; a failed announcement does not undo the send
            try:
                await self.on_insert(message.to_row())
            except Exception:
                logger.exception(f"Failed to announce message {message.id}")
        return message

    async def delete_message(self, message_id: str, requester_id: str) -> Message:
        try:
            with Session(self.engine) as session:
                row = session.get(MessageRow, message_id)
                if row is None:
                    raise GatewayError(f"Message {message_id} not found", not_found=True)
                if row.author_id != requester_id:
                    raise GatewayError(
                        f"{requester_id} is not the author of message {message_id}",
                        forbidden=True,
                    )
                message = _to_message(row)
                session.delete(row)
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete message {message_id}: {e}")
            raise GatewayError(f"Failed to delete message: {e}") from e
        logger.debug(f"Deleted message {message_id}")
        return message

    async def mark_read(self, scope: Scope, reader_id: str) -> int:
        """Mark messages addressed to ``reader_id`` in ``scope`` as read."""
        stmt = (
            update(MessageRow)
            .where(_scope_clause(scope))
            .where(MessageRow.recipient_id == reader_id)
            .where(MessageRow.author_id != reader_id)
            .where(MessageRow.read.is_(False))
            .values(read=True)
        )
        try:
            with Session(self.engine) as session:
                result = session.execute(stmt)
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to mark {scope} read for {reader_id}: {e}")
            raise GatewayError(f"Failed to mark messages read: {e}") from e
        return result.rowcount

    async def fetch_one(self, message_id: str) -> Message:
        stmt = self._select_with_author().where(MessageRow.id == message_id)
        try:
            with Session(self.engine) as session:
                found = session.execute(stmt).first()
                if found is None:
                    raise GatewayError(f"Message {message_id} not found", not_found=True)
                return _to_message(*found)
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch message {message_id}: {e}")
            raise GatewayError(f"Failed to fetch message: {e}") from e

    async def fetch_involving(self, user_id: str) -> List[Message]:
        """Direct messages sent or received by ``user_id``, newest first."""
        stmt = (
            self._select_with_author()
            .where(MessageRow.plan_id.is_(None))
            .where(MessageRow.recipient_id.is_not(None))
            .where(or_(MessageRow.author_id == user_id, MessageRow.recipient_id == user_id))
            .order_by(MessageRow.created_at.desc(), MessageRow.id.desc())
        )
        try:
            with Session(self.engine) as session:
                return [_to_message(message, user) for message, user in session.execute(stmt).all()]
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch conversations of {user_id}: {e}")
            raise GatewayError(f"Failed to fetch conversations: {e}") from e
