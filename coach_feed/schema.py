"""Database schema for users and chat messages."""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class UserRow(Base):
    """Profile fields copied onto messages as the author snapshot."""
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=False, unique=True)
    display_name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="trainee")
    avatar_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class MessageRow(Base):
    """Chat message; recipient_id and plan_id together select the feed.

    Global room messages have neither, direct messages have a recipient and
    plan thread messages have a plan.
    """
    __tablename__ = "messages"

    id = Column(String(64), primary_key=True)
    author_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    recipient_id = Column(String(64), nullable=True, index=True)
    plan_id = Column(String(64), nullable=True, index=True)
    body = Column(Text, nullable=True)
    attachment_url = Column(Text, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    __table_args__ = (
        Index("ix_messages_conversation", "author_id", "recipient_id", "created_at"),
    )
