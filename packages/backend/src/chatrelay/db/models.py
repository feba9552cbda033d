"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic migrations are written against these models.

Key concepts:
- Two identities per row: an integer primary key (internal, used for joins)
  and a UUID (external, the only id clients ever see)
- Generic column types (Uuid, Boolean, UTCDateTime) so the same models run on
  PostgreSQL in production and SQLite in tests
- Timestamps always come back timezone-aware UTC, whichever backend stored them
- Membership is a flag, not a row deletion: leaving a chat sets is_active=False
- chats.slug is the stable logical key for well-known chats like "general"
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> UUID:
    return uuid4()


class UTCDateTime(TypeDecorator):
    """DateTime(timezone=True) that never hands back a naive value.

    SQLite drops the offset on write, so rows read back in a new session
    would otherwise be naive while freshly created objects are aware.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    @staticmethod
    def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        return self._as_utc(value)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        return self._as_utc(value)


class User(Base):
    """A chat user.

    Learn: username is the display name carried on every message event
    (sender_username), so it is unique and immutable after creation.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[UUID] = mapped_column(
        Uuid, unique=True, nullable=False, default=new_uuid
    )
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    last_seen: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Chat(Base):
    """A conversation. One chat = one bus channel.

    Learn: The channel name is derived from chat.uuid, which never changes,
    so publishers and late-joining subscribers always agree on it.
    """

    __tablename__ = "chats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[UUID] = mapped_column(
        Uuid, unique=True, nullable=False, default=new_uuid
    )
    slug: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True
    )
    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_group: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    participants: Mapped[list["ChatParticipant"]] = relationship(
        back_populates="chat"
    )


class ChatParticipant(Base):
    """Chat membership with an active flag.

    Learn: Only active members may send. Re-joining flips is_active back
    to True instead of inserting a second row (unique chat_id + user_id).
    """

    __tablename__ = "chat_participants"
    __table_args__ = (
        UniqueConstraint("chat_id", "user_id", name="uq_chat_participants"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("chats.id"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="member"
    )  # owner, admin, member
    joined_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    chat: Mapped["Chat"] = relationship(back_populates="participants")
    user: Mapped["User"] = relationship()


class Message(Base):
    """A chat message.

    Learn: created_at is assigned in Python at insert time (microsecond
    precision) rather than by the server, so history ordering is stable on
    every backend. Edits and deletes never rewrite what subscribers already
    received — they are published as new events.
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_chat_created", "chat_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[UUID] = mapped_column(
        Uuid, unique=True, nullable=False, default=new_uuid
    )
    chat_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("chats.id"), nullable=False
    )
    sender_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    edited_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    chat: Mapped["Chat"] = relationship()
    sender: Mapped["User"] = relationship()
