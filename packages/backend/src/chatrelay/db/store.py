"""Chat store — the narrow persistence interface the services depend on.

Learn: Services never build SQL themselves; they call the store. The store
never commits — it only adds and flushes. The caller owns the unit of work
and decides when to COMMIT or ROLLBACK, which is what lets the send
pipeline guarantee "publish only after commit".

Lookups take public UUIDs; writes take the internal integer keys of rows
the caller has already loaded.
"""

import uuid
from typing import Optional

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from chatrelay.db.models import Chat, ChatParticipant, Message, User, utcnow
from chatrelay.schemas.message import MessageRead


class ChatStore:
    """Users, chats, memberships and messages backed by SQLAlchemy."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Users ──────────────────────────────────────────

    async def add_user(self, username: str, email: Optional[str] = None) -> User:
        user = User(username=username, email=email)
        self.db.add(user)
        await self.db.flush()
        return user

    async def get_user(self, user_uuid: uuid.UUID) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.uuid == user_uuid, User.is_active.is_(True))
        )
        return result.scalars().first()

    async def get_user_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.username == username, User.is_active.is_(True))
        )
        return result.scalars().first()

    # ─── Chats ──────────────────────────────────────────

    async def add_chat(
        self,
        name: Optional[str],
        is_group: bool,
        created_by: Optional[int] = None,
        slug: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Chat:
        chat = Chat(
            name=name,
            is_group=is_group,
            created_by=created_by,
            slug=slug,
            description=description,
        )
        self.db.add(chat)
        await self.db.flush()
        return chat

    async def get_chat(self, chat_uuid: uuid.UUID) -> Optional[Chat]:
        result = await self.db.execute(select(Chat).where(Chat.uuid == chat_uuid))
        return result.scalars().first()

    async def get_chat_by_slug(self, slug: str) -> Optional[Chat]:
        result = await self.db.execute(select(Chat).where(Chat.slug == slug))
        return result.scalars().first()

    async def list_user_chats(self, user_id: int) -> list[Chat]:
        result = await self.db.execute(
            select(Chat)
            .join(ChatParticipant, ChatParticipant.chat_id == Chat.id)
            .where(
                ChatParticipant.user_id == user_id,
                ChatParticipant.is_active.is_(True),
            )
            .order_by(Chat.updated_at.desc(), Chat.id.desc())
        )
        return list(result.scalars().all())

    # ─── Memberships ────────────────────────────────────

    async def get_membership(
        self, chat_id: int, user_id: int
    ) -> Optional[ChatParticipant]:
        result = await self.db.execute(
            select(ChatParticipant).where(
                ChatParticipant.chat_id == chat_id,
                ChatParticipant.user_id == user_id,
            )
        )
        return result.scalars().first()

    async def upsert_participant(
        self, chat_id: int, user_id: int, role: str = "member"
    ) -> ChatParticipant:
        """Add a member, or reactivate an existing (possibly inactive) one."""
        membership = await self.get_membership(chat_id, user_id)
        if membership is None:
            membership = ChatParticipant(chat_id=chat_id, user_id=user_id, role=role)
            self.db.add(membership)
        else:
            membership.is_active = True
        await self.db.flush()
        return membership

    async def is_participant(self, chat_id: int, user_id: int) -> bool:
        result = await self.db.execute(
            select(ChatParticipant.id).where(
                ChatParticipant.chat_id == chat_id,
                ChatParticipant.user_id == user_id,
                ChatParticipant.is_active.is_(True),
            )
        )
        return result.first() is not None

    # ─── Messages ───────────────────────────────────────

    async def insert_message(self, chat_id: int, sender_id: int, content: str) -> Message:
        """Stage a new message in the caller's transaction (flush, no commit)."""
        message = Message(
            chat_id=chat_id,
            sender_id=sender_id,
            content=content,
            created_at=utcnow(),
        )
        self.db.add(message)
        await self.db.flush()
        return message

    async def get_message(self, message_uuid: uuid.UUID) -> Optional[Message]:
        result = await self.db.execute(
            select(Message).where(Message.uuid == message_uuid)
        )
        return result.scalars().first()

    async def get_message_view(self, message_uuid: uuid.UUID) -> Optional[MessageRead]:
        """Hydrated view of one message: chat uuid + sender username joined in."""
        result = await self.db.execute(
            self._view_query().where(Message.uuid == message_uuid)
        )
        row = result.first()
        return self._to_view(row) if row else None

    async def fetch_history(
        self, chat_uuid: uuid.UUID, limit: int, offset: int = 0
    ) -> list[MessageRead]:
        """Newest first. Soft-deleted messages are excluded."""
        result = await self.db.execute(
            self._view_query()
            .where(Chat.uuid == chat_uuid, Message.is_deleted.is_(False))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return [self._to_view(row) for row in result]

    @staticmethod
    def _view_query() -> Select:
        return (
            select(Message, Chat.uuid.label("chat_uuid"), User.uuid.label("sender_uuid"),
                   User.username.label("sender_username"))
            .join(Chat, Message.chat_id == Chat.id)
            .join(User, Message.sender_id == User.id)
        )

    @classmethod
    def _to_view(cls, row) -> MessageRead:
        return cls.view_of(
            row.Message, row.chat_uuid, row.sender_uuid, row.sender_username
        )

    @staticmethod
    def view_of(
        message: Message,
        chat_uuid: uuid.UUID,
        sender_uuid: uuid.UUID,
        sender_username: str,
    ) -> MessageRead:
        """Build the view from rows already in hand, without a query."""
        return MessageRead(
            id=message.uuid,
            chat_id=chat_uuid,
            sender_id=sender_uuid,
            sender_username=sender_username,
            content=message.content,
            created_at=message.created_at,
            edited_at=message.edited_at,
            is_deleted=message.is_deleted,
        )
