"""Chat service — conversations, memberships, and the well-known general chat.

Learn: The general chat is found by its slug, never by a hard-coded id.
The id is generated by the database the first time any instance boots, so
every other instance (and every later boot) has to look it up.

ensure_general_chat() is an idempotent upsert by logical key:
1. SELECT by slug → found? done.
2. INSERT → two instances booting at once may both get here.
3. The loser hits the unique constraint, rolls back, and re-SELECTs.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chatrelay.config import settings
from chatrelay.db.models import Chat, ChatParticipant, User
from chatrelay.db.store import ChatStore
from chatrelay.services.errors import NotFound

logger = structlog.get_logger()


class ChatService:
    """Business logic for chats and participants."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = ChatStore(db)

    # ─── Lookups ────────────────────────────────────────

    async def get_chat(self, chat_id: uuid.UUID) -> Chat:
        chat = await self.store.get_chat(chat_id)
        if chat is None:
            raise NotFound(f"Chat '{chat_id}' not found")
        return chat

    async def _get_user(self, user_id: uuid.UUID) -> User:
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFound(f"User '{user_id}' not found")
        return user

    async def list_user_chats(self, user_id: uuid.UUID) -> list[Chat]:
        user = await self._get_user(user_id)
        return await self.store.list_user_chats(user.id)

    # ─── Create ─────────────────────────────────────────

    async def create_chat(
        self,
        created_by: uuid.UUID,
        name: Optional[str] = None,
        is_group: bool = False,
        description: Optional[str] = None,
        participant_ids: Optional[list[uuid.UUID]] = None,
    ) -> Chat:
        """Create a chat. The creator joins as owner, the rest as members."""
        creator = await self._get_user(created_by)
        members = []
        for member_id in participant_ids or []:
            if member_id != created_by:
                members.append(await self._get_user(member_id))

        chat = await self.store.add_chat(
            name=name,
            is_group=is_group or len(members) > 1,
            created_by=creator.id,
            description=description,
        )
        await self.store.upsert_participant(chat.id, creator.id, role="owner")
        for member in members:
            await self.store.upsert_participant(chat.id, member.id)
        await self.db.commit()

        logger.info(
            "chat.created",
            chat_id=str(chat.uuid),
            created_by=str(created_by),
            members=len(members) + 1,
        )
        return chat

    # ─── Membership ─────────────────────────────────────

    async def add_participant(
        self, chat_id: uuid.UUID, user_id: uuid.UUID, role: str = "member"
    ) -> ChatParticipant:
        chat = await self.get_chat(chat_id)
        user = await self._get_user(user_id)
        membership = await self.store.upsert_participant(chat.id, user.id, role)
        await self.db.commit()
        logger.info("chat.participant_added", chat_id=str(chat_id), user_id=str(user_id))
        return membership

    async def remove_participant(self, chat_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Flag the membership inactive. The user can no longer send."""
        chat = await self.get_chat(chat_id)
        user = await self._get_user(user_id)
        membership = await self.store.get_membership(chat.id, user.id)
        if membership is None or not membership.is_active:
            raise NotFound(f"User '{user_id}' is not a participant of chat '{chat_id}'")
        membership.is_active = False
        await self.db.commit()
        logger.info("chat.participant_removed", chat_id=str(chat_id), user_id=str(user_id))

    # ─── General chat ───────────────────────────────────

    async def ensure_general_chat(self) -> Chat:
        """Return the general chat, creating it on first boot."""
        slug = settings.general_chat_slug
        chat = await self.store.get_chat_by_slug(slug)
        if chat is not None:
            return chat
        try:
            chat = await self.store.add_chat(
                name=settings.general_chat_name, is_group=True, slug=slug
            )
            await self.db.commit()
            logger.info("chat.general_created", chat_id=str(chat.uuid), slug=slug)
            return chat
        except IntegrityError:
            # Another instance created it first.
            await self.db.rollback()
            chat = await self.store.get_chat_by_slug(slug)
            if chat is None:
                raise
            return chat

    async def get_general_chat(self) -> Chat:
        chat = await self.store.get_chat_by_slug(settings.general_chat_slug)
        if chat is None:
            raise NotFound("General chat has not been created yet")
        return chat

    async def join_general_chat(self, user_id: uuid.UUID) -> ChatParticipant:
        """Idempotent: joining twice (or re-joining after leaving) is fine."""
        chat = await self.ensure_general_chat()
        user = await self._get_user(user_id)
        membership = await self.store.upsert_participant(chat.id, user.id)
        await self.db.commit()
        logger.info("chat.general_joined", chat_id=str(chat.uuid), user_id=str(user_id))
        return membership
