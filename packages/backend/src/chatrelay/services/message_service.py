"""Message service — the transactional send pipeline.

Learn: This is the CORE of the platform. Every send runs these steps in
this order, and none may be skipped or reordered:

1. Membership check (read-only): sender must be an active participant
2. Durable insert in one unit of work: COMMIT, or ROLLBACK and stop
3. After COMMIT: build the full view from the rows already loaded (no read
   after COMMIT) and publish it on the chat channel
4. Return the view, whether or not anyone was listening

Publishing after commit means no subscriber ever sees a message that could
still be rolled back. The cost is an asymmetry: if step 3 fails the message
is durable but nobody got it in real time. That failure is logged, not
retried and not raised. The caller gets a success, and live clients see
a gap they can fill from history.

Edits and deletes follow the same commit-then-publish rule and go out as
new events (message.edited / message.deleted) on the same channel.
"""

import uuid

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatrelay.config import settings
from chatrelay.db.models import Message, utcnow
from chatrelay.db.store import ChatStore
from chatrelay.events.types import MESSAGE_ADDED, MESSAGE_DELETED, MESSAGE_EDITED
from chatrelay.realtime.bus import BusError, ChannelBus
from chatrelay.realtime.pubsub import message_channel
from chatrelay.schemas.message import MessageEvent, MessageRead
from chatrelay.services.errors import (
    InvalidContent,
    NotAuthorized,
    NotFound,
    PersistenceFailure,
)

logger = structlog.get_logger()


class MessageService:
    """Send, edit, delete and page through chat messages."""

    def __init__(self, db: AsyncSession, bus: ChannelBus):
        self.db = db
        self.bus = bus
        self.store = ChatStore(db)

    # ─── Send ───────────────────────────────────────────

    async def send_message(
        self, chat_id: uuid.UUID, sender_id: uuid.UUID, content: str
    ) -> MessageRead:
        """Persist a message, then publish it to every live subscriber.

        Raises:
            InvalidContent: empty or too long
            NotFound: chat doesn't exist
            NotAuthorized: sender isn't an active participant (nothing written)
            PersistenceFailure: insert/commit failed (rolled back, nothing published)
        """
        self._validate_content(content)
        log = logger.bind(chat_id=str(chat_id), sender_id=str(sender_id))

        # 1. Membership check
        chat = await self.store.get_chat(chat_id)
        if chat is None:
            raise NotFound(f"Chat '{chat_id}' not found")
        sender = await self.store.get_user(sender_id)
        if sender is None or not await self.store.is_participant(chat.id, sender.id):
            log.info("message.rejected", reason="not_participant")
            raise NotAuthorized("User is not a participant of this chat")

        # 2. Durable insert, one unit of work
        try:
            message = await self.store.insert_message(chat.id, sender.id, content)
            sender.last_seen = message.created_at
            chat.updated_at = message.created_at
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            log.error("message.persist_failed", error=str(e))
            raise PersistenceFailure(str(e)) from e

        # 3. Publish, strictly after COMMIT. The row is durable from here on,
        # so the view comes from the loaded rows, not another SELECT.
        view = self.store.view_of(message, chat.uuid, sender.uuid, sender.username)
        await self._publish(MESSAGE_ADDED, view)

        log.info("message.sent", message_id=str(view.id))
        return view

    # ─── History ────────────────────────────────────────

    async def chat_history(
        self,
        chat_id: uuid.UUID,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[MessageRead]:
        """Newest first. limit is clamped to history_max_limit."""
        if await self.store.get_chat(chat_id) is None:
            raise NotFound(f"Chat '{chat_id}' not found")
        limit = limit or settings.history_default_limit
        limit = max(1, min(limit, settings.history_max_limit))
        return await self.store.fetch_history(chat_id, limit=limit, offset=max(0, offset))

    # ─── Edit / delete ──────────────────────────────────

    async def edit_message(
        self, message_id: uuid.UUID, editor_id: uuid.UUID, content: str
    ) -> MessageRead:
        """Only the author may edit. Subscribers get a message.edited event."""
        self._validate_content(content)
        message, current = await self._get_own_message(message_id, editor_id)
        try:
            message.content = content
            message.edited_at = utcnow()
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("message.edit_failed", message_id=str(message_id), error=str(e))
            raise PersistenceFailure(str(e)) from e

        view = self._updated(message, current)
        await self._publish(MESSAGE_EDITED, view)
        logger.info("message.edited", message_id=str(message_id))
        return view

    async def delete_message(self, message_id: uuid.UUID, user_id: uuid.UUID) -> MessageRead:
        """Soft delete. Only the author may delete. Publishes message.deleted."""
        message, current = await self._get_own_message(message_id, user_id)
        try:
            message.is_deleted = True
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("message.delete_failed", message_id=str(message_id), error=str(e))
            raise PersistenceFailure(str(e)) from e

        view = self._updated(message, current)
        await self._publish(MESSAGE_DELETED, view)
        logger.info("message.deleted", message_id=str(message_id))
        return view

    # ─── Internals ──────────────────────────────────────

    def _validate_content(self, content: str) -> None:
        if not content or not content.strip():
            raise InvalidContent("Message content must not be empty")
        if len(content) > settings.max_content_length:
            raise InvalidContent(
                f"Message content must be at most {settings.max_content_length} characters"
            )

    async def _get_own_message(
        self, message_id: uuid.UUID, user_id: uuid.UUID
    ) -> tuple[Message, MessageRead]:
        message = await self.store.get_message(message_id)
        if message is None or message.is_deleted:
            raise NotFound(f"Message '{message_id}' not found")
        user = await self.store.get_user(user_id)
        if user is None or user.id != message.sender_id:
            raise NotAuthorized("Only the author can change a message")
        return message, await self.store.get_message_view(message_id)

    def _updated(self, message: Message, current: MessageRead) -> MessageRead:
        return self.store.view_of(
            message, current.chat_id, current.sender_id, current.sender_username
        )

    async def _publish(self, event_type: str, view: MessageRead) -> None:
        """Best-effort real-time delivery. Bus errors never fail the request."""
        event = MessageEvent(type=event_type, message=view)
        channel = message_channel(view.chat_id)
        try:
            await self.bus.publish(channel, event.to_wire())
        except BusError as e:
            logger.warning(
                "message.publish_failed",
                event_type=event_type,
                message_id=str(view.id),
                channel=channel,
                error=str(e),
            )
