"""Message API routes — the HTTP entry point of the send pipeline.

Learn: POST /chats/{id}/messages returns 201 as soon as the message is
committed. Real-time delivery happens on the bus after commit; a bus
outage never turns a durable send into an error response.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from chatrelay.api.errors import http_error
from chatrelay.db.engine import get_db
from chatrelay.realtime.bus import ChannelBus
from chatrelay.realtime.pubsub import get_bus
from chatrelay.schemas.message import MessageCreate, MessageEdit, MessageRead
from chatrelay.services.errors import ServiceError
from chatrelay.services.message_service import MessageService

router = APIRouter()


def _svc(
    db: AsyncSession = Depends(get_db),
    bus: ChannelBus = Depends(get_bus),
) -> MessageService:
    return MessageService(db, bus)


@router.post("/chats/{chat_id}/messages", response_model=MessageRead, status_code=201)
async def send_message(
    chat_id: uuid.UUID,
    body: MessageCreate,
    svc: MessageService = Depends(_svc),
):
    try:
        return await svc.send_message(chat_id, body.sender_id, body.content)
    except ServiceError as e:
        raise http_error(e)


@router.get("/chats/{chat_id}/messages", response_model=list[MessageRead])
async def chat_history(
    chat_id: uuid.UUID,
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    svc: MessageService = Depends(_svc),
):
    """Newest first. limit above CHATRELAY_HISTORY_MAX_LIMIT is clamped."""
    try:
        return await svc.chat_history(chat_id, limit=limit, offset=offset)
    except ServiceError as e:
        raise http_error(e)


@router.patch("/messages/{message_id}", response_model=MessageRead)
async def edit_message(
    message_id: uuid.UUID,
    body: MessageEdit,
    svc: MessageService = Depends(_svc),
):
    try:
        return await svc.edit_message(message_id, body.editor_id, body.content)
    except ServiceError as e:
        raise http_error(e)


@router.delete("/messages/{message_id}", response_model=MessageRead)
async def delete_message(
    message_id: uuid.UUID,
    user_id: uuid.UUID = Query(...),
    svc: MessageService = Depends(_svc),
):
    try:
        return await svc.delete_message(message_id, user_id)
    except ServiceError as e:
        raise http_error(e)
