"""Chat and participant API routes.

Learn: /chats/general is declared before /chats/{chat_id} so FastAPI
doesn't try to parse "general" as a UUID.
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from chatrelay.api.errors import http_error
from chatrelay.db.engine import get_db
from chatrelay.schemas.chat import (
    ChatCreate,
    ChatRead,
    JoinGeneral,
    ParticipantAdd,
    ParticipantRead,
)
from chatrelay.services.chat_service import ChatService
from chatrelay.services.errors import ServiceError

router = APIRouter()


def _svc(db: AsyncSession = Depends(get_db)) -> ChatService:
    return ChatService(db)


def _participant(chat_id: uuid.UUID, user_id: uuid.UUID, membership) -> ParticipantRead:
    return ParticipantRead(
        chat_id=chat_id,
        user_id=user_id,
        role=membership.role,
        is_active=membership.is_active,
        joined_at=membership.joined_at,
    )


# ─── Chats ──────────────────────────────────────────────

@router.post("/chats", response_model=ChatRead, status_code=201)
async def create_chat(body: ChatCreate, svc: ChatService = Depends(_svc)):
    """Create a chat. The creator joins as owner."""
    try:
        return await svc.create_chat(
            created_by=body.created_by,
            name=body.name,
            is_group=body.is_group,
            description=body.description,
            participant_ids=body.participant_ids,
        )
    except ServiceError as e:
        raise http_error(e)


@router.get("/chats/general", response_model=ChatRead)
async def get_general_chat(svc: ChatService = Depends(_svc)):
    """The well-known group chat every user can join. Created on first boot."""
    return await svc.ensure_general_chat()


@router.post("/chats/general/join", response_model=ParticipantRead)
async def join_general_chat(body: JoinGeneral, svc: ChatService = Depends(_svc)):
    try:
        membership = await svc.join_general_chat(body.user_id)
        chat = await svc.get_general_chat()
    except ServiceError as e:
        raise http_error(e)
    return _participant(chat.uuid, body.user_id, membership)


@router.get("/chats/{chat_id}", response_model=ChatRead)
async def get_chat(chat_id: uuid.UUID, svc: ChatService = Depends(_svc)):
    try:
        return await svc.get_chat(chat_id)
    except ServiceError as e:
        raise http_error(e)


# ─── Participants ───────────────────────────────────────

@router.post(
    "/chats/{chat_id}/participants", response_model=ParticipantRead, status_code=201
)
async def add_participant(
    chat_id: uuid.UUID,
    body: ParticipantAdd,
    svc: ChatService = Depends(_svc),
):
    try:
        membership = await svc.add_participant(chat_id, body.user_id, role=body.role)
    except ServiceError as e:
        raise http_error(e)
    return _participant(chat_id, body.user_id, membership)


@router.delete("/chats/{chat_id}/participants/{user_id}", status_code=204)
async def remove_participant(
    chat_id: uuid.UUID,
    user_id: uuid.UUID,
    svc: ChatService = Depends(_svc),
):
    try:
        await svc.remove_participant(chat_id, user_id)
    except ServiceError as e:
        raise http_error(e)
