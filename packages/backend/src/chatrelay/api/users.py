"""User API routes."""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from chatrelay.api.errors import http_error
from chatrelay.db.engine import get_db
from chatrelay.schemas.chat import ChatRead
from chatrelay.schemas.user import UserCreate, UserRead
from chatrelay.services.chat_service import ChatService
from chatrelay.services.errors import ServiceError
from chatrelay.services.user_service import UserService

router = APIRouter()


def _svc(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)


@router.post("/users", response_model=UserRead, status_code=201)
async def create_user(body: UserCreate, svc: UserService = Depends(_svc)):
    try:
        return await svc.create_user(username=body.username, email=body.email)
    except ServiceError as e:
        raise http_error(e)


@router.get("/users/by-username/{username}", response_model=UserRead)
async def get_user_by_username(username: str, svc: UserService = Depends(_svc)):
    user = await svc.get_user_by_username(username)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/users/{user_id}", response_model=UserRead)
async def get_user(user_id: uuid.UUID, svc: UserService = Depends(_svc)):
    try:
        return await svc.get_user(user_id)
    except ServiceError as e:
        raise http_error(e)


@router.get("/users/{user_id}/chats", response_model=list[ChatRead])
async def list_user_chats(user_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """Every chat the user is an active participant of, most recent first."""
    try:
        return await ChatService(db).list_user_chats(user_id)
    except ServiceError as e:
        raise http_error(e)
