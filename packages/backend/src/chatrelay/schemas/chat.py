"""Pydantic schemas for chats and memberships."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class ChatCreate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = None
    is_group: bool = False
    created_by: uuid.UUID
    participant_ids: list[uuid.UUID] = Field(default_factory=list)


class ChatRead(BaseModel):
    id: uuid.UUID = Field(validation_alias=AliasChoices("uuid", "id"))
    slug: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    is_group: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class ParticipantAdd(BaseModel):
    user_id: uuid.UUID
    role: str = Field(default="member", pattern=r"^(owner|admin|member)$")


class JoinGeneral(BaseModel):
    user_id: uuid.UUID


class ParticipantRead(BaseModel):
    chat_id: uuid.UUID
    user_id: uuid.UUID
    role: str
    is_active: bool
    joined_at: datetime
