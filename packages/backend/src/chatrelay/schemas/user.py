"""Pydantic schemas for users.

Learn: ORM rows carry both an integer id and a uuid. Read schemas pull
the public id from the `uuid` attribute (AliasChoices) so the internal
key never reaches a client.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[a-zA-Z0-9_]+$")
    email: Optional[str] = Field(
        default=None, min_length=5, max_length=100, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
    )


class UserRead(BaseModel):
    id: uuid.UUID = Field(validation_alias=AliasChoices("uuid", "id"))
    username: str
    email: Optional[str] = None
    created_at: datetime
    last_seen: Optional[datetime] = None
    is_active: bool

    model_config = {"from_attributes": True}
