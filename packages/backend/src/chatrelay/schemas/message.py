"""Pydantic schemas for messages and the bus wire format.

Learn: MessageRead is both the HTTP response body and the payload of every
bus event. One model for both means a message fetched from history and the
same message received live over the WebSocket are byte-for-byte the same
JSON — clients can dedupe on id.

Wire envelope on the bus:
    {"type": "message.added", "message": {id, chat_id, sender_id, ...}}
"""

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from chatrelay.events.types import MESSAGE_ADDED, MESSAGE_DELETED, MESSAGE_EDITED


class MessageCreate(BaseModel):
    sender_id: uuid.UUID
    # Length upper bound is enforced by the service (CHATRELAY_MAX_CONTENT_LENGTH)
    content: str = Field(..., min_length=1)


class MessageEdit(BaseModel):
    editor_id: uuid.UUID
    content: str = Field(..., min_length=1)


class MessageRead(BaseModel):
    """Fully hydrated message view (sender username + chat uuid joined in)."""

    id: uuid.UUID
    chat_id: uuid.UUID
    sender_id: uuid.UUID
    sender_username: str
    content: str
    created_at: datetime
    edited_at: Optional[datetime] = None
    is_deleted: bool = False


class MessageEvent(BaseModel):
    """Envelope published on a chat's channel."""

    type: Literal[MESSAGE_ADDED, MESSAGE_EDITED, MESSAGE_DELETED]
    message: MessageRead

    def to_wire(self) -> dict:
        """JSON-safe dict (UUIDs and datetimes as strings) for the bus."""
        return self.model_dump(mode="json")

    @classmethod
    def from_wire(cls, data: dict) -> "MessageEvent":
        return cls.model_validate(data)
