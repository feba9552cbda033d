"""User service — create and look up users."""

import uuid
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chatrelay.db.models import User
from chatrelay.db.store import ChatStore
from chatrelay.services.errors import Conflict, NotFound

logger = structlog.get_logger()


class UserService:
    """Business logic for users."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = ChatStore(db)

    async def create_user(self, username: str, email: Optional[str] = None) -> User:
        """Create a user. Usernames (and emails, when given) are unique.

        Learn: The pre-check gives a friendly error for the common case;
        the unique constraint still catches the race between two instances.
        """
        if await self.store.get_user_by_username(username):
            raise Conflict(f"Username '{username}' is already taken")
        try:
            user = await self.store.add_user(username, email)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise Conflict(f"Username or email already registered: {username}") from e
        logger.info("user.created", user_id=str(user.uuid), username=username)
        return user

    async def get_user(self, user_id: uuid.UUID) -> User:
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFound(f"User '{user_id}' not found")
        return user

    async def get_user_by_username(self, username: str) -> Optional[User]:
        return await self.store.get_user_by_username(username)

