"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Identity is carried in request bodies (sender_id, user_id) rather
than a session. Authorization that matters, "is this user a participant
of this chat?", is enforced by the services on every write.
"""

from fastapi import APIRouter

from chatrelay.api.chats import router as chats_router
from chatrelay.api.health import router as health_router
from chatrelay.api.messages import router as messages_router
from chatrelay.api.users import router as users_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(users_router, tags=["users"])
api_router.include_router(chats_router, tags=["chats", "participants"])
api_router.include_router(messages_router, tags=["messages"])
