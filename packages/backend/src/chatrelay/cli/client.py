"""HTTP client for the ChatRelay API, routed across replicas.

Learn: Every call goes through InstanceRouter.route_operation(), so two
consecutive sends can land on two different replicas. The client doesn't
open WebSockets itself; stream_url() hands back the ws:// URL a streaming
client should connect to.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

import httpx

from chatrelay.cli.router import InstanceRouter

API_PREFIX = "/api/v1"


class ChatClient:
    """Thin async wrapper over the REST API."""

    def __init__(
        self,
        router: InstanceRouter,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.router = router
        self._http = httpx.AsyncClient(transport=transport, timeout=timeout)

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _call(self, operation: str, method: str, path: str, **kwargs) -> Any:
        route = self.router.route_operation(operation)
        r = await self._http.request(method, f"{route.url}{API_PREFIX}{path}", **kwargs)
        r.raise_for_status()
        return r.json()

    # ─── Users ──────────────────────────────────────────

    async def create_user(self, username: str, email: Optional[str] = None) -> dict:
        return await self._call(
            "create_user", "POST", "/users", json={"username": username, "email": email}
        )

    async def get_user_by_username(self, username: str) -> dict:
        return await self._call(
            "get_user_by_username", "GET", f"/users/by-username/{username}"
        )

    async def get_user_chats(self, user_id: uuid.UUID | str) -> list[dict]:
        return await self._call("get_user_chats", "GET", f"/users/{user_id}/chats")

    # ─── Chats & messages ───────────────────────────────

    async def get_general_chat(self) -> dict:
        return await self._call("get_general_chat", "GET", "/chats/general")

    async def join_general_chat(self, user_id: uuid.UUID | str) -> dict:
        return await self._call(
            "join_general_chat", "POST", "/chats/general/join", json={"user_id": str(user_id)}
        )

    async def send_message(
        self, chat_id: uuid.UUID | str, sender_id: uuid.UUID | str, content: str
    ) -> dict:
        return await self._call(
            "send_message",
            "POST",
            f"/chats/{chat_id}/messages",
            json={"sender_id": str(sender_id), "content": content},
        )

    async def chat_history(
        self, chat_id: uuid.UUID | str, limit: Optional[int] = None, offset: int = 0
    ) -> list[dict]:
        params: dict[str, Any] = {"offset": offset}
        if limit is not None:
            params["limit"] = limit
        return await self._call(
            "chat_history", "GET", f"/chats/{chat_id}/messages", params=params
        )

    def stream_url(self, chat_id: uuid.UUID | str) -> str:
        route = self.router.route_operation("subscribe_messages")
        return f"{route.url}/ws/chats/{chat_id}"
