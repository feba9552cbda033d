"""Instance router — spread client traffic across service replicas.

Learn: Three independent round-robins, chosen by two questions:

    what kind of call?   query / mutation → http
                         subscription     → websocket (stream_urls)
    which topic?         users            → user_urls
                         messaging        → chat_urls

The only promise is "reaches some replica". Ordering and delivery are the
bus's job: a message sent via replica 1 reaches a stream held open on
replica 2 because both share the channel bus, not because of routing.

Cursor state lives on the router instance, so two routers (or two tests)
never share a position.
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass
from typing import Optional, Sequence

DEFAULT_URL = "http://localhost:8000"


class OperationKind(str, enum.Enum):
    QUERY = "query"
    MUTATION = "mutation"
    SUBSCRIPTION = "subscription"


class Topic(str, enum.Enum):
    USERS = "users"
    MESSAGING = "messaging"


# Operations the CLI and ChatClient issue, by kind
OPERATIONS: dict[str, OperationKind] = {
    "create_user": OperationKind.MUTATION,
    "get_user": OperationKind.QUERY,
    "get_user_by_username": OperationKind.QUERY,
    "get_user_chats": OperationKind.QUERY,
    "create_chat": OperationKind.MUTATION,
    "get_general_chat": OperationKind.QUERY,
    "join_general_chat": OperationKind.MUTATION,
    "send_message": OperationKind.MUTATION,
    "chat_history": OperationKind.QUERY,
    "subscribe_messages": OperationKind.SUBSCRIPTION,
}


def topic_for(operation: str) -> Topic:
    """Anything that names a user goes to the user group."""
    return Topic.USERS if "user" in operation.lower() else Topic.MESSAGING


def kind_for(operation: str) -> OperationKind:
    try:
        return OPERATIONS[operation]
    except KeyError:
        raise ValueError(f"Unknown operation '{operation}'") from None


class RoundRobin:
    """Cycle through a fixed list of URLs."""

    def __init__(self, urls: Sequence[str]):
        if not urls:
            raise ValueError("RoundRobin needs at least one URL")
        self.urls = [u.rstrip("/") for u in urls]
        self.position = 0

    def next(self) -> str:
        url = self.urls[self.position]
        self.position = (self.position + 1) % len(self.urls)
        return url


@dataclass(frozen=True)
class Route:
    url: str
    transport: str  # http, websocket


class InstanceRouter:
    """Pick a replica for each call by operation kind and topic."""

    def __init__(
        self,
        user_urls: Sequence[str],
        chat_urls: Optional[Sequence[str]] = None,
        stream_urls: Optional[Sequence[str]] = None,
    ):
        chat_urls = list(chat_urls or user_urls)
        stream_urls = list(stream_urls or [_to_ws(u) for u in chat_urls])
        self.users = RoundRobin(user_urls)
        self.chats = RoundRobin(chat_urls)
        self.streams = RoundRobin(stream_urls)

    def route(self, kind: OperationKind, topic: Topic) -> Route:
        if kind is OperationKind.SUBSCRIPTION:
            return Route(self.streams.next(), "websocket")
        if topic is Topic.USERS:
            return Route(self.users.next(), "http")
        return Route(self.chats.next(), "http")

    def route_operation(self, operation: str) -> Route:
        return self.route(kind_for(operation), topic_for(operation))

    @classmethod
    def from_env(cls) -> "InstanceRouter":
        """Read CHATRELAY_USER_URLS / _CHAT_URLS / _STREAM_URLS (comma-separated)."""
        user_urls = _split(os.environ.get("CHATRELAY_USER_URLS")) or [DEFAULT_URL]
        return cls(
            user_urls,
            _split(os.environ.get("CHATRELAY_CHAT_URLS")),
            _split(os.environ.get("CHATRELAY_STREAM_URLS")),
        )


def _split(value: Optional[str]) -> list[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _to_ws(url: str) -> str:
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):]
    if url.startswith("http://"):
        return "ws://" + url[len("http://"):]
    return url
