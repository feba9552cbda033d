"""Request ID middleware — unique ID per request or socket, for tracing.

Learn: Every HTTP request and every WebSocket connection gets an ID, either
from the incoming X-Request-ID header (for distributed tracing across the
load balancer) or auto-generated. The ID and this instance's name are bound
to structlog's contextvars, so a send logged on instance A and the delivery
logged on instance B can be lined up by a log search.

Written as plain ASGI (not BaseHTTPMiddleware) so it also covers
WebSocket scopes.
"""

import uuid

import structlog
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from chatrelay.config import settings

HEADER = "X-Request-ID"
MAX_LENGTH = 128


class RequestIdMiddleware:
    """Generate and propagate a unique request ID."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        # Use the caller's ID when it's sane, otherwise generate one
        request_id = Headers(scope=scope).get(HEADER, "")
        if not request_id or len(request_id) > MAX_LENGTH:
            request_id = str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id, instance=settings.instance_name
        )

        async def send_with_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[HEADER] = request_id
            await send(message)

        await self.app(scope, receive, send_with_id)
