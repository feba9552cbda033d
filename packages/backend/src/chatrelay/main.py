"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (logging, channel bus, the
general chat, the database engine). Middleware, CORS, and routers all
registered here.

Every replica behind the load balancer runs this same app. Nothing here is
per-instance state that another replica would need to know about: chats
live in the database, and live delivery goes through the shared bus.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatrelay import __version__
from chatrelay.api import api_router
from chatrelay.config import settings
from chatrelay.logging_config import setup_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: FastAPI lifespan replaces on_event("startup") / on_event("shutdown").
    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    setup_logging()
    logger.info(
        "chatrelay.starting",
        version=__version__,
        environment=settings.environment,
        instance=settings.instance_name,
        port=settings.port,
    )

    # Channel bus: an unreachable Redis is logged, not fatal.
    # Sends still commit; the bus keeps reconnecting in the background.
    from chatrelay.realtime.pubsub import close_bus, init_bus
    bus = await init_bus()
    logger.info("chatrelay.bus_started", backend=settings.bus_backend, state=bus.state.value)

    # Well-known general chat: every instance races to create it, one wins
    from chatrelay.db.engine import async_session_factory, engine
    from chatrelay.services.chat_service import ChatService
    async with async_session_factory() as session:
        general = await ChatService(session).ensure_general_chat()
    logger.info("chatrelay.general_chat", chat_id=str(general.uuid))

    yield

    # Shutdown
    logger.info("chatrelay.shutdown")
    await close_bus()
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="ChatRelay",
        description="Multi-instance real-time chat backend",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → CORS → handler

    from chatrelay.middleware.request_id import RequestIdMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket route (real-time delivery)
    from chatrelay.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: chatrelay.main:app)
app = create_app()
