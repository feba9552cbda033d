"""Process-wide channel bus: construction, lifecycle, FastAPI dependency.

Learn: One bus per process, created in the app lifespan. Routes get it via
Depends(get_bus), which tests override with a bus on an in-memory hub.

Channel naming: {prefix}:messages:{chat_uuid}
The chat uuid never changes, so every instance derives the same name on
the publish side and the subscribe side.
"""

import uuid
from typing import Optional

import structlog

from chatrelay.config import settings
from chatrelay.realtime.bus import BusUnavailable, ChannelBus
from chatrelay.realtime.transport import (
    BusTransport,
    MemoryHub,
    MemoryTransport,
    RedisTransport,
)

logger = structlog.get_logger()

# Global bus (initialized in lifespan)
_bus: Optional[ChannelBus] = None


def message_channel(chat_id: uuid.UUID | str, prefix: Optional[str] = None) -> str:
    """Channel carrying every message event of one chat."""
    return f"{prefix or settings.channel_prefix}:messages:{chat_id}"


def build_transport() -> BusTransport:
    if settings.bus_backend == "memory":
        return MemoryTransport(MemoryHub())
    return RedisTransport(
        settings.redis_url,
        socket_timeout=settings.redis_socket_timeout,
        connect_timeout=settings.redis_connect_timeout,
    )


def build_bus(transport: BusTransport) -> ChannelBus:
    return ChannelBus(
        transport,
        ready_timeout=settings.bus_ready_timeout,
        reconnect_delay=settings.bus_reconnect_delay,
        max_reconnect_delay=settings.bus_max_reconnect_delay,
        poll_interval=settings.bus_poll_interval,
    )


async def init_bus(transport: Optional[BusTransport] = None) -> ChannelBus:
    """Create and start the process bus, waiting briefly for readiness.

    An unreachable transport is logged, not raised: the bus keeps retrying
    in the background and sends still succeed (without real-time delivery).
    """
    global _bus
    _bus = build_bus(transport or build_transport())
    await _bus.start()
    try:
        await _bus.wait_ready()
    except BusUnavailable as e:
        logger.warning("chatrelay.bus_unavailable", error=str(e))
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.stop()
        _bus = None


def get_bus() -> ChannelBus:
    """Get the process bus (must be initialized first). FastAPI dependency."""
    if _bus is None:
        raise RuntimeError("Channel bus not initialized. Call init_bus() first.")
    return _bus
