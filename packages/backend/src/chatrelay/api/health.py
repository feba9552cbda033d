"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and its
dependencies are reachable. The bus is reported by its own state machine
rather than a fresh PING: a DEGRADED bus is already retrying in the
background, and sends keep working without real-time delivery.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from chatrelay import __version__
from chatrelay.config import settings
from chatrelay.db.engine import get_db
from chatrelay.realtime.bus import BusState, ChannelBus
from chatrelay.realtime.pubsub import get_bus

router = APIRouter()


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    bus: ChannelBus = Depends(get_bus),
):
    """Check server health and dependency connectivity."""
    checks = {
        "server": "ok",
        "version": __version__,
        "instance": settings.instance_name,
    }

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    checks["bus"] = "ok" if bus.state is BusState.READY else bus.state.value
    checks["bus_channels"] = len(bus.channels)

    status = "healthy" if checks["database"] == "ok" and checks["bus"] == "ok" else "degraded"
    return {"status": status, **checks}
