"""Test fixtures — a fresh database and an in-memory bus hub per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI + a channel bus:

1. Each test gets its own SQLite file (aiosqlite) with the schema created
   from the models. Services really COMMIT, so tests observe exactly what
   another instance would observe.
2. Each test gets its own MemoryHub. Every bus built on it is one simulated
   service instance; several buses on one hub = several replicas sharing
   one Redis.
3. `client` overrides get_db and get_bus. `make_client(bus)` builds an
   extra app for a second instance with its own bus on the same hub.

No Postgres or Redis needed.
"""

import os

# Must be set before chatrelay.config is imported anywhere.
os.environ.setdefault("CHATRELAY_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CHATRELAY_BUS_BACKEND", "memory")

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from chatrelay.db.engine import get_db  # noqa: E402
from chatrelay.db.models import Base  # noqa: E402
from chatrelay.main import create_app  # noqa: E402
from chatrelay.realtime.bus import ChannelBus  # noqa: E402
from chatrelay.realtime.pubsub import get_bus  # noqa: E402
from chatrelay.realtime.transport import MemoryHub, MemoryTransport  # noqa: E402


async def start_bus(hub: MemoryHub, **options) -> ChannelBus:
    """Build, start and wait for a bus on the hub. Fast timings for tests."""
    params = {
        "ready_timeout": 1.0,
        "reconnect_delay": 0.01,
        "max_reconnect_delay": 0.05,
        "poll_interval": 0.05,
    }
    params.update(options)
    bus = ChannelBus(MemoryTransport(hub), **params)
    await bus.start()
    await bus.wait_ready()
    return bus


@pytest_asyncio.fixture()
async def engine(tmp_path):
    """Fresh SQLite database file with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'chatrelay.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def hub():
    return MemoryHub()


@pytest_asyncio.fixture()
async def make_bus(hub):
    """Factory for extra instances' buses. All are stopped after the test."""
    buses: list[ChannelBus] = []

    async def _make(**options) -> ChannelBus:
        bus = await start_bus(hub, **options)
        buses.append(bus)
        return bus

    yield _make
    for bus in buses:
        await bus.stop()


@pytest_asyncio.fixture()
async def bus(make_bus):
    return await make_bus()


@pytest_asyncio.fixture()
async def make_client(session_factory):
    """Factory: an HTTP client for one app instance wired to the given bus."""
    clients: list[AsyncClient] = []

    async def _make(instance_bus: ChannelBus) -> AsyncClient:
        app = create_app()

        async def override_get_db():
            async with session_factory() as session:
                yield session

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_bus] = lambda: instance_bus

        ac = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(ac)
        return ac

    yield _make
    for ac in clients:
        await ac.aclose()


@pytest_asyncio.fixture()
async def client(make_client, bus):
    """HTTP client for the default instance."""
    return await make_client(bus)


# ─── Data helpers ───────────────────────────────────────


async def create_user(client, username: str) -> dict:
    r = await client.post("/api/v1/users", json={"username": username})
    assert r.status_code == 201, r.text
    return r.json()


async def join_general(client, user_id: str) -> str:
    """Join the general chat and return its id."""
    r = await client.post("/api/v1/chats/general/join", json={"user_id": user_id})
    assert r.status_code == 200, r.text
    return r.json()["chat_id"]
