"""Bus transports — the wire under the ChannelBus.

Learn: The bus owns all the hard parts (listener counting, readiness,
reconnect, fan-out). A transport only moves strings between processes:

    publish(channel, data)   → one PUBLISH on the shared publisher connection
    subscribe(channel)       → one SUBSCRIBE on the shared subscriber connection
    read(timeout)            → next (channel, data) pair, or None on timeout

Two implementations:
- RedisTransport: production. Two connections total per instance, one for
  publishing and one PubSub for every channel this instance listens on.
  Redis pub/sub is fire-and-forget: no listeners = message dropped.
- MemoryTransport: transports attached to one MemoryHub behave like
  instances sharing one Redis. Used for single-process deployments and tests.

Every driver error is translated to TransportError. Nothing above the
transport layer ever sees a redis exception.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger()


class TransportError(Exception):
    """The underlying connection failed (lost, refused, timed out)."""
    pass


class BusTransport(ABC):
    """Abstract interface every bus transport implements."""

    name: str = "abstract"

    @abstractmethod
    async def connect(self) -> None:
        """Open (or re-open) the publisher and subscriber connections."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections. Must not raise."""

    @abstractmethod
    async def publish(self, channel: str, data: str) -> int:
        """Send data on channel. Returns the number of transport-level receivers."""

    @abstractmethod
    async def subscribe(self, channel: str) -> None:
        pass

    @abstractmethod
    async def unsubscribe(self, channel: str) -> None:
        pass

    @abstractmethod
    async def read(self, timeout: float) -> Optional[tuple[str, str]]:
        """Wait up to timeout seconds for the next (channel, data) pair."""


# ═══════════════════════════════════════════════════════════
# Redis
# ═══════════════════════════════════════════════════════════


class RedisTransport(BusTransport):
    """Redis pub/sub over one publisher client and one subscriber PubSub."""

    name = "redis"

    def __init__(
        self,
        url: str,
        socket_timeout: float = 5.0,
        connect_timeout: float = 2.0,
    ):
        self.url = url
        self.socket_timeout = socket_timeout
        self.connect_timeout = connect_timeout
        self._publisher: Optional[aioredis.Redis] = None
        self._subscriber: Optional[aioredis.Redis] = None
        self._pubsub = None

    def _client(self, socket_timeout: Optional[float]) -> aioredis.Redis:
        return aioredis.from_url(
            self.url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=self.connect_timeout,
        )

    async def connect(self) -> None:
        await self.close()
        try:
            self._publisher = self._client(self.socket_timeout)
            # No socket timeout on the subscriber: it idles between messages.
            self._subscriber = self._client(None)
            await self._publisher.ping()
            await self._subscriber.ping()
            self._pubsub = self._subscriber.pubsub(ignore_subscribe_messages=True)
        except (RedisError, OSError) as e:
            raise TransportError(f"redis connect failed: {e}") from e

    async def close(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        clients = [self._publisher, self._subscriber]
        self._publisher = self._subscriber = None
        try:
            if pubsub is not None:
                await pubsub.aclose()
            for client in clients:
                if client is not None:
                    await client.aclose()
        except (RedisError, OSError) as e:
            logger.debug("bus.transport_close_error", transport=self.name, error=str(e))

    async def publish(self, channel: str, data: str) -> int:
        if self._publisher is None:
            raise TransportError("redis publisher not connected")
        try:
            return await self._publisher.publish(channel, data)
        except (RedisError, OSError) as e:
            raise TransportError(f"redis publish failed: {e}") from e

    async def subscribe(self, channel: str) -> None:
        if self._pubsub is None:
            raise TransportError("redis subscriber not connected")
        try:
            await self._pubsub.subscribe(channel)
        except (RedisError, OSError) as e:
            raise TransportError(f"redis subscribe failed: {e}") from e

    async def unsubscribe(self, channel: str) -> None:
        if self._pubsub is None:
            raise TransportError("redis subscriber not connected")
        try:
            await self._pubsub.unsubscribe(channel)
        except (RedisError, OSError) as e:
            raise TransportError(f"redis unsubscribe failed: {e}") from e

    async def read(self, timeout: float) -> Optional[tuple[str, str]]:
        pubsub = self._pubsub
        if pubsub is None:
            raise TransportError("redis subscriber not connected")
        if not pubsub.subscribed:
            # Nothing to read yet; don't spin on an idle PubSub.
            await asyncio.sleep(timeout)
            return None
        try:
            message = await pubsub.get_message(
                ignore_subscribe_messages=True, timeout=timeout
            )
        except (RedisError, OSError) as e:
            raise TransportError(f"redis read failed: {e}") from e
        if message is None or message.get("type") != "message":
            return None
        return message["channel"], message["data"]


# ═══════════════════════════════════════════════════════════
# In-process
# ═══════════════════════════════════════════════════════════

_DROPPED = object()


class MemoryHub:
    """In-process stand-in for a shared broker.

    Learn: Attach one MemoryTransport per simulated instance. publish()
    delivers to every attached transport subscribed to the channel, in
    publish order. disconnect() kills every attached connection (like a
    Redis restart); restore() lets transports reconnect.
    """

    def __init__(self):
        self._transports: set["MemoryTransport"] = set()
        self.online = True

    def attach(self, transport: "MemoryTransport") -> None:
        if not self.online:
            raise TransportError("memory hub is offline")
        self._transports.add(transport)

    def detach(self, transport: "MemoryTransport") -> None:
        self._transports.discard(transport)

    def publish(self, channel: str, data: str) -> int:
        if not self.online:
            raise TransportError("memory hub is offline")
        receivers = 0
        for transport in list(self._transports):
            if channel in transport.channels:
                transport.inbox.put_nowait((channel, data))
                receivers += 1
        return receivers

    def disconnect(self) -> None:
        """Drop every connection. Publishes fail until restore()."""
        self.online = False
        for transport in list(self._transports):
            transport.drop()
        self._transports.clear()

    def restore(self) -> None:
        self.online = True


class MemoryTransport(BusTransport):
    """A transport attached to a MemoryHub."""

    name = "memory"

    def __init__(self, hub: MemoryHub):
        self.hub = hub
        self.channels: set[str] = set()
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.connected = False

    async def connect(self) -> None:
        self.hub.attach(self)
        self.channels = set()
        self.inbox = asyncio.Queue()
        self.connected = True

    async def close(self) -> None:
        self.connected = False
        self.hub.detach(self)

    def drop(self) -> None:
        """Called by the hub when the connection dies."""
        self.connected = False
        self.inbox.put_nowait(_DROPPED)

    def _check(self) -> None:
        if not self.connected:
            raise TransportError("memory transport not connected")

    async def publish(self, channel: str, data: str) -> int:
        self._check()
        return self.hub.publish(channel, data)

    async def subscribe(self, channel: str) -> None:
        self._check()
        self.channels.add(channel)

    async def unsubscribe(self, channel: str) -> None:
        self._check()
        self.channels.discard(channel)

    async def read(self, timeout: float) -> Optional[tuple[str, str]]:
        self._check()
        try:
            item = await asyncio.wait_for(self.inbox.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if item is _DROPPED:
            raise TransportError("memory transport connection dropped")
        return item
