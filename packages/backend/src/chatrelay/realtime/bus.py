"""Channel bus — cross-instance publish/subscribe over one shared transport.

Learn: Every instance runs exactly one ChannelBus. All chats, all
WebSocket clients and all send pipelines on that instance share its single
transport connection pair. Multiplexing happens here, not in Redis:

    N consumers on channel C  →  1 logical listener list for C
                              →  1 transport-level SUBSCRIBE C

The first subscribe() on a channel issues the transport SUBSCRIBE; later
ones just join the listener list. The last unsubscribe() issues the
transport UNSUBSCRIBE. These transitions are serialized by one lock so two
consumers racing on the same channel can't leave it half-subscribed.

A single reader task pulls (channel, data) pairs off the transport and
calls every listener of that channel synchronously, in arrival order —
so per-channel publish order is per-consumer delivery order.

Readiness:
    INITIALIZING → READY → DEGRADED (transport error) → READY (reconnected)

publish() and subscribe() wait for READY, bounded by ready_timeout, then
raise BusUnavailable. After a reconnect the bus re-issues SUBSCRIBE for
every channel that still has listeners. Anything published while the bus
was degraded is lost — Redis pub/sub has no replay. History is in Postgres.
"""

import asyncio
import enum
import json
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from chatrelay.realtime.transport import BusTransport, TransportError

logger = structlog.get_logger()


class BusState(str, enum.Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    DEGRADED = "degraded"
    CLOSED = "closed"


class BusError(Exception):
    """Base class for channel bus failures. Never rolls back a commit."""
    pass


class BusUnavailable(BusError):
    """Transport not READY within the wait timeout. Retryable."""
    pass


class PublishFailure(BusError):
    """The transport rejected or lost a publish."""
    pass


EventCallback = Callable[[dict[str, Any]], None]


@dataclass(eq=False)
class Subscription:
    """Handle for one logical listener on one channel."""

    channel: str
    on_event: EventCallback
    on_closed: Optional[Callable[[], None]] = None
    active: bool = True


class ChannelBus:
    """Shared pub/sub multiplexer with reconnect and bounded readiness waits."""

    def __init__(
        self,
        transport: BusTransport,
        ready_timeout: float = 5.0,
        reconnect_delay: float = 0.5,
        max_reconnect_delay: float = 10.0,
        poll_interval: float = 1.0,
    ):
        self.transport = transport
        self.ready_timeout = ready_timeout
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.poll_interval = poll_interval

        self.state = BusState.INITIALIZING
        self._ready = asyncio.Event()
        self._listeners: dict[str, list[Subscription]] = {}
        self._sub_lock = asyncio.Lock()
        self._reader: Optional[asyncio.Task] = None
        self._last_error: Optional[str] = None

    # ─── Lifecycle ──────────────────────────────────────

    async def start(self) -> None:
        """Spawn the reader task. Connecting happens inside it, so an
        unreachable transport at startup leaves the bus DEGRADED-retrying
        instead of failing the process."""
        if self._reader is not None:
            return
        self._reader = asyncio.create_task(self._run(), name="channel-bus-reader")
        logger.info("bus.starting", transport=self.transport.name)

    async def wait_ready(self, timeout: Optional[float] = None) -> None:
        """Block until READY or raise BusUnavailable after timeout."""
        if self.state is BusState.CLOSED:
            raise BusUnavailable("channel bus is closed")
        if self._ready.is_set():
            return
        wait = self.ready_timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(self._ready.wait(), wait)
        except asyncio.TimeoutError:
            raise BusUnavailable(
                f"channel bus not ready after {wait}s (state={self.state.value}, "
                f"last_error={self._last_error})"
            ) from None
        if self.state is BusState.CLOSED:
            raise BusUnavailable("channel bus is closed")

    async def stop(self) -> None:
        """Stop reading, end every live subscription, release the transport."""
        if self.state is BusState.CLOSED:
            return
        self.state = BusState.CLOSED
        # Wake anyone blocked in wait_ready(); they re-check state and raise.
        self._ready.set()

        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None

        async with self._sub_lock:
            listeners = [s for subs in self._listeners.values() for s in subs]
            self._listeners.clear()
        for sub in listeners:
            sub.active = False
            if sub.on_closed is not None:
                sub.on_closed()

        await self.transport.close()
        logger.info("bus.stopped", transport=self.transport.name, released=len(listeners))

    # ─── Publish / subscribe ────────────────────────────

    async def publish(self, channel: str, event: dict[str, Any]) -> int:
        """Serialize event as JSON and publish it on channel.

        Returns the number of transport-level receivers (instances, not
        consumers). Safe to call concurrently.
        """
        payload = json.dumps(event)
        await self.wait_ready()
        try:
            receivers = await self.transport.publish(channel, payload)
        except TransportError as e:
            self._degrade(e)
            raise PublishFailure(f"publish to {channel} failed: {e}") from e
        logger.debug("bus.published", channel=channel, receivers=receivers)
        return receivers

    async def subscribe(
        self,
        channel: str,
        on_event: EventCallback,
        on_closed: Optional[Callable[[], None]] = None,
    ) -> Subscription:
        """Register a logical listener. Transport SUBSCRIBE only for the first."""
        await self.wait_ready()
        sub = Subscription(channel=channel, on_event=on_event, on_closed=on_closed)
        async with self._sub_lock:
            listeners = self._listeners.get(channel)
            if listeners:
                listeners.append(sub)
            else:
                try:
                    await self.transport.subscribe(channel)
                except TransportError as e:
                    self._degrade(e)
                    raise BusUnavailable(f"subscribe to {channel} failed: {e}") from e
                # Registered only after the transport accepted it.
                self._listeners[channel] = [sub]
                logger.debug("bus.channel_subscribed", channel=channel)
        return sub

    async def unsubscribe(self, sub: Subscription) -> None:
        """Remove a logical listener. Transport UNSUBSCRIBE for the last one.

        Never waits for readiness: a degraded transport drops its channels
        anyway, and reconnect only restores channels that still have listeners.
        """
        async with self._sub_lock:
            if not sub.active:
                return
            sub.active = False
            listeners = self._listeners.get(sub.channel)
            if listeners is None or sub not in listeners:
                return
            listeners.remove(sub)
            if listeners:
                return
            del self._listeners[sub.channel]
            if self.state is not BusState.READY:
                return
            try:
                await self.transport.unsubscribe(sub.channel)
                logger.debug("bus.channel_unsubscribed", channel=sub.channel)
            except TransportError as e:
                self._degrade(e)

    def listener_count(self, channel: str) -> int:
        return len(self._listeners.get(channel, ()))

    @property
    def channels(self) -> list[str]:
        return sorted(self._listeners)

    # ─── Reader loop ────────────────────────────────────

    async def _run(self) -> None:
        """Connect, read, dispatch; reconnect with backoff on transport errors."""
        delay = self.reconnect_delay
        while self.state is not BusState.CLOSED:
            if self.state is not BusState.READY:
                try:
                    await self._connect()
                    delay = self.reconnect_delay
                except TransportError as e:
                    self._last_error = str(e)
                    logger.warning(
                        "bus.connect_failed",
                        transport=self.transport.name,
                        error=str(e),
                        retry_in=delay,
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self.max_reconnect_delay)
                    continue

            try:
                item = await self.transport.read(self.poll_interval)
            except TransportError as e:
                self._degrade(e)
                continue
            if item is not None:
                self._dispatch(*item)

    async def _connect(self) -> None:
        reconnecting = self.state is BusState.DEGRADED
        await self.transport.close()
        await self.transport.connect()
        async with self._sub_lock:
            for channel in self._listeners:
                await self.transport.subscribe(channel)
            self.state = BusState.READY
            self._last_error = None
            self._ready.set()
        logger.info(
            "bus.reconnected" if reconnecting else "bus.ready",
            transport=self.transport.name,
            channels=len(self._listeners),
        )

    def _degrade(self, error: Exception) -> None:
        self._last_error = str(error)
        if self.state is not BusState.READY:
            return
        self.state = BusState.DEGRADED
        self._ready.clear()
        logger.warning("bus.degraded", transport=self.transport.name, error=str(error))

    def _dispatch(self, channel: str, data: str) -> None:
        listeners = self._listeners.get(channel)
        if not listeners:
            return
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("bus.undecodable_event", channel=channel)
            return
        for sub in list(listeners):
            try:
                sub.on_event(event)
            except Exception:
                logger.exception("bus.listener_error", channel=channel)
