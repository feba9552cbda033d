"""Subscription consumer — a pull-based, cancellable cursor over one channel.

Learn: The bus pushes (a synchronous callback from its reader task); a
WebSocket handler pulls (await next()). The consumer bridges the two with
a two-state buffer:

    event arrives, nobody waiting   → append to the queue
    event arrives, next() waiting   → hand it straight to the waiter
    next() called, queue non-empty  → pop the oldest (FIFO)
    next() called, queue empty      → become the single pending waiter

Rules:
- At most one next() in flight. A second concurrent call is a bug in the
  caller and raises ConsumerMisuse.
- close() is idempotent, deregisters from the bus (listener count drops
  by exactly one), discards anything still queued, and resolves a pending
  next() with None — the terminal "done" signal. Nothing hangs.
- A bounded queue that overflows closes the consumer. The slow client
  reconnects and catches up from history; the server holds no backlog.

Also usable as `async with` and `async for`.
"""

import asyncio
from collections import deque
from typing import Any, Optional

import structlog

from chatrelay.realtime.bus import ChannelBus, Subscription

logger = structlog.get_logger()


class ConsumerMisuse(RuntimeError):
    """next() called while another next() on the same consumer is pending."""
    pass


class SubscriptionConsumer:
    """One client's ordered view of one channel."""

    def __init__(self, bus: ChannelBus, channel: str, max_queue: int = 0):
        self.bus = bus
        self.channel = channel
        self.max_queue = max_queue
        self.overflowed = False
        self._queue: deque[dict[str, Any]] = deque()
        self._waiter: Optional[asyncio.Future] = None
        self._closed = False
        self._subscription: Optional[Subscription] = None
        self._closing: Optional[asyncio.Task] = None

    @classmethod
    async def open(
        cls, bus: ChannelBus, channel: str, max_queue: int = 0
    ) -> "SubscriptionConsumer":
        """Create a consumer and register it on the bus.

        Raises BusUnavailable if the bus doesn't become READY in time.
        """
        consumer = cls(bus, channel, max_queue=max_queue)
        consumer._subscription = await bus.subscribe(
            channel, consumer._push, on_closed=consumer._terminate
        )
        logger.debug("consumer.opened", channel=channel)
        return consumer

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Events buffered and not yet pulled."""
        return len(self._queue)

    async def next(self, timeout: Optional[float] = None) -> Optional[dict[str, Any]]:
        """Return the next event, or None once the consumer is closed.

        Raises asyncio.TimeoutError if timeout elapses first (the consumer
        stays open and usable).
        """
        if self._waiter is not None:
            raise ConsumerMisuse(f"concurrent next() on consumer for {self.channel}")
        if self._closed:
            return None
        if self._queue:
            return self._queue.popleft()

        waiter = asyncio.get_running_loop().create_future()
        self._waiter = waiter
        try:
            return await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            # Delivered in the same tick the timeout fired; keep it.
            if waiter.done() and not waiter.cancelled():
                return waiter.result()
            raise
        finally:
            if self._waiter is waiter:
                self._waiter = None

    async def close(self) -> None:
        """Stop delivery and deregister from the bus. Safe to call repeatedly."""
        self._terminate()
        sub, self._subscription = self._subscription, None
        if sub is not None:
            await self.bus.unsubscribe(sub)
            logger.debug("consumer.closed", channel=self.channel)

    # ─── Bus callbacks (run on the bus reader task) ─────

    def _push(self, event: dict[str, Any]) -> None:
        if self._closed:
            return
        waiter = self._waiter
        if waiter is not None and not waiter.done():
            # The slot stays taken until next() resumes and clears it.
            waiter.set_result(event)
            return
        if self.max_queue and len(self._queue) >= self.max_queue:
            self.overflowed = True
            logger.warning(
                "consumer.overflow", channel=self.channel, max_queue=self.max_queue
            )
            self._terminate()
            self._closing = asyncio.get_running_loop().create_task(self.close())
            return
        self._queue.append(event)

    def _terminate(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.clear()
        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    # ─── Protocols ──────────────────────────────────────

    async def __aenter__(self) -> "SubscriptionConsumer":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def __aiter__(self) -> "SubscriptionConsumer":
        return self

    async def __anext__(self) -> dict[str, Any]:
        event = await self.next()
        if event is None:
            raise StopAsyncIteration
        return event
