"""Channel bus tests — multiplexing, ordering, readiness, reconnect.

Learn: Every bus here sits on the test's MemoryHub, so two buses are two
instances sharing one broker. Events are collected with plain list.append
listeners; `drain()` gives the reader task time to dispatch.
"""

import asyncio

import pytest

from chatrelay.realtime.bus import BusState, BusUnavailable, ChannelBus, PublishFailure
from chatrelay.realtime.transport import MemoryHub, MemoryTransport, TransportError


async def drain(seconds: float = 0.1):
    await asyncio.sleep(seconds)


async def wait_for_state(bus: ChannelBus, state: BusState, timeout: float = 1.0):
    async def _poll():
        while bus.state is not state:
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_poll(), timeout)


# ═══════════════════════════════════════════════════════════
# Lifecycle
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_bus_becomes_ready(bus):
    assert bus.state is BusState.READY
    assert bus.channels == []


@pytest.mark.asyncio
async def test_wait_ready_times_out_when_hub_offline():
    """An unreachable transport never blocks forever."""
    hub = MemoryHub()
    hub.disconnect()
    bus = ChannelBus(MemoryTransport(hub), ready_timeout=0.1, reconnect_delay=0.01)
    await bus.start()
    try:
        with pytest.raises(BusUnavailable):
            await bus.wait_ready()
        assert bus.state is BusState.INITIALIZING
    finally:
        await bus.stop()


@pytest.mark.asyncio
async def test_stop_ends_subscriptions_and_rejects_new_work(bus):
    closed = []
    await bus.subscribe("c", lambda e: None, on_closed=lambda: closed.append(True))
    await bus.stop()

    assert bus.state is BusState.CLOSED
    assert closed == [True]
    assert bus.listener_count("c") == 0
    with pytest.raises(BusUnavailable):
        await bus.publish("c", {"n": 1})
    with pytest.raises(BusUnavailable):
        await bus.subscribe("c", lambda e: None)


# ═══════════════════════════════════════════════════════════
# Multiplexing
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_first_subscribe_issues_transport_subscribe_once(bus):
    """N listeners on one channel = one transport-level subscription."""
    subs = [await bus.subscribe("room", lambda e: None) for _ in range(3)]
    assert bus.listener_count("room") == 3
    assert bus.transport.channels == {"room"}

    await bus.unsubscribe(subs[0])
    await bus.unsubscribe(subs[1])
    assert bus.transport.channels == {"room"}

    await bus.unsubscribe(subs[2])
    assert bus.listener_count("room") == 0
    assert bus.transport.channels == set()
    assert bus.channels == []


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent(bus):
    sub_a = await bus.subscribe("room", lambda e: None)
    await bus.subscribe("room", lambda e: None)

    await bus.unsubscribe(sub_a)
    await bus.unsubscribe(sub_a)
    assert bus.listener_count("room") == 1


@pytest.mark.asyncio
async def test_concurrent_subscribe_and_unsubscribe_leave_consistent_state(bus):
    """Racing registrations on one channel can't leave it half-subscribed."""
    subs = await asyncio.gather(*[bus.subscribe("race", lambda e: None) for _ in range(20)])
    assert bus.listener_count("race") == 20
    assert bus.transport.channels == {"race"}

    await asyncio.gather(*[bus.unsubscribe(s) for s in subs])
    assert bus.listener_count("race") == 0
    assert "race" not in bus.transport.channels


@pytest.mark.asyncio
async def test_failed_transport_subscribe_registers_nothing(bus, monkeypatch):
    async def refuse(channel):
        raise TransportError("refused")

    monkeypatch.setattr(bus.transport, "subscribe", refuse)
    with pytest.raises(BusUnavailable):
        await bus.subscribe("room", lambda e: None)
    assert bus.listener_count("room") == 0


# ═══════════════════════════════════════════════════════════
# Delivery
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_publish_round_trips_json(bus):
    received = []
    await bus.subscribe("room", received.append)
    event = {"type": "message.added", "message": {"id": "abc", "content": "héllo"}}

    receivers = await bus.publish("room", event)
    await drain()

    assert receivers == 1
    assert received == [event]


@pytest.mark.asyncio
async def test_publish_without_listeners_is_dropped(bus):
    assert await bus.publish("nobody", {"n": 1}) == 0


@pytest.mark.asyncio
async def test_per_channel_order_is_preserved(bus):
    received = []
    await bus.subscribe("room", received.append)

    for n in range(50):
        await bus.publish("room", {"n": n})
    await drain(0.2)

    assert [e["n"] for e in received] == list(range(50))


@pytest.mark.asyncio
async def test_channels_are_isolated(bus):
    room_a, room_b = [], []
    await bus.subscribe("a", room_a.append)
    await bus.subscribe("b", room_b.append)

    await bus.publish("a", {"to": "a"})
    await drain()

    assert room_a == [{"to": "a"}]
    assert room_b == []


@pytest.mark.asyncio
async def test_cross_instance_fan_out(make_bus):
    """A publish on one instance reaches listeners on every instance."""
    instance_a = await make_bus()
    instance_b = await make_bus()
    got_a, got_b1, got_b2 = [], [], []
    await instance_a.subscribe("room", got_a.append)
    await instance_b.subscribe("room", got_b1.append)
    await instance_b.subscribe("room", got_b2.append)

    receivers = await instance_a.publish("room", {"n": 1})
    await drain()

    # Two instances subscribed at the transport level
    assert receivers == 2
    assert got_a == got_b1 == got_b2 == [{"n": 1}]


@pytest.mark.asyncio
async def test_failing_listener_does_not_starve_others(bus):
    received = []

    def explode(event):
        raise ValueError("listener bug")

    await bus.subscribe("room", explode)
    await bus.subscribe("room", received.append)
    await bus.publish("room", {"n": 1})
    await drain()

    assert received == [{"n": 1}]


# ═══════════════════════════════════════════════════════════
# Degraded → Ready
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_disconnect_degrades_and_reconnect_resubscribes(hub, make_bus):
    bus = await make_bus()
    received = []
    await bus.subscribe("room", received.append)

    hub.disconnect()
    await wait_for_state(bus, BusState.DEGRADED)

    hub.restore()
    await bus.wait_ready()
    assert bus.state is BusState.READY
    assert bus.transport.channels == {"room"}

    await bus.publish("room", {"after": "reconnect"})
    await drain()
    assert received == [{"after": "reconnect"}]


@pytest.mark.asyncio
async def test_publish_waits_for_readiness_then_times_out(hub, make_bus):
    bus = await make_bus(ready_timeout=0.1)
    hub.disconnect()
    await wait_for_state(bus, BusState.DEGRADED)

    with pytest.raises(BusUnavailable):
        await bus.publish("room", {"n": 1})


@pytest.mark.asyncio
async def test_publish_waits_and_succeeds_when_restored_in_time(hub, make_bus):
    bus = await make_bus(ready_timeout=2.0)
    received = []
    await bus.subscribe("room", received.append)
    hub.disconnect()
    await wait_for_state(bus, BusState.DEGRADED)

    publish = asyncio.create_task(bus.publish("room", {"n": 1}))
    await asyncio.sleep(0.05)
    assert not publish.done()

    hub.restore()
    assert await publish == 1
    await drain()
    assert received == [{"n": 1}]


@pytest.mark.asyncio
async def test_transport_publish_error_raises_publish_failure(bus, monkeypatch):
    async def broken(channel, data):
        raise TransportError("socket closed")

    monkeypatch.setattr(bus.transport, "publish", broken)
    with pytest.raises(PublishFailure, match="socket closed"):
        await bus.publish("room", {"n": 1})
    assert bus.state is BusState.DEGRADED


@pytest.mark.asyncio
async def test_unsubscribe_while_degraded_keeps_state_consistent(hub, make_bus):
    bus = await make_bus()
    sub = await bus.subscribe("room", lambda e: None)
    hub.disconnect()
    await wait_for_state(bus, BusState.DEGRADED)

    await bus.unsubscribe(sub)
    assert bus.listener_count("room") == 0

    hub.restore()
    await bus.wait_ready()
    # Channel with no listeners is not restored
    assert bus.transport.channels == set()
