"""WebSocket endpoint — live message delivery to chat clients.

Learn: Each client connects to /ws/chats/{chat_id}. The handler:
1. Checks the chat exists (close code 4404 if not)
2. Opens one SubscriptionConsumer on the chat's channel
3. Forwards every event to the client as a JSON text frame
4. Closes the consumer the moment either side goes away

This is a long-lived connection — one per chat per client. The instance
serving it doesn't have to be the one that received the send: the bus
fans every published event out to all instances.
"""

import asyncio
import json
import uuid
from typing import Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.websockets import WebSocketState

from chatrelay.config import settings
from chatrelay.db.engine import get_db
from chatrelay.db.store import ChatStore
from chatrelay.realtime.bus import BusUnavailable, ChannelBus
from chatrelay.realtime.consumer import SubscriptionConsumer
from chatrelay.realtime.pubsub import get_bus, message_channel

logger = structlog.get_logger()
router = APIRouter()

# Close codes
CHAT_NOT_FOUND = 4404
TRY_AGAIN_LATER = 1013
GOING_AWAY = 1001


async def forward_events(
    consumer: SubscriptionConsumer,
    send_text: Callable[[str], Awaitable[None]],
) -> int:
    """Pull events off the consumer and send each as JSON until it closes.

    Returns the number of events forwarded.
    """
    forwarded = 0
    async for event in consumer:
        await send_text(json.dumps(event))
        forwarded += 1
    return forwarded


async def answer_client(
    receive_text: Callable[[], Awaitable[str]],
    send_text: Callable[[str], Awaitable[None]],
) -> None:
    """Read client frames until disconnect. {"type": "ping"} gets a pong."""
    while True:
        data = await receive_text()
        try:
            msg = json.loads(data)
        except json.JSONDecodeError:
            continue
        if isinstance(msg, dict) and msg.get("type") == "ping":
            await send_text(json.dumps({"type": "pong"}))


@router.websocket("/ws/chats/{chat_id}")
async def chat_websocket(
    websocket: WebSocket,
    chat_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    bus: ChannelBus = Depends(get_bus),
):
    """Stream message.added / message.edited / message.deleted events.

    Learn: Two concurrent tasks run:
    1. Bus forwarder — pulls from the consumer, sends to the WebSocket
    2. Client listener — answers pings, notices disconnects

    When either finishes, the other is cancelled and the consumer closed.
    """
    # ── Chat lookup ─────────────────────────────────────────
    chat = await ChatStore(db).get_chat(chat_id)
    # Don't hold a pooled connection for the lifetime of the socket.
    await db.close()
    if chat is None:
        await websocket.close(code=CHAT_NOT_FOUND, reason="Chat not found")
        return

    # ── Subscribe before accepting ──────────────────────────
    channel = message_channel(chat.uuid)
    try:
        consumer = await SubscriptionConsumer.open(
            bus, channel, max_queue=settings.consumer_max_queue
        )
    except BusUnavailable as e:
        logger.warning("ws.bus_unavailable", chat_id=str(chat_id), error=str(e))
        await websocket.close(code=TRY_AGAIN_LATER, reason="Real-time delivery unavailable")
        return

    await websocket.accept()
    log = logger.bind(chat_id=str(chat_id), channel=channel)
    log.info("ws.connected")

    forward_task = asyncio.create_task(forward_events(consumer, websocket.send_text))
    client_task = asyncio.create_task(
        answer_client(websocket.receive_text, websocket.send_text)
    )

    try:
        done, pending = await asyncio.wait(
            [forward_task, client_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                log.warning("ws.task_failed", error=str(error))
    finally:
        await consumer.close()
        if websocket.client_state == WebSocketState.CONNECTED:
            if consumer.overflowed:
                await websocket.close(code=TRY_AGAIN_LATER, reason="Client too slow")
            else:
                await websocket.close(code=GOING_AWAY)
        log.info("ws.disconnected", overflowed=consumer.overflowed)
