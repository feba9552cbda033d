"""Message API tests — the send pipeline end to end over HTTP.

Learn: `client` and a second client built with make_client() are two app
instances with separate buses on one hub, like two replicas behind a load
balancer sharing one Redis and one database.
"""

import uuid

import pytest

from chatrelay.realtime.consumer import SubscriptionConsumer
from chatrelay.realtime.pubsub import message_channel
from conftest import create_user, join_general


@pytest.fixture
async def general(client):
    alice = await create_user(client, "alice")
    bob = await create_user(client, "bob")
    chat_id = await join_general(client, alice["id"])
    await join_general(client, bob["id"])
    return chat_id, alice, bob


async def send(client, chat_id, sender_id, content):
    return await client.post(
        f"/api/v1/chats/{chat_id}/messages",
        json={"sender_id": sender_id, "content": content},
    )


# ═══════════════════════════════════════════════════════════
# Send
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_send_message(client, general):
    chat_id, alice, _ = general
    r = await send(client, chat_id, alice["id"], "hello")
    assert r.status_code == 201
    msg = r.json()
    assert uuid.UUID(msg["id"])
    assert msg["chat_id"] == chat_id
    assert msg["sender_id"] == alice["id"]
    assert msg["sender_username"] == "alice"
    assert msg["content"] == "hello"
    assert msg["edited_at"] is None
    assert msg["is_deleted"] is False


@pytest.mark.asyncio
async def test_send_reaches_listener_on_other_instance(client, general, make_bus, make_client):
    """Sent via instance A, received by a consumer on instance B."""
    chat_id, alice, bob = general
    bus_b = await make_bus()
    client_b = await make_client(bus_b)
    consumer = await SubscriptionConsumer.open(bus_b, message_channel(chat_id))

    r = await send(client, chat_id, alice["id"], "hello")
    event = await consumer.next(timeout=1.0)
    assert event == {"type": "message.added", "message": r.json()}

    history = await client_b.get(f"/api/v1/chats/{chat_id}/messages")
    assert history.json() == [event["message"]]

    r = await send(client_b, chat_id, bob["id"], "hi")
    event = await consumer.next(timeout=1.0)
    assert event["message"]["content"] == "hi"
    assert event["message"]["sender_id"] == bob["id"]
    await consumer.close()


@pytest.mark.asyncio
async def test_send_non_participant_forbidden(client, general):
    chat_id, _, _ = general
    carol = await create_user(client, "carol")
    r = await send(client, chat_id, carol["id"], "hey")
    assert r.status_code == 403

    r = await client.get(f"/api/v1/chats/{chat_id}/messages")
    assert r.json() == []


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   "])
async def test_send_blank_content_rejected(client, general, content):
    chat_id, alice, _ = general
    r = await send(client, chat_id, alice["id"], content)
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_send_too_long_rejected(client, general):
    chat_id, alice, _ = general
    r = await send(client, chat_id, alice["id"], "x" * 1001)
    assert r.status_code == 422
    assert "1000" in r.json()["detail"]


@pytest.mark.asyncio
async def test_send_unknown_chat_not_found(client, general):
    _, alice, _ = general
    r = await send(client, uuid.uuid4(), alice["id"], "hello?")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_send_succeeds_while_bus_down(client, general, hub):
    """Durable send, no real-time delivery: still 201."""
    chat_id, alice, _ = general
    hub.disconnect()
    r = await send(client, chat_id, alice["id"], "nobody hears this")
    assert r.status_code == 201

    r = await client.get(f"/api/v1/chats/{chat_id}/messages")
    assert [m["content"] for m in r.json()] == ["nobody hears this"]


# ═══════════════════════════════════════════════════════════
# History
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_history_newest_first(client, general):
    chat_id, alice, bob = general
    for n in range(3):
        await send(client, chat_id, alice["id"] if n % 2 == 0 else bob["id"], f"m{n}")

    r = await client.get(f"/api/v1/chats/{chat_id}/messages")
    assert r.status_code == 200
    assert [m["content"] for m in r.json()] == ["m2", "m1", "m0"]

    r = await client.get(f"/api/v1/chats/{chat_id}/messages", params={"limit": 1, "offset": 1})
    assert [m["content"] for m in r.json()] == ["m1"]


@pytest.mark.asyncio
async def test_history_validates_paging(client, general):
    chat_id, _, _ = general
    r = await client.get(f"/api/v1/chats/{chat_id}/messages", params={"limit": 0})
    assert r.status_code == 422
    r = await client.get(f"/api/v1/chats/{chat_id}/messages", params={"offset": -1})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_history_unknown_chat(client):
    r = await client.get(f"/api/v1/chats/{uuid.uuid4()}/messages")
    assert r.status_code == 404


# ═══════════════════════════════════════════════════════════
# Edit / delete
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_edit_message(client, general):
    chat_id, alice, _ = general
    msg = (await send(client, chat_id, alice["id"], "helo")).json()

    r = await client.patch(
        f"/api/v1/messages/{msg['id']}",
        json={"editor_id": alice["id"], "content": "hello"},
    )
    assert r.status_code == 200
    assert r.json()["content"] == "hello"
    assert r.json()["edited_at"] is not None


@pytest.mark.asyncio
async def test_edit_message_by_other_user_forbidden(client, general):
    chat_id, alice, bob = general
    msg = (await send(client, chat_id, alice["id"], "mine")).json()
    r = await client.patch(
        f"/api/v1/messages/{msg['id']}",
        json={"editor_id": bob["id"], "content": "ours"},
    )
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_delete_message(client, general):
    chat_id, alice, bob = general
    msg = (await send(client, chat_id, alice["id"], "oops")).json()

    r = await client.delete(f"/api/v1/messages/{msg['id']}", params={"user_id": bob["id"]})
    assert r.status_code == 403

    r = await client.delete(f"/api/v1/messages/{msg['id']}", params={"user_id": alice["id"]})
    assert r.status_code == 200
    assert r.json()["is_deleted"] is True

    r = await client.get(f"/api/v1/chats/{chat_id}/messages")
    assert r.json() == []

    r = await client.delete(f"/api/v1/messages/{msg['id']}", params={"user_id": alice["id"]})
    assert r.status_code == 404
