"""User API tests.

Pattern: test_<verb>_<noun>_<scenario>
"""

import uuid

import pytest

from conftest import create_user, join_general


@pytest.mark.asyncio
async def test_create_user(client):
    """POST /api/v1/users should create a user with a public uuid."""
    resp = await client.post(
        "/api/v1/users", json={"username": "alice", "email": "alice@example.com"}
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["username"] == "alice"
    assert data["email"] == "alice@example.com"
    assert data["is_active"] is True
    assert uuid.UUID(data["id"])
    assert "created_at" in data


@pytest.mark.asyncio
async def test_create_user_duplicate_username_conflicts(client):
    await create_user(client, "alice")
    resp = await client.post("/api/v1/users", json={"username": "alice"})
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_create_user_duplicate_email_conflicts(client):
    await client.post("/api/v1/users", json={"username": "alice", "email": "a@example.com"})
    resp = await client.post("/api/v1/users", json={"username": "alice2", "email": "a@example.com"})
    assert resp.status_code == 409


@pytest.mark.asyncio
@pytest.mark.parametrize("username", ["ab", "has space", "bad-dash", "x" * 51])
async def test_create_user_validates_username(client, username):
    resp = await client.post("/api/v1/users", json={"username": username})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_get_user(client):
    user = await create_user(client, "alice")
    resp = await client.get(f"/api/v1/users/{user['id']}")
    assert resp.status_code == 200
    assert resp.json() == user


@pytest.mark.asyncio
async def test_get_user_not_found(client):
    resp = await client.get(f"/api/v1/users/{uuid.uuid4()}")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_get_user_by_username(client):
    user = await create_user(client, "alice")
    resp = await client.get("/api/v1/users/by-username/alice")
    assert resp.status_code == 200
    assert resp.json()["id"] == user["id"]

    resp = await client.get("/api/v1/users/by-username/nobody")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_list_user_chats(client):
    alice = await create_user(client, "alice")
    bob = await create_user(client, "bob")
    general_id = await join_general(client, alice["id"])
    r = await client.post(
        "/api/v1/chats",
        json={"name": "pair", "created_by": alice["id"], "participant_ids": [bob["id"]]},
    )
    assert r.status_code == 201

    resp = await client.get(f"/api/v1/users/{alice['id']}/chats")
    assert resp.status_code == 200
    ids = {c["id"] for c in resp.json()}
    assert ids == {general_id, r.json()["id"]}

    resp = await client.get(f"/api/v1/users/{bob['id']}/chats")
    assert [c["id"] for c in resp.json()] == [r.json()["id"]]
