#!/usr/bin/env python3
"""
ChatRelay Quickstart — the send pipeline in one script.

Creates two users → joins the general chat → sends → reads history.
Run with: python examples/quickstart.py

Requires: pip install httpx
Backend must be running: http://localhost:8000
"""

import httpx

from _common import BASE, check_backend, create_demo_users


def main():
    check_backend()
    client = httpx.Client(base_url=BASE, timeout=10)

    # ── Users ─────────────────────────────────────────────────────
    print("\n1. Creating users...")
    alice, bob = create_demo_users(client, "alice", "bob")

    # ── General chat (created by the first instance that booted) ──
    print("\n2. Joining the general chat...")
    for user in (alice, bob):
        resp = client.post("/chats/general/join", json={"user_id": user["id"]})
        assert resp.status_code == 200, f"Failed: {resp.text}"
    chat_id = resp.json()["chat_id"]
    print(f"   Chat: {chat_id[:8]}...")
    print(f"   Stream it live at: ws://localhost:8000/ws/chats/{chat_id}")

    # ── Send ──────────────────────────────────────────────────────
    print("\n3. Sending messages...")
    for user, content in ((alice, "hello"), (bob, "hi")):
        resp = client.post(f"/chats/{chat_id}/messages", json={
            "sender_id": user["id"],
            "content": content,
        })
        assert resp.status_code == 201, f"Failed: {resp.text}"
        msg = resp.json()
        print(f"   {msg['sender_username']}: {msg['content']}  ({msg['id'][:8]}...)")

    # ── Not a member → 403, nothing stored, nothing published ─────
    print("\n4. Sending as a non-member...")
    (mallory,) = create_demo_users(client, "mallory")
    resp = client.post(f"/chats/{chat_id}/messages", json={
        "sender_id": mallory["id"],
        "content": "let me in",
    })
    print(f"   → {resp.status_code} {resp.json()['detail']}")

    # ── History ───────────────────────────────────────────────────
    print("\n5. History (newest first):")
    resp = client.get(f"/chats/{chat_id}/messages", params={"limit": 5})
    for msg in resp.json():
        print(f"   [{msg['created_at']}] {msg['sender_username']}: {msg['content']}")

    print("\n✓ Done.")


if __name__ == "__main__":
    main()
