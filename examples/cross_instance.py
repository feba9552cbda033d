#!/usr/bin/env python3
"""
ChatRelay across replicas — sends round-robin over two instances.

Start two instances against the same database and Redis:
    CHATRELAY_INSTANCE_NAME=a chatrelay serve --port 8001
    CHATRELAY_INSTANCE_NAME=b chatrelay serve --port 8002

Then: python examples/cross_instance.py

Every call goes through the InstanceRouter, so consecutive sends land on
alternating replicas. History read from either replica shows them all,
and a WebSocket opened on either replica receives them all live.
"""

import asyncio
import os

import httpx

from chatrelay.cli.client import ChatClient
from chatrelay.cli.router import InstanceRouter
from _common import check_backend, create_demo_users

REPLICAS = os.environ.get(
    "CHATRELAY_CHAT_URLS", "http://localhost:8001,http://localhost:8002"
).split(",")


async def run(router: InstanceRouter, users: list[dict]):
    async with ChatClient(router) as c:
        for user in users:
            membership = await c.join_general_chat(user["id"])
        chat_id = membership["chat_id"]

        print("\n2. Open one of these in a WebSocket client to watch live:")
        for _ in REPLICAS:
            print(f"   {c.stream_url(chat_id)}")

        print("\n3. Sending, round-robin across replicas...")
        for n in range(4):
            user = users[n % len(users)]
            msg = await c.send_message(chat_id, user["id"], f"message #{n}")
            print(f"   {msg['sender_username']}: {msg['content']}")

        print("\n4. History:")
        for msg in reversed(await c.chat_history(chat_id, limit=4)):
            print(f"   {msg['sender_username']}: {msg['content']}")


def main():
    for url in REPLICAS:
        check_backend(f"{url}/api/v1")

    print("\n1. Creating users...")
    with httpx.Client(base_url=f"{REPLICAS[0]}/api/v1", timeout=10) as client:
        users = create_demo_users(client, "alice", "bob")

    router = InstanceRouter(REPLICAS, REPLICAS)
    asyncio.run(run(router, users))
    print("\n✓ Done.")


if __name__ == "__main__":
    main()
