"""ChatRelay CLI — talk to a set of replicas from the terminal.

Usage:
    chatrelay create-user alice                  # Register a user
    chatrelay join-general alice                 # Join the general chat
    chatrelay send alice "hello"                 # Send to the general chat
    chatrelay send alice "hi" --chat-id <uuid>   # Send to a specific chat
    chatrelay history --limit 20                 # Newest messages first
    chatrelay stream-url                         # ws:// URL to stream a chat
    chatrelay serve                              # Run one API instance

Replica lists come from CHATRELAY_USER_URLS, CHATRELAY_CHAT_URLS and
CHATRELAY_STREAM_URLS (comma-separated). Each call picks the next replica.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import sys
from typing import Optional

import click
import httpx

from chatrelay import __version__
from chatrelay.cli.client import ChatClient
from chatrelay.cli.router import InstanceRouter

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        # No running loop — normal CLI invocation
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _client(ctx: click.Context) -> ChatClient:
    """Build a ChatClient from the context (tests inject router/transport)."""
    obj = ctx.obj or {}
    router = obj.get("router") or InstanceRouter.from_env()
    return ChatClient(router, transport=obj.get("transport"))


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


def _call(ctx: click.Context, impl, *args):
    """Run one command body, turning HTTP failures into a clean exit."""
    try:
        return _run(impl(_client(ctx), *args))
    except httpx.HTTPStatusError as e:
        try:
            detail = e.response.json().get("detail", e.response.text)
        except ValueError:
            detail = e.response.text
        _fail(f"{e.response.status_code} {detail}")
    except httpx.TransportError as e:
        _fail(f"could not reach {e.request.url if e.request else 'server'}: {e}")


async def _resolve_user(c: ChatClient, username: str) -> dict:
    return await c.get_user_by_username(username)


async def _resolve_chat(c: ChatClient, chat_id: Optional[str]) -> str:
    if chat_id:
        return chat_id
    return (await c.get_general_chat())["id"]


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="chatrelay")
@click.pass_context
def main(ctx: click.Context):
    """ChatRelay — multi-instance real-time chat."""
    ctx.ensure_object(dict)


# ---------------------------------------------------------------------------
# chatrelay create-user
# ---------------------------------------------------------------------------


@main.command("create-user")
@click.argument("username")
@click.option("--email", help="Optional email address")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.pass_context
def create_user(ctx: click.Context, username: str, email: Optional[str], as_json: bool):
    """Register USERNAME."""
    user = _call(ctx, _create_user_impl, username, email)
    if as_json:
        click.echo(_pretty_json(user))
    else:
        click.secho(f"Created user {user['username']} ({user['id']})", fg="green")


async def _create_user_impl(c: ChatClient, username: str, email: Optional[str]):
    async with c:
        return await c.create_user(username, email)


# ---------------------------------------------------------------------------
# chatrelay join-general
# ---------------------------------------------------------------------------


@main.command("join-general")
@click.argument("username")
@click.pass_context
def join_general(ctx: click.Context, username: str):
    """Add USERNAME to the general chat (safe to repeat)."""
    membership = _call(ctx, _join_general_impl, username)
    click.secho(f"{username} joined general chat {membership['chat_id']}", fg="green")


async def _join_general_impl(c: ChatClient, username: str):
    async with c:
        user = await _resolve_user(c, username)
        return await c.join_general_chat(user["id"])


# ---------------------------------------------------------------------------
# chatrelay send
# ---------------------------------------------------------------------------


@main.command()
@click.argument("username")
@click.argument("content")
@click.option("--chat-id", "-c", help="Chat UUID (default: the general chat)")
@click.pass_context
def send(ctx: click.Context, username: str, content: str, chat_id: Optional[str]):
    """Send CONTENT as USERNAME."""
    message = _call(ctx, _send_impl, username, content, chat_id)
    click.echo(f"[{message['created_at']}] {message['sender_username']}: {message['content']}")


async def _send_impl(c: ChatClient, username: str, content: str, chat_id: Optional[str]):
    async with c:
        user = await _resolve_user(c, username)
        cid = await _resolve_chat(c, chat_id)
        return await c.send_message(cid, user["id"], content)


# ---------------------------------------------------------------------------
# chatrelay history
# ---------------------------------------------------------------------------


@main.command()
@click.option("--chat-id", "-c", help="Chat UUID (default: the general chat)")
@click.option("--limit", "-n", type=int, default=None, help="Max messages")
@click.option("--offset", type=int, default=0, help="Skip this many newest messages")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.pass_context
def history(ctx: click.Context, chat_id: Optional[str], limit: Optional[int],
            offset: int, as_json: bool):
    """Show chat history, oldest of the page first."""
    messages = _call(ctx, _history_impl, chat_id, limit, offset)
    if as_json:
        click.echo(_pretty_json(messages))
        return
    if not messages:
        click.echo("No messages.")
        return
    for m in reversed(messages):
        edited = click.style(" (edited)", fg="yellow") if m.get("edited_at") else ""
        click.echo(f"[{m['created_at']}] {m['sender_username']}: {m['content']}{edited}")


async def _history_impl(c: ChatClient, chat_id: Optional[str], limit: Optional[int],
                        offset: int):
    async with c:
        cid = await _resolve_chat(c, chat_id)
        return await c.chat_history(cid, limit=limit, offset=offset)


# ---------------------------------------------------------------------------
# chatrelay stream-url
# ---------------------------------------------------------------------------


@main.command("stream-url")
@click.option("--chat-id", "-c", help="Chat UUID (default: the general chat)")
@click.pass_context
def stream_url(ctx: click.Context, chat_id: Optional[str]):
    """Print the WebSocket URL to stream a chat from (next stream replica)."""
    click.echo(_call(ctx, _stream_url_impl, chat_id))


async def _stream_url_impl(c: ChatClient, chat_id: Optional[str]):
    async with c:
        cid = await _resolve_chat(c, chat_id)
        return c.stream_url(cid)


# ---------------------------------------------------------------------------
# chatrelay serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: CHATRELAY_HOST)")
@click.option("--port", type=int, default=None, help="Port (default: CHATRELAY_PORT)")
def serve(host: Optional[str], port: Optional[int]):
    """Run one API instance with uvicorn."""
    import uvicorn

    from chatrelay.config import settings

    uvicorn.run(
        "chatrelay.main:app",
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
