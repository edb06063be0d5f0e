"""Table state handling for a WebSocket client: replay, session check, actions."""

from __future__ import annotations

from collections.abc import Awaitable
from typing import Any, TypeVar

from redis.exceptions import RedisError

T = TypeVar("T")

ACTION_FIELD = "action"
TIME_FIELD = "time"
TIME_ACTION = "time"
NO_ACTION = "no action"


async def _quiet(awaitable: Awaitable[T], default: Any = None) -> T | Any:
    try:
        return await awaitable
    except RedisError:
        return default


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


async def initial_message(client: Any, table: str) -> str | None:
    """Return the table's last action for a newly connected client, if any."""
    action = _text(await _quiet(client.hget(table, ACTION_FIELD)))
    time = _text(await _quiet(client.hget(table, TIME_FIELD)))
    if action is None:
        return None
    if action == TIME_ACTION and time is not None and time != "0":
        return f"{action} {time}"
    return action


async def session_is_valid(client: Any, session: str, table: str) -> bool:
    """True if the session key exists and names this table."""
    if not await _quiet(client.exists(session), 0):
        return False
    stored = _text(await _quiet(client.get(session))) or ""
    return stored == table


async def process_message(client: Any, session: str, table: str, text: str) -> str | None:
    """Apply a client's action to the table and publish it.

    Returns the published text, or None when the session is not valid.
    """
    if not await session_is_valid(client, session, table):
        print(f"invalid session trying to send {text}")
        return None

    outgoing = text
    if text == TIME_ACTION:
        if await _quiet(client.hexists(table, TIME_FIELD), False):
            value = int(await _quiet(client.hincrby(table, TIME_FIELD, 1), 0))
        else:
            await _quiet(client.hset(table, TIME_FIELD, 0))
            value = 0
        if value > 0:
            outgoing = f"{text} {value}"
    if text == NO_ACTION and await _quiet(client.hexists(table, TIME_FIELD), False):
        await _quiet(client.hdel(table, TIME_FIELD))

    await _quiet(client.publish(table, outgoing))
    await _quiet(client.hset(table, ACTION_FIELD, text))
    return outgoing