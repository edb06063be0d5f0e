"""HTTP and WebSocket front end: table listing, live table sessions, startup."""

from __future__ import annotations

import argparse
import asyncio
import functools
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import WSMsgType, web
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from . import config
from .pubsub import ConnectionRegistry, listener
from .session import initial_message, process_message
from .tables import list_hash_tables

CORS_PATHS = frozenset({"/tables"})
CORS_METHODS = ("GET", "POST", "OPTIONS")
CORS_HEADERS = ("Content-Type", "Authorization")

ListenerFactory = Callable[[ConnectionRegistry, str, str], Awaitable[None]]


class Listeners:
    """One running pub/sub listener task per channel."""

    def __init__(self, spawn: ListenerFactory = listener) -> None:
        self._spawn = spawn
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def ensure(
        self, channel: str, connections: ConnectionRegistry, redis_url: str
    ) -> asyncio.Task[None]:
        """Start a listener for the channel unless one is already registered."""
        task = self._tasks.get(channel)
        if task is None:
            task = asyncio.create_task(self._spawn(connections, redis_url, channel))
            task.add_done_callback(functools.partial(_report_failure, channel))
            self._tasks[channel] = task
        return task

    def cancel(self, channel: str) -> bool:
        """Stop the channel's listener; return False if there was none."""
        task = self._tasks.pop(channel, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def close(self) -> None:
        """Cancel every listener and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def __contains__(self, channel: object) -> bool:
        return channel in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)


def _report_failure(channel: str, task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        print(f"Listener for channel {channel!r} stopped: {exc}", file=sys.stderr)


REDIS_CLIENT: web.AppKey[Any] = web.AppKey("redis_client", object)
CONNECTIONS: web.AppKey[ConnectionRegistry] = web.AppKey("connections", ConnectionRegistry)
REDIS_URL: web.AppKey[str] = web.AppKey("redis_url", str)
LISTENERS: web.AppKey[Listeners] = web.AppKey("listeners", Listeners)
REDIS_LOCK: web.AppKey[asyncio.Lock] = web.AppKey("redis_lock", asyncio.Lock)


def _preflight(request: web.Request, origin: str) -> web.Response:
    method = request.headers.get("Access-Control-Request-Method", "").upper()
    if method not in CORS_METHODS:
        raise web.HTTPForbidden(text="CORS request forbidden: method not allowed")
    allowed = {name.lower() for name in CORS_HEADERS}
    requested = request.headers.get("Access-Control-Request-Headers", "")
    for name in (part.strip().lower() for part in requested.split(",")):
        if name and name not in allowed:
            raise web.HTTPForbidden(text="CORS request forbidden: header not allowed")
    return web.Response(
        headers={
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Allow-Methods": ", ".join(CORS_METHODS),
            "Access-Control-Allow-Headers": ", ".join(h.lower() for h in CORS_HEADERS),
        }
    )


@web.middleware
async def _cors(request: web.Request, handler: Callable[[web.Request], Awaitable[Any]]) -> Any:
    origin = request.headers.get("Origin")
    if request.path not in CORS_PATHS or origin is None:
        return await handler(request)
    if request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers:
        return _preflight(request, origin)
    response = await handler(request)
    response.headers["Access-Control-Allow-Origin"] = origin
    response.headers["Access-Control-Allow-Credentials"] = "true"
    return response


async def _tables(request: web.Request) -> web.Response:
    app = request.app
    try:
        async with app[REDIS_LOCK]:
            tables = await list_hash_tables(app[REDIS_CLIENT])
    except RedisError as exc:
        print(f"Error fetching hash keys: {exc!r}", file=sys.stderr)
        raise web.HTTPInternalServerError() from exc
    print(f"Hash maps: {tables}")
    return web.json_response(tables)


async def _forward(outbox: asyncio.Queue[str], ws: web.WebSocketResponse) -> None:
    while True:
        message = await outbox.get()
        try:
            await ws.send_str(message)
        except (ConnectionError, RuntimeError):
            return


async def _websocket(request: web.Request) -> web.WebSocketResponse:
    app = request.app
    client = app[REDIS_CLIENT]
    connections = app[CONNECTIONS]
    listeners = app[LISTENERS]
    lock = app[REDIS_LOCK]
    session_key = request.query.get("session", "")
    table = request.query.get("tablename", "")

    ws = web.WebSocketResponse()
    await ws.prepare(request)

    outbox: asyncio.Queue[str] = asyncio.Queue()
    connections.add(table, outbox)
    listeners.ensure(table, connections, app[REDIS_URL])

    sender: asyncio.Task[None] | None = None
    try:
        async with lock:
            greeting = await initial_message(client, table)
        if greeting is not None:
            try:
                await ws.send_str(greeting)
            except (ConnectionError, RuntimeError):
                return ws
        sender = asyncio.create_task(_forward(outbox, ws))
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                async with lock:
                    await process_message(client, session_key, table, msg.data)
            elif msg.type == WSMsgType.ERROR:
                break
    finally:
        if sender is not None:
            sender.cancel()
        if connections.remove(table, outbox):
            listeners.cancel(table)
    return ws


async def _stop_listeners(app: web.Application) -> None:
    await app[LISTENERS].close()


def create_app(
    redis_client: Any, connections: ConnectionRegistry, redis_url: str
) -> web.Application:
    """Build the application serving ``/tables`` and ``/ws``."""
    app = web.Application(middlewares=[_cors])
    app[REDIS_CLIENT] = redis_client
    app[CONNECTIONS] = connections
    app[REDIS_URL] = redis_url
    app[LISTENERS] = Listeners()
    app[REDIS_LOCK] = asyncio.Lock()
    app.router.add_get("/tables", _tables)
    app.router.add_get("/ws", _websocket)
    app.on_cleanup.append(_stop_listeners)
    return app


async def _check_redis(app: web.Application) -> None:
    await app[REDIS_CLIENT].ping()


async def _close_redis(app: web.Application) -> None:
    await app[REDIS_CLIENT].aclose()


def main(argv: list[str] | None = None) -> int:
    """Start the server using settings from the environment."""
    parser = argparse.ArgumentParser(
        prog="wsredis",
        description="WebSocket relay for table state kept in Redis.",
    )
    parser.parse_args(argv)

    url, server = config.create()
    try:
        client = aioredis.from_url(url, decode_responses=True)
    except ValueError as exc:
        print(f"Failed to connect to Redis: {exc}", file=sys.stderr)
        return 1

    app = create_app(client, ConnectionRegistry(), url)
    app.on_startup.append(_check_redis)
    app.on_cleanup.append(_close_redis)
    web.run_app(app, host=str(server.host), port=server.port)
    return 0