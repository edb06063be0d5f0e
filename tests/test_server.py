import asyncio
import fnmatch

import pytest
from aiohttp.test_utils import TestClient, TestServer
from redis.exceptions import RedisError

from wsredis.pubsub import ConnectionRegistry
from wsredis.server import LISTENERS, Listeners, create_app, main

REDIS_URL = "redis://localhost:6379"


class FakeRedis:
    def __init__(self, registry=None, fail=False):
        self.strings = {}
        self.hashes = {}
        self.published = []
        self.registry = registry
        self.fail = fail

    def _check(self):
        if self.fail:
            raise RedisError("down")

    async def scan(self, cursor, match=None):
        self._check()
        keys = sorted(list(self.strings) + list(self.hashes))
        page = keys[cursor:cursor + 2]
        nxt = cursor + 2 if cursor + 2 < len(keys) else 0
        if match is not None:
            page = [k for k in page if fnmatch.fnmatchcase(k, match)]
        return nxt, page

    async def type(self, key):
        self._check()
        if key in self.hashes:
            return "hash"
        if key in self.strings:
            return "string"
        return "none"

    async def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    async def exists(self, key):
        return int(key in self.strings or key in self.hashes)

    async def get(self, key):
        return self.strings.get(key)

    async def hexists(self, key, field):
        return field in self.hashes.get(key, {})

    async def hincrby(self, key, field, amount):
        h = self.hashes.setdefault(key, {})
        value = int(h.get(field, 0)) + amount
        h[field] = str(value)
        return value

    async def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = str(value)
        return 1

    async def hdel(self, key, field):
        return int(self.hashes.get(key, {}).pop(field, None) is not None)

    async def publish(self, channel, message):
        self.published.append((channel, message))
        if self.registry is not None:
            return self.registry.broadcast(channel, message)
        return 0


async def _idle(connections, redis_url, channel):
    await asyncio.Event().wait()


async def _wait_for(predicate):
    for _ in range(200):
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


def _app(redis, registry):
    app = create_app(redis, registry, REDIS_URL)
    app[LISTENERS] = Listeners(spawn=_idle)
    return app


@pytest.mark.asyncio
async def test_listeners_ensure_is_idempotent_and_cancel_stops():
    calls = []

    async def spawn(connections, redis_url, channel):
        calls.append((connections, redis_url, channel))
        await asyncio.Event().wait()

    registry = ConnectionRegistry()
    listeners = Listeners(spawn=spawn)
    first = listeners.ensure("table:1", registry, REDIS_URL)
    second = listeners.ensure("table:1", registry, REDIS_URL)
    assert first is second
    assert "table:1" in listeners
    await asyncio.sleep(0)
    assert calls == [(registry, REDIS_URL, "table:1")]
    assert listeners.cancel("table:1") is True
    await asyncio.gather(first, return_exceptions=True)
    assert first.cancelled()
    assert "table:1" not in listeners
    assert listeners.cancel("table:1") is False


@pytest.mark.asyncio
async def test_listener_failure_is_reported(capsys):
    async def boom(connections, redis_url, channel):
        raise RuntimeError("boom")

    listeners = Listeners(spawn=boom)
    task = listeners.ensure("table:9", ConnectionRegistry(), REDIS_URL)
    await asyncio.wait([task])
    await asyncio.sleep(0)
    assert "boom" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_tables_lists_only_hash_tables():
    redis = FakeRedis()
    redis.hashes = {"table:1": {"action": "a"}, "table:2": {}, "other:3": {}}
    redis.strings = {"table:x": "v", "session": "table:1"}
    async with TestClient(TestServer(_app(redis, ConnectionRegistry()))) as client:
        resp = await client.get("/tables")
        assert resp.status == 200
        assert sorted(await resp.json()) == ["table:1", "table:2"]


@pytest.mark.asyncio
async def test_tables_redis_error_is_server_error():
    redis = FakeRedis(fail=True)
    async with TestClient(TestServer(_app(redis, ConnectionRegistry()))) as client:
        resp = await client.get("/tables")
        assert resp.status == 500


@pytest.mark.asyncio
async def test_tables_cors_reflects_origin():
    origin = "http://app.example.com"
    async with TestClient(TestServer(_app(FakeRedis(), ConnectionRegistry()))) as client:
        resp = await client.get("/tables", headers={"Origin": origin})
        assert resp.headers["Access-Control-Allow-Origin"] == origin
        assert resp.headers["Access-Control-Allow-Credentials"] == "true"


@pytest.mark.asyncio
async def test_tables_preflight_allows_listed_methods_only():
    origin = "http://app.example.com"
    async with TestClient(TestServer(_app(FakeRedis(), ConnectionRegistry()))) as client:
        ok = await client.options(
            "/tables",
            headers={
                "Origin": origin,
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )
        assert ok.status == 200
        assert "POST" in ok.headers["Access-Control-Allow-Methods"]
        assert ok.headers["Access-Control-Allow-Origin"] == origin
        denied = await client.options(
            "/tables",
            headers={"Origin": origin, "Access-Control-Request-Method": "DELETE"},
        )
        assert denied.status == 403


@pytest.mark.asyncio
async def test_ws_requires_upgrade():
    async with TestClient(TestServer(_app(FakeRedis(), ConnectionRegistry()))) as client:
        resp = await client.get("/ws")
        assert resp.status == 400


@pytest.mark.asyncio
async def test_ws_replays_last_action_with_time():
    redis = FakeRedis()
    redis.hashes = {"table:1": {"action": "time", "time": "3"}}
    async with TestClient(TestServer(_app(redis, ConnectionRegistry()))) as client:
        ws = await client.ws_connect("/ws", params={"session": "s1", "tablename": "table:1"})
        assert await ws.receive_str(timeout=2) == "time 3"
        await ws.close()


@pytest.mark.asyncio
async def test_ws_valid_session_publishes_actions():
    registry = ConnectionRegistry()
    redis = FakeRedis(registry)
    redis.strings = {"s1": "table:1"}
    async with TestClient(TestServer(_app(redis, registry))) as client:
        ws = await client.ws_connect("/ws", params={"session": "s1", "tablename": "table:1"})
        await ws.send_str("time")
        assert await ws.receive_str(timeout=2) == "time"
        await ws.send_str("time")
        assert await ws.receive_str(timeout=2) == "time 1"
        await ws.send_str("no action")
        assert await ws.receive_str(timeout=2) == "no action"
        assert redis.hashes["table:1"] == {"action": "no action"}
        await ws.close()


@pytest.mark.asyncio
async def test_ws_invalid_session_is_ignored_and_cleaned_up():
    registry = ConnectionRegistry()
    redis = FakeRedis(registry)
    redis.strings = {"s1": "table:2"}
    app = _app(redis, registry)
    async with TestClient(TestServer(app)) as client:
        ws = await client.ws_connect("/ws", params={"session": "s1", "tablename": "table:1"})
        assert await _wait_for(lambda: "table:1" in registry)
        assert "table:1" in app[LISTENERS]
        await ws.send_str("move")
        await ws.close()
        assert await _wait_for(lambda: "table:1" not in registry)
        assert redis.published == []
        assert "table:1" not in app[LISTENERS]


def test_main_rejects_invalid_port(monkeypatch):
    monkeypatch.setenv("WS_PORT", "notaport")
    with pytest.raises(ValueError):
        main([])