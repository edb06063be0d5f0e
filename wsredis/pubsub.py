"""Per-channel client registry and the Redis pub/sub listener feeding it."""

from __future__ import annotations

import asyncio
import sys

from redis import asyncio as aioredis
from redis.exceptions import RedisError


class ConnectionRegistry:
    """Outgoing message queues of connected clients, grouped by channel."""

    def __init__(self) -> None:
        self._channels: dict[str, list[asyncio.Queue[str]]] = {}

    def add(self, channel: str, queue: asyncio.Queue[str]) -> None:
        """Register a client queue on a channel."""
        self._channels.setdefault(channel, []).append(queue)

    def remove(self, channel: str, queue: asyncio.Queue[str]) -> bool:
        """Drop a client queue; return True if the channel is now empty and gone."""
        queues = self._channels.get(channel)
        if queues is None:
            return False
        queues[:] = [q for q in queues if q is not queue]
        if queues:
            return False
        del self._channels[channel]
        return True

    def broadcast(self, channel: str, payload: str) -> int:
        """Queue a payload for every client on a channel; return how many got it."""
        queues = self._channels.get(channel, [])
        for queue in queues:
            queue.put_nowait(payload)
        return len(queues)

    def channels(self) -> list[str]:
        """Names of channels that have at least one client."""
        return list(self._channels)

    def __contains__(self, channel: object) -> bool:
        return channel in self._channels

    def __len__(self) -> int:
        return len(self._channels)


def _decode(data: object) -> str | None:
    if isinstance(data, str):
        return data
    if isinstance(data, (bytes, bytearray)):
        try:
            return bytes(data).decode("utf-8")
        except UnicodeDecodeError:
            return None
    return None


async def listener(connections: ConnectionRegistry, redis_url: str, channel: str) -> None:
    """Subscribe to a Redis channel and relay each message to its clients."""
    client = aioredis.from_url(redis_url)
    pubsub = client.pubsub()
    await pubsub.subscribe(channel)
    try:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            payload = _decode(message.get("data"))
            if payload is None:
                continue
            connections.broadcast(channel, payload)
    finally:
        try:
            await pubsub.unsubscribe(channel)
        except (RedisError, OSError) as exc:
            print(f"Failed to unsubscribe from channel: {exc}", file=sys.stderr)
        await pubsub.aclose()
        await client.aclose()