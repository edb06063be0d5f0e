"""Listing of the game tables stored as Redis hashes."""

from __future__ import annotations

from typing import Any

TABLE_PATTERN = "table:*"


def _text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")
    return str(value)


async def list_hash_tables(client: Any) -> list[str]:
    """Return every key matching ``table:*`` that holds a hash.

    Redis errors propagate to the caller.
    """
    cursor = 0
    tables: list[str] = []
    while True:
        cursor, keys = await client.scan(cursor, match=TABLE_PATTERN)
        for key in keys:
            name = _text(key)
            if _text(await client.type(name)) == "hash":
                tables.append(name)
        if int(cursor) == 0:
            return tables