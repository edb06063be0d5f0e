"""Runtime configuration read from the environment."""

from __future__ import annotations

import ipaddress
import os
from collections.abc import Mapping
from dataclasses import dataclass

TTL_SECONDS = 3600

DEFAULT_REDIS_ADDR = "127.0.0.1"
DEFAULT_REDIS_PORT = "6379"
DEFAULT_WS_ADDR = "127.0.0.1"
DEFAULT_WS_PORT = "3030"

_MAX_PORT = 65535


@dataclass(frozen=True)
class ServerConfig:
    """Address and port the WebSocket server listens on."""

    host: ipaddress.IPv4Address | ipaddress.IPv6Address
    port: int


def _environ(env: Mapping[str, str] | None) -> Mapping[str, str]:
    return os.environ if env is None else env


def redis_url(env: Mapping[str, str] | None = None) -> str:
    """Build the Redis connection URL from REDIS_ADDR and REDIS_PORT."""
    values = _environ(env)
    addr = values.get("REDIS_ADDR", DEFAULT_REDIS_ADDR)
    port = values.get("REDIS_PORT", DEFAULT_REDIS_PORT)
    return f"redis://{addr}:{port}"


def _parse_port(text: str) -> int:
    digits = text[1:] if text.startswith("+") else text
    if not digits or not digits.isascii() or not digits.isdigit():
        raise ValueError("Invalid port address")
    value = int(digits)
    if value > _MAX_PORT:
        raise ValueError("Invalid port address")
    return value


def server_config(env: Mapping[str, str] | None = None) -> ServerConfig:
    """Read WS_ADDR and WS_PORT; raise ValueError if either is malformed."""
    values = _environ(env)
    raw_host = values.get("WS_ADDR", DEFAULT_WS_ADDR)
    try:
        host = ipaddress.ip_address(raw_host)
    except ValueError as exc:
        raise ValueError("Invalid host address") from exc
    port = _parse_port(values.get("WS_PORT", DEFAULT_WS_PORT))
    return ServerConfig(host=host, port=port)


def create(env: Mapping[str, str] | None = None) -> tuple[str, ServerConfig]:
    """Return the Redis URL and the server configuration."""
    return redis_url(env), server_config(env)