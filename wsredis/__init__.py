"""HTTP and WebSocket server relaying per-table actions through Redis pub/sub."""

__version__ = "0.2.0"