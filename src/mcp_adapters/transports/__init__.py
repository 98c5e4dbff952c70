"""Transports that carry JSON-RPC messages to an adapter server."""

from .stdio import StdioTransport

__all__ = ["StdioTransport"]
