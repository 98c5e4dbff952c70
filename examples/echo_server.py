#!/usr/bin/env python3
"""Echo adapter - a stub client and two tools, served over stdio.

Run with:
    python examples/echo_server.py
or:
    python -m mcp_adapters --adapter examples.echo_server:DEFINITION
"""

import sys

from mcp_adapters import AdapterDefinition, AdapterSettings, CategorizedError
from mcp_adapters.cli import main


class EchoClient:
    """Stands in for a real service client."""

    def __init__(self):
        self.closed = False

    def fail(self, reason: str):
        raise CategorizedError.downstream(reason, status_code=503, endpoint="echo://boom")

    def close(self):
        self.closed = True


def register(registry, client: EchoClient, settings: AdapterSettings) -> None:
    @registry.tool
    def echo(text: str) -> dict:
        """Return the text unchanged."""
        return {"text": text}

    @registry.tool
    def boom(reason: str = "boom") -> dict:
        """Fail with a downstream service error."""
        return client.fail(reason)


DEFINITION = AdapterDefinition(
    name="echo",
    version="0.1.0",
    settings_cls=AdapterSettings,
    client_factory=lambda settings: EchoClient(),
    register=register,
)


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:], definition=DEFINITION))
