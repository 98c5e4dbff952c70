"""Shared fixtures: a stub adapter with echo and boom tools."""

import pytest
from pydantic import Field

from mcp_adapters import AdapterDefinition, AdapterServer, AdapterSettings, CategorizedError


class StubSettings(AdapterSettings):
    api_token: str = Field(min_length=1, description="Stub API token")
    region: str = Field(min_length=1, description="Stub region")


class StubClient:
    """Service client double that records whether it was released."""

    def __init__(self, token="secret"):
        self.token = token
        self.closed = False

    def close(self):
        self.closed = True


def register_stub(registry, client, settings):
    @registry.tool
    def echo(text: str) -> dict:
        """Echo the text back."""
        return {"text": text}

    @registry.tool
    def boom() -> dict:
        """Always fails downstream."""
        raise CategorizedError.downstream("stub service exploded", status_code=503, endpoint="stub://boom")

    @registry.tool
    def crash() -> dict:
        """Fails with an uncategorized error."""
        raise RuntimeError("token=abc123 leaked in traceback")

    @registry.prompt
    def greeting(name: str) -> list:
        """Greet someone."""
        return [{"role": "user", "content": f"Say hello to {name}"}]


STUB_ENV = {"API_TOKEN": "secret", "REGION": "eu"}


def make_definition(register=register_stub, settings_cls=StubSettings, client_factory=None, **kwargs):
    return AdapterDefinition(
        name=kwargs.pop("name", "stub"),
        version=kwargs.pop("version", "1.2.3"),
        settings_cls=settings_cls,
        client_factory=client_factory or (lambda settings: StubClient(settings.api_token)),
        register=register,
        **kwargs
    )


class RecordingTransport:
    """Transport that hands the server to a callback instead of reading input."""

    def __init__(self, on_serve=None):
        self.on_serve = on_serve
        self.served = None

    async def serve(self, server):
        self.served = server
        if self.on_serve is not None:
            await self.on_serve(server)


@pytest.fixture
def definition():
    return make_definition()


@pytest.fixture
def server(definition):
    return AdapterServer(definition, environ=dict(STUB_ENV), env_file=None)


async def while_listening(server, callback):
    """Initialize ``server``, run ``callback(server)`` while it is listening, then stop it."""
    await server.initialize()
    results = []

    async def serve(srv):
        results.append(await callback(srv))

    await server.listen(RecordingTransport(serve))
    return results[0]
