"""Tests for server lifecycle module."""

import asyncio

import pytest
from conftest import STUB_ENV, RecordingTransport, StubClient, make_definition, while_listening
from mcp_adapters.errors import CategorizedError, ErrorKind, LifecycleError, RegistrationError
from mcp_adapters.lifecycle import EXIT_FAILURE, EXIT_OK, AdapterServer, ServerState, create_transport
from mcp_adapters.registry import LIST_CAPABILITIES
from mcp_adapters.transports.stdio import StdioTransport


class TestInitialize:
    """Test AdapterServer.initialize."""

    @pytest.mark.asyncio
    async def test_moves_to_registered(self, server):
        """Test a successful initialize."""
        assert server.state is ServerState.UNINITIALIZED
        await server.initialize()
        assert server.state is ServerState.REGISTERED
        assert server.settings.api_token == "secret"
        assert isinstance(server.client, StubClient)
        assert [c["name"] for c in server.list_capabilities()] == ["echo", "boom", "crash", "greeting"]

    @pytest.mark.asyncio
    async def test_initialize_twice(self, server):
        """Test initialize is not reentrant."""
        await server.initialize()
        with pytest.raises(LifecycleError):
            await server.initialize()

    @pytest.mark.asyncio
    async def test_initialize_twice_after_failure(self):
        """Test a failed initialize cannot be retried on the same server."""
        server = AdapterServer(make_definition(), environ={}, env_file=None)
        with pytest.raises(CategorizedError):
            await server.initialize()
        with pytest.raises(LifecycleError):
            await server.initialize()

    @pytest.mark.asyncio
    async def test_validation_precedes_client(self):
        """Test no client is built when the environment is invalid."""
        built = []
        definition = make_definition(client_factory=lambda settings: built.append(settings))
        server = AdapterServer(definition, environ={}, env_file=None)
        with pytest.raises(CategorizedError) as exc_info:
            await server.initialize()
        assert exc_info.value.kind is ErrorKind.ENVIRONMENT_VALIDATION
        assert sorted(f["field"] for f in exc_info.value.details["fields"]) == ["API_TOKEN", "REGION"]
        assert built == []
        assert server.state is ServerState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_async_client_factory(self):
        """Test an async client factory is awaited."""
        async def factory(settings):
            return StubClient("async")

        server = AdapterServer(make_definition(client_factory=factory), environ=dict(STUB_ENV), env_file=None)
        await server.initialize()
        assert server.client.token == "async"

    @pytest.mark.asyncio
    async def test_duplicate_registration_fails_startup(self):
        """Test a duplicate name stops initialization."""
        def register(registry, client, settings):
            registry.register("echo", {"type": "object"}, lambda: "first")
            registry.register("echo", {"type": "object"}, lambda: "second")

        server = AdapterServer(make_definition(register=register), environ=dict(STUB_ENV), env_file=None)
        with pytest.raises(RegistrationError):
            await server.initialize()
        assert server.state is ServerState.VALIDATED

    def test_settings_before_validation(self, server):
        """Test settings and registry are unavailable before validation."""
        with pytest.raises(LifecycleError):
            server.settings
        with pytest.raises(LifecycleError):
            server.registry
        assert server.list_capabilities() == []


class TestListen:
    """Test listening and dispatching."""

    @pytest.mark.asyncio
    async def test_dispatch_before_listening(self, server):
        """Test requests are refused before the server listens."""
        await server.initialize()
        result = await server.dispatch("echo", {"text": "hi"})
        assert result["ok"] is False
        assert result["errorKind"] == "ServerUnavailable"

    @pytest.mark.asyncio
    async def test_listen_requires_registered(self, server):
        """Test listen cannot skip initialization."""
        with pytest.raises(LifecycleError):
            await server.listen(RecordingTransport())

    @pytest.mark.asyncio
    async def test_list_capabilities_matches_registry(self, server):
        """Test discovery lists exactly the registered descriptors."""
        async def check(srv):
            return await srv.dispatch(LIST_CAPABILITIES)

        result = await while_listening(server, check)
        assert result == {"ok": True, "result": {"capabilities": server.list_capabilities()}}

    @pytest.mark.asyncio
    async def test_echo(self, server):
        """Test the echo tool round trip."""
        async def check(srv):
            return await srv.dispatch("echo", {"text": "hi"})

        assert await while_listening(server, check) == {"ok": True, "result": {"text": "hi"}}

    @pytest.mark.asyncio
    async def test_downstream_failure(self, server):
        """Test a categorized handler failure keeps its message."""
        async def check(srv):
            return await srv.dispatch("boom")

        result = await while_listening(server, check)
        assert result["ok"] is False
        assert result["errorKind"] == "DownstreamService"
        assert result["message"] == "stub service exploded"

    @pytest.mark.asyncio
    async def test_uncategorized_failure(self, server):
        """Test an uncategorized failure is reported generically."""
        async def check(srv):
            return await srv.dispatch("crash")

        result = await while_listening(server, check)
        assert result["errorKind"] == "Unexpected"
        assert "abc123" not in result["message"]

    @pytest.mark.asyncio
    async def test_registry_frozen_while_listening(self, server):
        """Test registration is refused once listening."""
        async def check(srv):
            with pytest.raises(LifecycleError):
                srv.registry.register("late", {"type": "object"}, lambda: None)
            return srv.state

        assert await while_listening(server, check) is ServerState.LISTENING

    @pytest.mark.asyncio
    async def test_shutdown_after_transport_returns(self, server):
        """Test the server terminates and releases the client when serving ends."""
        async def check(srv):
            return srv.client

        client = await while_listening(server, check)
        assert server.state is ServerState.TERMINATED
        assert client.closed is True
        result = await server.dispatch("echo", {"text": "hi"})
        assert result["errorKind"] == "ServerUnavailable"

    @pytest.mark.asyncio
    async def test_shutdown_idempotent(self, server):
        """Test shutdown may be called repeatedly."""
        await server.initialize()
        await server.shutdown()
        await server.shutdown()
        assert server.state is ServerState.TERMINATED


class TestRun:
    """Test AdapterServer.run outcomes."""

    @pytest.mark.asyncio
    async def test_graceful_exit(self, server):
        """Test a transport that returns yields exit code 0."""
        outcome = await server.run(RecordingTransport())
        assert outcome.exit_code == EXIT_OK
        assert outcome.ok
        assert server.state is ServerState.TERMINATED

    @pytest.mark.asyncio
    async def test_environment_failure(self):
        """Test invalid settings yield exit code 1 and the error."""
        server = AdapterServer(make_definition(), environ={"API_TOKEN": "x"}, env_file=None)
        transport = RecordingTransport()
        outcome = await server.run(transport)
        assert outcome.exit_code == EXIT_FAILURE
        assert outcome.error.kind is ErrorKind.ENVIRONMENT_VALIDATION
        assert transport.served is None
        assert server.state is ServerState.TERMINATED

    @pytest.mark.asyncio
    async def test_registration_failure(self):
        """Test an uncategorized startup failure yields exit code 1."""
        def register(registry, client, settings):
            raise ValueError("bad registration")

        server = AdapterServer(make_definition(register=register), environ=dict(STUB_ENV), env_file=None)
        outcome = await server.run(RecordingTransport())
        assert outcome.exit_code == EXIT_FAILURE
        assert outcome.error.kind is ErrorKind.UNEXPECTED
        assert "bad registration" in outcome.error.message

    @pytest.mark.asyncio
    async def test_transport_failure(self, server):
        """Test a transport crash yields exit code 1."""
        async def fail(srv):
            raise OSError("address in use")

        outcome = await server.run(RecordingTransport(fail))
        assert outcome.exit_code == EXIT_FAILURE
        assert "address in use" in outcome.error.message
        assert server.state is ServerState.TERMINATED

    @pytest.mark.asyncio
    async def test_stop_signal(self, server):
        """Test a stop request ends serving gracefully."""
        async def wait_forever(srv):
            srv._request_stop(asyncio.current_task())
            await asyncio.sleep(10)

        outcome = await server.run(RecordingTransport(wait_forever))
        assert outcome.exit_code == EXIT_OK
        assert server.state is ServerState.TERMINATED


class TestCreateTransport:
    """Test transport selection."""

    def test_stdio_default(self):
        from conftest import StubSettings
        settings = StubSettings(api_token="a", region="b")
        assert isinstance(create_transport(settings), StdioTransport)

    def test_http(self):
        from conftest import StubSettings
        from mcp_adapters.transports.http import HttpTransport
        settings = StubSettings(api_token="a", region="b", transport="http", port=8123)
        transport = create_transport(settings)
        assert isinstance(transport, HttpTransport)
        assert transport.port == 8123
