"""Tests for the fal.ai adapter."""

import argparse
import dataclasses
import json

import httpx
import pytest
from conftest import while_listening
from mcp_adapters.adapters.fal_ai import DEFINITION, FalClient, FalSettings, register_capabilities
from mcp_adapters.config import EnvironmentValidator
from mcp_adapters.errors import CategorizedError, ErrorKind
from mcp_adapters.lifecycle import AdapterServer
from mcp_adapters.registry import CapabilityRegistry


class FakeFal:
    """Routes fal.ai URLs to canned responses and records every request."""

    def __init__(self, statuses=("IN_QUEUE", "COMPLETED")):
        self.requests = []
        self.statuses = list(statuses)

    def __call__(self, request):
        self.requests.append(request)
        url = str(request.url)
        if url.startswith("https://api.fal.ai/models/search"):
            return httpx.Response(200, json={"models": [{"id": "flux"}]})
        if url.endswith("/schema"):
            return httpx.Response(200, json={"input": {"prompt": "string"}})
        if url.startswith("https://api.fal.ai/models"):
            return httpx.Response(200, json={"data": [{"id": "flux"}, {"id": "sdxl"}]})
        if url.startswith("https://fal.run/"):
            return httpx.Response(200, json={"images": [], "echo": json.loads(request.content)})
        if url.endswith("/status"):
            return httpx.Response(200, json={"status": self.statuses.pop(0)})
        if url.endswith("/result"):
            return httpx.Response(200, json={"images": ["img"]})
        if url.endswith("/cancel"):
            return httpx.Response(200, json={"status": "CANCELLED"})
        if url.startswith("https://queue.fal.run/fal-ai/"):
            return httpx.Response(200, json={"request_id": "req-1"})
        return httpx.Response(404)


def fal_client(fake):
    return FalClient("fal-key", transport=httpx.MockTransport(fake))


async def no_sleep(delay):
    pass


class TestFalSettings:
    """Test fal.ai settings."""

    def test_defaults(self):
        settings = FalSettings(fal_api_key="k")
        assert settings.port == 3001
        assert settings.transport == "stdio"

    @pytest.mark.asyncio
    async def test_missing_key(self):
        """Test startup fails without an API key."""
        server = AdapterServer(DEFINITION, environ={}, env_file=None)
        with pytest.raises(CategorizedError) as exc_info:
            await server.initialize()
        assert exc_info.value.kind is ErrorKind.ENVIRONMENT_VALIDATION
        assert exc_info.value.details["fields"][0]["field"] == "FAL_API_KEY"
        assert exc_info.value.details["fields"][0]["flag"] == "--fal-api-key"

    def test_short_flags(self):
        """Test -k, -p and -s reach the settings, with -s selecting HTTP."""
        validator = EnvironmentValidator(FalSettings, environ={}, env_file=None)
        parser = argparse.ArgumentParser()
        validator.add_arguments(parser)
        args = parser.parse_args(["-k", "key", "-p", "4000", "-s"])

        overrides = {name: value for name, value in vars(args).items() if value is not None}
        settings = validator.validate(overrides)
        assert settings.fal_api_key == "key"
        assert settings.port == 4000
        assert settings.run_sse is True
        assert settings.transport == "http"

    def test_run_sse_from_environment(self):
        validator = EnvironmentValidator(FalSettings, environ={"FAL_API_KEY": "k", "RUN_SSE": "true"}, env_file=None)
        assert validator.validate().transport == "http"
        assert FalSettings(fal_api_key="k", run_sse=False).transport == "stdio"


class TestFalClient:
    """Test FalClient requests."""

    @pytest.mark.asyncio
    async def test_urls_and_auth(self):
        """Test each operation hits the expected endpoint."""
        fake = FakeFal()
        async with fal_client(fake) as client:
            await client.list_models(limit=5)
            await client.search_models("flux", category="image")
            await client.get_model_schema("flux/dev")
            await client.run_sync("flux", {"prompt": "cat"})
            await client.enqueue("flux", {"prompt": "cat"})
            await client.get_status("req 1")
            await client.get_result("req-1")
            await client.cancel("req-1")

        urls = [str(r.url) for r in fake.requests]
        assert urls == [
            "https://api.fal.ai/models?limit=5",
            "https://api.fal.ai/models/search?query=flux&category=image",
            "https://api.fal.ai/models/flux%2Fdev/schema",
            "https://fal.run/fal-ai/flux",
            "https://queue.fal.run/fal-ai/flux",
            "https://queue.fal.run/requests/req%201/status",
            "https://queue.fal.run/requests/req-1/result",
            "https://queue.fal.run/requests/req-1/cancel",
        ]
        assert all(r.headers["authorization"] == "Bearer fal-key" for r in fake.requests)

    @pytest.mark.asyncio
    async def test_subscribe(self):
        """Test subscribe polls until completion and returns the result."""
        fake = FakeFal(statuses=["IN_QUEUE", "IN_PROGRESS", "COMPLETED"])
        async with fal_client(fake) as client:
            result = await client.subscribe("flux", {"prompt": "cat"}, sleep=no_sleep)

        assert result == {"images": ["img"]}
        assert sum(str(r.url).endswith("/status") for r in fake.requests) == 3

    @pytest.mark.asyncio
    async def test_subscribe_failure(self):
        """Test a failed request raises a downstream error."""
        fake = FakeFal(statuses=["IN_PROGRESS", "FAILED"])
        async with fal_client(fake) as client:
            with pytest.raises(CategorizedError) as exc_info:
                await client.subscribe("flux", {}, sleep=no_sleep)
        assert exc_info.value.kind is ErrorKind.DOWNSTREAM_SERVICE
        assert "FAILED" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_subscribe_timeout(self):
        """Test subscribe gives up after the timeout."""
        fake = FakeFal(statuses=["IN_QUEUE"] * 5)
        async with fal_client(fake) as client:
            with pytest.raises(CategorizedError) as exc_info:
                await client.subscribe("flux", {}, timeout=0, sleep=no_sleep)
        assert exc_info.value.details["reason"] == "timeout"

    @pytest.mark.asyncio
    async def test_subscribe_without_request_id(self):
        """Test a queue response without a request id is an error."""
        async with FalClient("k", transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))) as client:
            with pytest.raises(CategorizedError, match="request_id"):
                await client.subscribe("flux", {})

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        """Test a rejected key maps to an unauthorized error."""
        async with FalClient("bad", transport=httpx.MockTransport(lambda r: httpx.Response(401))) as client:
            with pytest.raises(CategorizedError) as exc_info:
                await client.list_models()
        assert exc_info.value.details["reason"] == "unauthorized"


class TestFalCapabilities:
    """Test the registered fal.ai tools and prompts."""

    def test_registered_names(self):
        registry = CapabilityRegistry()
        register_capabilities(registry, fal_client(FakeFal()), FalSettings(fal_api_key="k"))
        assert [c["name"] for c in registry.list_capabilities()] == [
            "fal-list-models",
            "fal-search-models",
            "fal-get-model-schema",
            "fal-run-sync",
            "fal-enqueue",
            "fal-get-status",
            "fal-get-result",
            "fal-cancel",
            "fal-subscribe",
            "review-fal-prompt",
        ]

    @pytest.mark.asyncio
    async def test_tools_through_server(self):
        """Test tools dispatch to the client through a listening server."""
        fake = FakeFal()
        definition = dataclasses.replace(DEFINITION, client_factory=lambda settings: fal_client(fake))
        server = AdapterServer(definition, environ={"FAL_API_KEY": "k"}, env_file=None)

        async def run(srv):
            return [
                await srv.dispatch("fal-list-models", {"limit": 2}),
                await srv.dispatch("fal-search-models", {"keyword": "flux"}),
                await srv.dispatch("fal-run-sync", {"model_id": "flux", "input": {"prompt": "cat"}}),
                await srv.dispatch("fal-get-status", {}),
                await srv.dispatch("review-fal-prompt", {"prompt": "a cat"}),
            ]

        listed, searched, ran, invalid, prompt = await while_listening(server, run)
        assert listed == {"ok": True, "result": [{"id": "flux"}, {"id": "sdxl"}]}
        assert searched == {"ok": True, "result": [{"id": "flux"}]}
        assert ran["result"]["echo"] == {"prompt": "cat"}
        assert invalid["errorKind"] == "InvalidArguments"
        assert prompt["result"] == [{
            "role": "user",
            "content": {"type": "text", "text": "Please improve this image prompt for fal.ai:\n\na cat"},
        }]
