"""fal.ai adapter: model discovery, synchronous runs and the request queue."""

import logging
import sys
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from pydantic import Field, model_validator

from .. import cli
from ..clients.http import HttpServiceClient
from ..clients.polling import poll_until
from ..config import AdapterSettings
from ..errors import CategorizedError
from ..lifecycle import AdapterDefinition
from ..registry import CapabilityRegistry

logger = logging.getLogger(__name__)

MODELS_URL = "https://api.fal.ai/models"
RUN_URL = "https://fal.run/fal-ai"
QUEUE_URL = "https://queue.fal.run"

COMPLETED = "COMPLETED"
FAILED_STATUSES = frozenset({"FAILED", "ERROR"})
DEFAULT_SUBSCRIBE_TIMEOUT = 300.0


class FalSettings(AdapterSettings):
    fal_api_key: str = Field(
        min_length=1,
        description="fal.ai API key",
        json_schema_extra={"cli_flags": ["-k"]},
    )
    port: int = Field(
        default=3001,
        gt=0,
        lt=65536,
        description="Port for the HTTP transport",
        json_schema_extra={"cli_flags": ["-p"]},
    )
    run_sse: bool = Field(
        default=False,
        description="Serve over HTTP instead of stdio",
        json_schema_extra={"cli_flags": ["-s"]},
    )

    @model_validator(mode="before")
    @classmethod
    def _run_sse_selects_http(cls, data: Any) -> Any:
        if isinstance(data, dict) and str(data.get("run_sse", "")).lower() in ("1", "true", "yes", "on"):
            data = {**data, "transport": "http"}
        return data


def _segment(value: str) -> str:
    return quote(value, safe="")


def _unwrap_list(result: Any, *keys: str) -> Any:
    if isinstance(result, dict):
        for key in keys:
            if key in result:
                return result[key]
    return result


class FalClient(HttpServiceClient):
    """Client for the fal.ai model catalog and execution endpoints.

    Args:
        api_key: fal.ai API key, sent as a bearer token
        **kwargs: Passed to :class:`HttpServiceClient` (``timeout``, ``transport``)
    """

    def __init__(self, api_key: str, **kwargs):
        super().__init__(headers={"Authorization": f"Bearer {api_key}"}, **kwargs)

    async def list_models(self, limit: Optional[int] = None, page: Optional[int] = None) -> Any:
        return await self.get_json(MODELS_URL, params={"limit": limit, "page": page})

    async def search_models(self, query: str, limit: Optional[int] = None, category: Optional[str] = None) -> Any:
        return await self.get_json(
            f"{MODELS_URL}/search", params={"query": query, "limit": limit, "category": category}
        )

    async def get_model_schema(self, model_id: str) -> Any:
        return await self.get_json(f"{MODELS_URL}/{_segment(model_id)}/schema")

    async def run_sync(self, model_id: str, body: Any) -> Any:
        return await self.post_json(f"{RUN_URL}/{_segment(model_id)}", body)

    async def enqueue(self, model_id: str, body: Any) -> Any:
        return await self.post_json(f"{QUEUE_URL}/fal-ai/{_segment(model_id)}", body)

    async def get_status(self, request_id: str) -> Any:
        return await self.get_json(f"{QUEUE_URL}/requests/{_segment(request_id)}/status")

    async def get_result(self, request_id: str) -> Any:
        return await self.get_json(f"{QUEUE_URL}/requests/{_segment(request_id)}/result")

    async def cancel(self, request_id: str) -> Any:
        return await self.post_json(f"{QUEUE_URL}/requests/{_segment(request_id)}/cancel", {})

    async def subscribe(
        self,
        model_id: str,
        body: Any,
        timeout: float = DEFAULT_SUBSCRIBE_TIMEOUT,
        **poll_options
    ) -> Any:
        """Enqueue a request, wait for it to complete and return its result.

        Args:
            model_id: Model to run
            body: Model input
            timeout: Seconds to wait before giving up
            **poll_options: Passed to :func:`poll_until` (``initial``, ``maximum``, ``sleep``)

        Raises:
            CategorizedError: DownstreamService error when the queue does not
                return a request id, the request fails, or the wait times out
        """
        queued = await self.enqueue(model_id, body)
        request_id = queued.get("request_id") if isinstance(queued, dict) else None
        if not request_id:
            raise CategorizedError.downstream(
                "Queue response did not include a request_id",
                endpoint=f"{QUEUE_URL}/fal-ai/{model_id}",
                details={"response": queued},
            )
        logger.debug("Queued %s as %s", model_id, request_id)

        def is_done(status: Any) -> bool:
            state = status.get("status") if isinstance(status, dict) else None
            if state in FAILED_STATUSES:
                raise CategorizedError.downstream(
                    f"Request {request_id} ended with status {state}",
                    endpoint=f"{QUEUE_URL}/requests/{request_id}/status",
                    details={"requestId": request_id, "status": status},
                )
            return state == COMPLETED

        await poll_until(
            lambda: self.get_status(request_id),
            is_done,
            timeout=timeout,
            endpoint=f"{QUEUE_URL}/requests/{request_id}/status",
            **poll_options
        )
        return await self.get_result(request_id)


_MODEL_INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "model_id": {"type": "string", "minLength": 1},
        "input": {},
    },
    "required": ["model_id"],
    "additionalProperties": False,
}

_REQUEST_SCHEMA = {
    "type": "object",
    "properties": {"request_id": {"type": "string", "minLength": 1}},
    "required": ["request_id"],
    "additionalProperties": False,
}


def register_capabilities(registry: CapabilityRegistry, client: FalClient, settings: FalSettings) -> None:
    """Register the fal.ai tools and prompts against ``client``."""

    @registry.tool(name="fal-list-models")
    async def list_models(limit: Optional[int] = None, page: Optional[int] = None) -> Any:
        """List models available on fal.ai. Use limit and page to paginate
        instead of listing every model at once."""
        result = await client.list_models(limit=limit, page=page)
        return _unwrap_list(result, "models", "data")

    @registry.tool(name="fal-search-models")
    async def search_models(keyword: str, limit: Optional[int] = None, category: Optional[str] = None) -> Any:
        """Search models by keywords, optionally filtered by category."""
        result = await client.search_models(keyword, limit=limit, category=category)
        return _unwrap_list(result, "models")

    @registry.tool(name="fal-get-model-schema")
    async def get_model_schema(model_id: str) -> Any:
        """Get the input and output schema of a model."""
        return await client.get_model_schema(model_id)

    async def run_sync(model_id: str, input: Any = None) -> Any:
        return await client.run_sync(model_id, input)

    registry.register(
        "fal-run-sync",
        _MODEL_INPUT_SCHEMA,
        run_sync,
        "Run a model synchronously on fal.run and return its output.",
    )

    async def enqueue(model_id: str, input: Any = None) -> Any:
        return await client.enqueue(model_id, input)

    registry.register(
        "fal-enqueue",
        _MODEL_INPUT_SCHEMA,
        enqueue,
        "Queue a model run. Poll it with fal-get-status, then fetch the output with fal-get-result.",
    )

    async def get_status(request_id: str) -> Any:
        return await client.get_status(request_id)

    async def get_result(request_id: str) -> Any:
        return await client.get_result(request_id)

    async def cancel(request_id: str) -> Any:
        return await client.cancel(request_id)

    registry.register("fal-get-status", _REQUEST_SCHEMA, get_status, "Get the status of a queued request.")
    registry.register(
        "fal-get-result", _REQUEST_SCHEMA, get_result, "Get the output of a completed queued request."
    )
    registry.register("fal-cancel", _REQUEST_SCHEMA, cancel, "Cancel a queued request.")

    @registry.tool(name="fal-subscribe")
    async def subscribe(model_id: str, input: Any = None, timeout_seconds: float = DEFAULT_SUBSCRIBE_TIMEOUT) -> Any:
        """Queue a model run, wait for it to finish and return its output."""
        return await client.subscribe(model_id, input, timeout=timeout_seconds)

    @registry.prompt(name="review-fal-prompt")
    def review_prompt(prompt: str) -> List[Dict[str, Any]]:
        """Ask the model to improve an image generation prompt."""
        return [{
            "role": "user",
            "content": {"type": "text", "text": f"Please improve this image prompt for fal.ai:\n\n{prompt}"},
        }]


def create_client(settings: FalSettings) -> FalClient:
    return FalClient(api_key=settings.fal_api_key)


DEFINITION = AdapterDefinition(
    name="mcp-fal-ai",
    version="0.1.0",
    settings_cls=FalSettings,
    client_factory=create_client,
    register=register_capabilities,
    instructions="Discover fal.ai models, inspect their schemas and run them synchronously or through the queue.",
)


def main(argv: Optional[List[str]] = None) -> int:
    return cli.main(argv, definition=DEFINITION)


def console_main() -> None:
    sys.exit(main())


if __name__ == "__main__":
    console_main()
