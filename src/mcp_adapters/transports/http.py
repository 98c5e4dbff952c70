"""HTTP transport: FastAPI routes served by uvicorn."""

import asyncio
import json
import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from ..errors import ErrorKind
from ..protocol import JsonRpcSession
from ..registry import LIST_CAPABILITIES
from ..response import DispatchErrorKind, JsonRpcResponse

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    DispatchErrorKind.CAPABILITY_NOT_FOUND.value: 404,
    DispatchErrorKind.INVALID_ARGUMENTS.value: 422,
    DispatchErrorKind.SERVER_UNAVAILABLE.value: 503,
    ErrorKind.DOWNSTREAM_SERVICE.value: 502,
    ErrorKind.UNEXPECTED.value: 500,
}


def status_for(envelope) -> int:
    if envelope["ok"]:
        return 200
    return _STATUS_CODES.get(envelope["errorKind"], 500)


def create_app(server) -> FastAPI:
    """Build the FastAPI app exposing ``server``.

    Routes:
        GET  /health               server name and lifecycle state
        GET  /capabilities         capability discovery envelope
        POST /capabilities/{name}  body is the arguments object, returns the envelope
        POST /messages             one JSON-RPC message, 202 for notifications
    """
    app = FastAPI(title=server.name, version=server.version)
    session = JsonRpcSession(server)

    @app.get("/health")
    async def health():
        return {"name": server.name, "version": server.version, "state": server.state.value}

    @app.get("/capabilities")
    async def list_capabilities():
        envelope = await server.dispatch(LIST_CAPABILITIES, {})
        return JSONResponse(envelope, status_code=status_for(envelope))

    @app.post("/capabilities/{name}")
    async def call_capability(name: str, request: Request):
        body = await request.body()
        # The dispatcher parses and validates the raw JSON itself
        arguments = body.decode("utf-8", errors="replace") if body else None
        envelope = await server.dispatch(name, arguments)
        return JSONResponse(envelope, status_code=status_for(envelope))

    @app.post("/messages")
    async def messages(request: Request):
        body = await request.body()
        try:
            message = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return JSONResponse(JsonRpcResponse.parse_error(f"Parse error: {e}"), status_code=400)

        response = await session.handle(message)
        if response is None:
            return Response(status_code=202)
        return JSONResponse(response)

    return app


class HttpTransport:
    """Serves the adapter over HTTP until uvicorn exits.

    Args:
        host: Bind address
        port: Bind port
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 3000):
        self.host = host
        self.port = port
        self._uvicorn = None

    async def serve(self, server) -> None:
        config = uvicorn.Config(
            create_app(server),
            host=self.host,
            port=self.port,
            log_config=None,
            lifespan="off",
        )
        self._uvicorn = uvicorn.Server(config)
        logger.info("Serving on http://%s:%d", self.host, self.port)
        try:
            await self._uvicorn.serve()
        except asyncio.CancelledError:
            self._uvicorn.should_exit = True
            raise
