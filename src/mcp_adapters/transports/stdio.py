"""Newline-delimited JSON-RPC over stdin/stdout."""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional, Set, TextIO

from ..protocol import JsonRpcSession
from ..response import JsonRpcResponse

logger = logging.getLogger(__name__)

CANCELLED_NOTIFICATION = "notifications/cancelled"

# Tool results can carry base64 payloads, so lines may be long
LINE_LIMIT = 16 * 1024 * 1024


async def _stdin_reader() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=LINE_LIMIT)
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    return reader


async def _skip_line(reader: asyncio.StreamReader) -> None:
    """Discard input up to and including the next newline."""
    while True:
        try:
            await reader.readuntil(b"\n")
            return
        except asyncio.LimitOverrunError as e:
            await reader.readexactly(e.consumed)
        except asyncio.IncompleteReadError:
            return


class StdioTransport:
    """Reads one JSON-RPC message per line and writes one response per line.

    Every request runs in its own task, started in arrival order. A
    ``notifications/cancelled`` message cancels the matching task and no
    response is written for it. On end of input, requests still in flight
    are allowed to finish.
    Lines longer than the reader limit, and requests that reuse the id of a
    request still in flight, are answered with an invalid request error.

    Args:
        reader: Stream to read from (defaults to stdin)
        writer: Text stream to write to (defaults to stdout)
    """

    def __init__(self, reader: Optional[asyncio.StreamReader] = None, writer: Optional[TextIO] = None):
        self._reader = reader
        self._writer = writer
        self._in_flight: Dict[Any, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()

    def _write(self, message: Dict[str, Any]) -> None:
        writer = self._writer or sys.stdout
        writer.write(json.dumps(message, default=str) + "\n")
        writer.flush()

    async def serve(self, server) -> None:
        session = JsonRpcSession(server)
        reader = self._reader or await _stdin_reader()
        logger.info("Serving on stdio")

        try:
            while True:
                try:
                    line = await reader.readuntil(b"\n")
                except asyncio.IncompleteReadError as e:
                    line = e.partial
                    if not line:
                        break
                except asyncio.LimitOverrunError:
                    logger.warning("Dropping message longer than the line limit")
                    self._write(JsonRpcResponse.invalid_request(None, "Message exceeds the maximum line length"))
                    await _skip_line(reader)
                    continue
                line = line.strip()
                if not line:
                    continue
                self._receive(session, line)

            if self._tasks:
                await asyncio.wait(set(self._tasks))
        finally:
            for task in list(self._tasks):
                task.cancel()
        logger.info("stdin closed")

    def _receive(self, session: JsonRpcSession, line: bytes) -> None:
        try:
            message = json.loads(line)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self._write(JsonRpcResponse.parse_error(f"Parse error: {e}"))
            return

        if isinstance(message, dict) and message.get("method") == CANCELLED_NOTIFICATION:
            params = message.get("params")
            self._cancel(params.get("requestId") if isinstance(params, dict) else None)
            return

        request_id = message.get("id") if isinstance(message, dict) else None
        if isinstance(request_id, (str, int)) and request_id in self._in_flight:
            self._write(JsonRpcResponse.invalid_request(request_id, f"Request id already in use: {request_id!r}"))
            return

        task = asyncio.ensure_future(self._process(session, message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if isinstance(request_id, (str, int)):
            self._in_flight[request_id] = task

    def _cancel(self, request_id: Any) -> None:
        task = self._in_flight.pop(request_id, None) if isinstance(request_id, (str, int)) else None
        if task is None:
            logger.debug("Cancellation for unknown request %r", request_id)
            return
        logger.debug("Cancelling request %r", request_id)
        task.cancel()

    async def _process(self, session: JsonRpcSession, message: Any) -> None:
        request_id = message.get("id") if isinstance(message, dict) else None
        if not isinstance(request_id, (str, int)):
            request_id = None
        try:
            response = await session.handle(message)
        except asyncio.CancelledError:
            logger.debug("Request %r cancelled; no response sent", request_id)
            raise
        finally:
            if self._in_flight.get(request_id) is asyncio.current_task():
                del self._in_flight[request_id]
        if response is not None:
            self._write(response)
