"""Base class for service clients that talk JSON over HTTP."""

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from ..errors import CategorizedError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class HttpServiceClient:
    """Wraps an ``httpx.AsyncClient`` and raises categorized errors.

    Subclasses add domain operations on top of :meth:`get_json` and
    :meth:`post_json`. Reads are idempotent; the connection pool is shared
    by concurrent handler invocations and owned by httpx.

    Args:
        base_url: Prefix for relative URLs
        headers: Headers sent with every request (credentials go here)
        timeout: Request timeout in seconds
        transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests
    """

    def __init__(
        self,
        base_url: str = "",
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=dict(headers or {}),
            timeout=timeout,
            transport=transport,
        )

    async def request_json(self, method: str, url: str, **kwargs) -> Any:
        """Send a request and decode the JSON body.

        Returns:
            Decoded body, or ``None`` for an empty body

        Raises:
            CategorizedError: DownstreamService error for timeouts, connection
                failures and HTTP statuses >= 400
        """
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise CategorizedError.downstream(
                "Request to downstream service timed out",
                endpoint=url,
                details={"reason": "timeout"},
                cause=e,
            ) from e
        except httpx.RequestError as e:
            raise CategorizedError.downstream(
                "Downstream service unavailable",
                endpoint=url,
                details={"reason": "unavailable"},
                cause=e,
            ) from e

        if response.status_code >= 400:
            logger.debug("%s %s -> %d", method, url, response.status_code)
            raise CategorizedError.from_status(
                response.status_code,
                endpoint=url,
                details=_parse_body(response),
                retry_after=_retry_after(response),
            )
        return _parse_body(response)

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        return await self.request_json("GET", url, params=params or None)

    async def post_json(self, url: str, body: Any = None) -> Any:
        return await self.request_json("POST", url, json=body)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpServiceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
