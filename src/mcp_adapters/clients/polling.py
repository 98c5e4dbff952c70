"""Backoff helpers for clients that poll queued downstream jobs."""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Optional

from ..errors import CategorizedError

logger = logging.getLogger(__name__)

MIN_DELAY = 0.25


def next_backoff(
    current: float,
    initial: float = 1.0,
    maximum: float = 8.0,
    factor: float = 2.0,
    jitter_ratio: float = 0.2,
    rng: Callable[[], float] = random.random
) -> float:
    """Next delay in seconds: exponential, capped, with +/- jitter.

    Args:
        current: Previous delay (0 for the first wait)
        initial: Starting delay
        maximum: Cap before jitter
        factor: Growth factor
        jitter_ratio: Fraction of the delay added or removed at random
        rng: Source of uniform [0, 1) numbers

    Returns:
        Delay in seconds, never below 0.25
    """
    base = max(current or initial, initial) * factor
    capped = min(base, maximum)
    jitter = capped * jitter_ratio * (rng() * 2 - 1)
    return max(MIN_DELAY, capped + jitter)


async def poll_until(
    fetch: Callable[[], Awaitable[Any]],
    is_done: Callable[[Any], bool],
    timeout: float = 300.0,
    initial: float = 1.0,
    maximum: float = 8.0,
    endpoint: Optional[str] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> Any:
    """Call ``fetch`` until ``is_done`` accepts its result.

    Returns:
        The first accepted result

    Raises:
        CategorizedError: DownstreamService error with reason ``timeout`` when
            ``timeout`` seconds pass without completion
    """
    deadline = time.monotonic() + timeout
    delay = 0.0
    while True:
        value = await fetch()
        if is_done(value):
            return value
        if time.monotonic() >= deadline:
            raise CategorizedError.downstream(
                f"Timed out after {timeout:g}s waiting for downstream job",
                endpoint=endpoint,
                details={"reason": "timeout", "lastStatus": value},
            )
        delay = next_backoff(delay, initial=initial, maximum=maximum)
        logger.debug("Job not finished, polling again in %.2fs", delay)
        await sleep(delay)
