"""Bounded retry with exponential backoff for transient storage failures."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import duckdb

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 1.0

# Lock contention, I/O hiccups and dropped connections; constraint and
# catalog errors are permanent and surface immediately.
TRANSIENT_STORAGE_ERRORS: tuple[type[BaseException], ...] = (
    duckdb.IOException,
    duckdb.TransactionException,
    duckdb.ConnectionException,
    OSError,
)


def exponential_backoff(base: float = DEFAULT_BACKOFF_BASE) -> Callable[[int], float]:
    """Delay before retry *n* (0-based): ``base * 2**n`` seconds (1s, 2s, 4s...)."""

    def _delay(attempt: int) -> float:
        return base * (2 ** attempt)

    return _delay


async def with_retry(
    op: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff: Callable[[int], float] | None = None,
    retry_on: tuple[type[BaseException], ...] = TRANSIENT_STORAGE_ERRORS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``op()`` up to *max_attempts* times.

    Only exceptions in *retry_on* are retried; anything else propagates on
    the first occurrence. The last transient error is re-raised once the
    attempts are exhausted.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
    delay_for = backoff or exponential_backoff()

    for attempt in range(max_attempts):
        try:
            return await op()
        except retry_on as exc:
            if attempt + 1 >= max_attempts:
                logger.error("Giving up after %d attempt(s): %s", max_attempts, exc)
                raise
            wait = delay_for(attempt)
            logger.warning(
                "Transient failure (attempt %d/%d): %s; retrying in %.1fs",
                attempt + 1, max_attempts, exc, wait,
            )
            await sleep(wait)

    raise AssertionError("unreachable")
