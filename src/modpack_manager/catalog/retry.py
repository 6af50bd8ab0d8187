import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

from modpack_manager.errors import ExternalServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ExternalServiceError):
        return exc.retryable
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS
    return isinstance(exc, httpx.TransportError)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff: float = 2.0,
    label: str = "request",
) -> T:
    """Await ``fn()``, retrying transient failures with exponential backoff.

    Only use for idempotent calls. Non-retryable errors propagate at once.
    """
    attempt = 0
    delay = base_delay
    while True:
        try:
            return await fn()
        except Exception as exc:
            if attempt >= max_retries or not is_retryable(exc):
                raise
            attempt += 1
            logger.warning(
                "%s failed (%s), retry %d/%d in %.1fs", label, exc, attempt, max_retries, delay
            )
            await asyncio.sleep(delay)
            delay = min(delay * backoff, max_delay)
