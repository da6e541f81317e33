"""
Retry Helpers
=============
Caller-side retry for operations that talk to flaky upstreams.

Two policies are used in this service:
- exponential: wallet scans (1s, 2s, 4s between attempts)
- linear: Jupiter quotes (0.5s, 1.0s, ...)

The helpers never swallow the final failure: after the last attempt the
last exception is re-raised for the caller to classify.
"""

import asyncio
from typing import Any, Awaitable, Callable

from utils.logger import get_logger

logger = get_logger(__name__)


def exponential_delay(base: float) -> Callable[[int], float]:
    """Delay before retry N (1-based): base * 2^(N-1)."""
    return lambda attempt: base * (2 ** (attempt - 1))


def linear_delay(step: float) -> Callable[[int], float]:
    """Delay before retry N (1-based): step * N."""
    return lambda attempt: step * attempt


async def retry_async(
    operation: Callable[[], Awaitable[Any]],
    attempts: int,
    delay: Callable[[int], float],
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    label: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """
    Run `operation` up to `attempts` times.

    Args:
        operation: Zero-argument coroutine factory
        attempts: Total tries, including the first one
        delay: Maps the retry number (1, 2, ...) to seconds to wait
        retry_on: Exception types that trigger another try
        label: Name used in log lines
        sleep: Injected for tests

    Returns whatever the first successful call returns.
    """
    attempts = max(1, attempts)

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt >= attempts:
                logger.warning("retry_exhausted", label=label, attempts=attempts, error=str(e))
                raise
            wait = delay(attempt)
            logger.info(
                "retrying",
                label=label,
                attempt=f"{attempt}/{attempts}",
                wait=f"{wait:.1f}s",
                error=str(e),
            )
            await sleep(wait)
