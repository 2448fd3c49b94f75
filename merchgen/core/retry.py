"""Retry with exponential backoff for async operations.

Every external call made by the pipeline (brand fetch, content scrape,
AI generation, storage upload, email send) goes through retry_with_backoff.

ERROR LOGGING REQUIREMENTS:
- Log each failed attempt with attempt number, delay and error type
- Log final exhaustion at WARNING level; the caller decides severity
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from merchgen.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 1.0


def backoff_delay(initial_delay: float, attempt: int) -> float:
    """Delay before the retry that follows zero-indexed `attempt`."""
    return initial_delay * (2**attempt)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    operation_name: str | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Run `operation` until it succeeds or `max_retries` attempts are used.

    After failed attempt n (zero-indexed) the helper waits
    ``initial_delay * 2**n`` before trying again. A delay of zero or less
    retries immediately. Exceptions not matching `retry_on` propagate at once.
    When attempts run out, the last exception is re-raised unchanged.

    Args:
        operation: Zero-argument callable returning an awaitable.
        max_retries: Total attempts, including the first. Values below 1 mean 1.
        initial_delay: Seconds to wait after the first failure.
        retry_on: Exception types considered transient.
        operation_name: Label for log records.
        sleep: Awaitable sleep; injectable for tests.

    Returns:
        The value returned by the first successful attempt.
    """
    attempts = max(1, max_retries)
    name = operation_name or getattr(operation, "__name__", "operation")

    for attempt in range(attempts):
        try:
            return await operation()
        except retry_on as e:
            if attempt >= attempts - 1:
                logger.warning(
                    f"{name} failed after {attempts} attempts",
                    extra={
                        "operation": name,
                        "attempts": attempts,
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    },
                )
                raise

            delay = backoff_delay(initial_delay, attempt)
            logger.info(
                f"{name} attempt {attempt + 1} failed, retrying in {max(delay, 0)}s",
                extra={
                    "operation": name,
                    "attempt": attempt + 1,
                    "max_retries": attempts,
                    "delay_seconds": max(delay, 0),
                    "error_type": type(e).__name__,
                },
            )
            if delay > 0:
                await sleep(delay)

    # range(attempts) always returns or raises above
    raise AssertionError("unreachable")
