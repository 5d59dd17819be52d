"""
Retry With Backoff

Exponential backoff with jitter for directory API calls.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from integrations.errors import DirectoryError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_jitter: float) -> float:
    """Delay before retry number ``attempt`` (0-based): base * 2^attempt + jitter."""
    return base_delay * (2 ** attempt) + random.uniform(0, max_jitter)


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, DirectoryError) and error.retryable


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 5,
    base_delay: float = 1.0,
    max_jitter: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    operation: str = "directory call",
) -> T:
    """
    Call ``fn`` until it succeeds or a non-retryable error is raised.

    Only rate-limit and transient server errors are retried. After
    ``max_attempts`` total attempts the last error is re-raised unchanged.
    """

    def log_retry(state: RetryCallState) -> None:
        error = state.outcome.exception()
        logger.warning(
            f"{operation} hit {error.code.value} (HTTP {error.status_code}), "
            f"retrying in {state.next_action.sleep:.2f}s "
            f"(attempt {state.attempt_number}/{max_attempts})"
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=lambda state: backoff_delay(state.attempt_number - 1, base_delay, max_jitter),
        retry=retry_if_exception(_is_retryable),
        before_sleep=log_retry,
        sleep=sleep,
        reraise=True,
    )
    try:
        return await retrying(fn)
    except DirectoryError as e:
        if e.retryable:
            logger.error(
                f"{operation} failed after {max_attempts} attempts: "
                f"{e.code.value} (HTTP {e.status_code})"
            )
        raise
