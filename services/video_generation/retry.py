"""
Retry with exponential backoff, shared by every provider adapter.

Only failures whose status code passes the predicate are retried (by
default 429 and 5xx). The delay doubles each attempt unless the provider
sent a Retry-After hint, which wins.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient_status(status: int) -> bool:
    """Rate limit or server error."""
    return status == 429 or 500 <= status < 600


def status_of(exc: BaseException) -> Optional[int]:
    """HTTP status carried by an exception, if any."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def retry_after_of(exc: BaseException) -> Optional[float]:
    """Server-supplied Retry-After hint in seconds, if any."""
    hint = getattr(exc, "retry_after", None)
    if isinstance(hint, (int, float)):
        return float(hint)
    if isinstance(exc, httpx.HTTPStatusError):
        value = exc.response.headers.get("retry-after")
        if value is not None:
            try:
                return max(0.0, float(value))
            except ValueError:
                return None
    return None


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    is_retryable: Callable[[int], bool] = is_transient_status,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Call fn, retrying retryable status failures with exponential backoff.

    Args:
        fn: Zero-argument coroutine function to call
        max_retries: Total number of calls before giving up
        initial_delay: Delay in seconds before the first retry
        is_retryable: Predicate on the failure's status code
        sleep: Awaitable sleep, injectable for tests

    Returns:
        Whatever fn returns

    Raises:
        The last exception from fn. Failures without a retryable status
        propagate on first occurrence.
    """

    def should_retry(exc: BaseException) -> bool:
        status = status_of(exc)
        return status is not None and is_retryable(status)

    def wait(retry_state: RetryCallState) -> float:
        hint = retry_after_of(retry_state.outcome.exception())
        if hint is not None:
            return hint
        return initial_delay * 2 ** (retry_state.attempt_number - 1)

    def log_retry(retry_state: RetryCallState):
        exc = retry_state.outcome.exception()
        logger.warning(
            f"Rate limit or server error ({status_of(exc)}), retrying in "
            f"{retry_state.next_action.sleep:.1f}s "
            f"(attempt {retry_state.attempt_number}/{max_retries})"
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, max_retries)),
        wait=wait,
        retry=retry_if_exception(should_retry),
        before_sleep=log_retry,
        sleep=sleep,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            result = await fn()
    return result
