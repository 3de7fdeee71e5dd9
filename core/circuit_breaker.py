"""
Circuit Breaker for video provider calls.

Stops hammering a provider (Kie, Poyo) that keeps failing: after enough
consecutive failed calls the breaker opens and calls are rejected
immediately until the recovery timeout passes.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Failing, requests are rejected immediately
- HALF_OPEN: Testing recovery, limited requests allowed
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""
    failure_threshold: int = 5  # Consecutive failed calls before opening
    recovery_timeout: float = 30.0  # Seconds open before a trial call
    half_open_max_calls: int = 3
    success_threshold: int = 2  # Trial successes needed to close
    timeout: float = 300.0  # Per-call timeout in seconds
    excluded_exceptions: tuple = ()  # Raised by a healthy provider; count as success


class CircuitBreakerOpen(Exception):
    """Raised when circuit breaker is open and request is rejected."""

    def __init__(self, service_name: str, retry_after: float):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker is OPEN for {service_name}. "
            f"Retry after {retry_after:.1f} seconds."
        )


class CircuitBreaker:
    """
    Circuit breaker for one provider.

    One call is one outcome: wrap a whole retried request, not each send.

    Usage:
        breaker = CircuitBreaker("kie")
        data = await breaker.call(send_with_retries, payload)
    """

    def __init__(self, service_name: str, config: Optional[CircuitBreakerConfig] = None):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._lock = asyncio.Lock()
        self.reset()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def _set_state(self, new_state: CircuitState):
        logger.info(f"Circuit breaker [{self.service_name}]: {self._state.value} -> {new_state.value}")
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = time.monotonic()
        elif new_state == CircuitState.HALF_OPEN:
            self._trial_calls = 0
            self._trial_successes = 0
        else:
            self._failures = 0

    async def _admit(self):
        """May raise CircuitBreakerOpen."""
        async with self._lock:
            if self._state == CircuitState.OPEN:
                waited = time.monotonic() - self._opened_at
                if waited < self.config.recovery_timeout:
                    raise CircuitBreakerOpen(self.service_name, self.config.recovery_timeout - waited)
                self._set_state(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_calls >= self.config.half_open_max_calls:
                    raise CircuitBreakerOpen(self.service_name, self.config.recovery_timeout)
                self._trial_calls += 1

    async def _record(self, error: Optional[BaseException]):
        async with self._lock:
            if error is None or isinstance(error, self.config.excluded_exceptions):
                self.total_successes += 1
                self._failures = 0
                if self._state == CircuitState.HALF_OPEN:
                    self._trial_successes += 1
                    if self._trial_successes >= self.config.success_threshold:
                        self._set_state(CircuitState.CLOSED)
                return

            self.total_failures += 1
            self._failures += 1
            logger.warning(
                f"Circuit breaker [{self.service_name}] failure: {error}. "
                f"Failure count: {self._failures}/{self.config.failure_threshold}"
            )
            if self._state == CircuitState.HALF_OPEN or self._failures >= self.config.failure_threshold:
                if self._state != CircuitState.OPEN:
                    self._set_state(CircuitState.OPEN)

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Execute an async function with circuit breaker protection.

        Raises:
            CircuitBreakerOpen: If the circuit is open
            asyncio.TimeoutError: If the call exceeds config.timeout
            Exception: Any exception from the function
        """
        await self._admit()
        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.config.timeout)
        except Exception as e:
            await self._record(e)
            raise
        await self._record(None)
        return result

    def reset(self):
        """Back to closed with cleared counters."""
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_calls = 0
        self._trial_successes = 0
        self.total_failures = 0
        self.total_successes = 0

    def get_status(self) -> dict:
        return {
            "service": self.service_name,
            "state": self._state.value,
            "failure_count": self._failures,
            "total_failures": self.total_failures,
            "total_successes": self.total_successes,
        }


# One breaker call wraps a full retried create or status lookup,
# so the timeout covers every send plus the backoff between them.
PROVIDER_BREAKER_CONFIGS = {
    "kie": CircuitBreakerConfig(failure_threshold=5, recovery_timeout=30.0),
    "poyo": CircuitBreakerConfig(failure_threshold=5, recovery_timeout=45.0),
}


def get_provider_breaker(provider: str, excluded_exceptions: tuple = ()) -> CircuitBreaker:
    """Fresh breaker tuned for a video provider."""
    base = PROVIDER_BREAKER_CONFIGS.get(provider, CircuitBreakerConfig())
    config = CircuitBreakerConfig(
        failure_threshold=base.failure_threshold,
        recovery_timeout=base.recovery_timeout,
        half_open_max_calls=base.half_open_max_calls,
        success_threshold=base.success_threshold,
        timeout=base.timeout,
        excluded_exceptions=excluded_exceptions,
    )
    return CircuitBreaker(provider, config)
