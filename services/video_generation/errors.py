"""
Provider error taxonomy.

Every failure that leaves the video generation client is one of these
classes. Each carries the provider name, the HTTP (or envelope) status
code when there was one, and whether retrying the surrounding job can help.
"""

import asyncio
from typing import Optional

import httpx

from core.circuit_breaker import CircuitBreakerOpen

# Kie reports planned maintenance with this non-standard code
MAINTENANCE_STATUS = 455


class VideoGenerationError(Exception):
    """Base class for provider failures."""

    default_code = "PROVIDER_ERROR"
    retryable = True

    def __init__(
        self,
        message: str,
        error_code: str = None,
        provider: str = None,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        self.error_code = error_code or self.default_code
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(message)


class ProviderError(VideoGenerationError):
    """Provider failure that fits no narrower class."""


class AuthenticationError(VideoGenerationError):
    default_code = "AUTHENTICATION_FAILED"
    retryable = False


class InsufficientCreditsError(VideoGenerationError):
    default_code = "INSUFFICIENT_CREDITS"
    retryable = False


class ValidationError(VideoGenerationError):
    default_code = "VALIDATION_ERROR"
    retryable = False


class MaintenanceError(VideoGenerationError):
    default_code = "MAINTENANCE"
    retryable = False


class RateLimitError(VideoGenerationError):
    default_code = "RATE_LIMITED"


class ServerError(VideoGenerationError):
    default_code = "SERVER_ERROR"


class NetworkTimeoutError(VideoGenerationError):
    default_code = "TIMEOUT"


class TaskNotFoundError(VideoGenerationError):
    default_code = "TASK_NOT_FOUND"


class GenerationFailedError(VideoGenerationError):
    """The provider finished the task and reported failure."""

    default_code = "GENERATION_FAILED"

    def __init__(self, message: str, fail_reason: Optional[str] = None, **kwargs):
        self.fail_reason = fail_reason
        super().__init__(message, **kwargs)


class PollTimeoutError(VideoGenerationError):
    """The task never reached a terminal state within the poll budget."""

    default_code = "POLL_TIMEOUT"


def error_for_status(
    status: int,
    provider: str,
    detail: Optional[str] = None,
    retry_after: Optional[float] = None,
) -> VideoGenerationError:
    """Map an HTTP or envelope status code to a typed, human-readable error."""
    name = (provider or "provider").upper()
    kwargs = {"provider": provider, "status_code": status, "retry_after": retry_after}

    if status == 401:
        return AuthenticationError(
            f"{name} API authentication failed. Please check the {name}_API_KEY setting.", **kwargs
        )
    if status == 402:
        return InsufficientCreditsError(f"Insufficient credits in your {name} account.", **kwargs)
    if status == 404:
        return TaskNotFoundError(f"{name} API error: {detail or 'resource not found'}", **kwargs)
    if status == 422:
        return ValidationError(f"Invalid request parameters: {detail or 'Validation error'}", **kwargs)
    if status == 429:
        return RateLimitError(f"{name} API rate limit exceeded. Please try again later.", **kwargs)
    if status == MAINTENANCE_STATUS:
        return MaintenanceError(f"{name} service is currently undergoing maintenance.", **kwargs)
    if 500 <= status < 600:
        return ServerError(f"{name} API server error ({status}). Please try again later.", **kwargs)
    return ProviderError(
        f"{name} API error: {detail or f'unexpected status {status}'}",
        error_code=f"HTTP_{status}",
        **kwargs,
    )


def _response_detail(response: httpx.Response) -> Optional[str]:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or None

    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return data.get("msg") or data.get("message")


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        # HTTP-date form is not used by these providers
        return None


def map_provider_error(exc: BaseException, provider: str) -> VideoGenerationError:
    """Convert any transport or protocol failure into the taxonomy."""
    if isinstance(exc, VideoGenerationError):
        if exc.provider is None:
            exc.provider = provider
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        return error_for_status(
            response.status_code,
            provider,
            detail=_response_detail(response),
            retry_after=_parse_retry_after(response),
        )

    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return NetworkTimeoutError(
            f"Request timeout while connecting to {provider.upper()} API.",
            provider=provider,
        )

    if isinstance(exc, httpx.RequestError):
        return ProviderError(
            f"{provider.upper()} API request failed: {type(exc).__name__}: {exc}",
            error_code="REQUEST_ERROR",
            provider=provider,
        )

    if isinstance(exc, CircuitBreakerOpen):
        return ProviderError(str(exc), error_code="CIRCUIT_BREAKER_OPEN", provider=provider)

    return ProviderError(
        f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__,
        error_code="UNEXPECTED_ERROR",
        provider=provider,
    )
