"""
Video Generation Service

Asynchronous Sora generation through two providers:
- Kie AI (createTask / recordInfo)
- Poyo (generate/submit / task status)

All calls go through retry-with-backoff and a per-provider circuit breaker.
"""

from .client import ProviderClient
from .errors import (
    AuthenticationError,
    GenerationFailedError,
    InsufficientCreditsError,
    MaintenanceError,
    NetworkTimeoutError,
    PollTimeoutError,
    ProviderError,
    RateLimitError,
    ServerError,
    TaskNotFoundError,
    ValidationError,
    VideoGenerationError,
)
from .models import CreateTaskOptions, CreateTaskResult, TaskDetail, TaskState
from .retry import retry_with_backoff

__all__ = [
    "ProviderClient",
    "CreateTaskOptions",
    "CreateTaskResult",
    "TaskDetail",
    "TaskState",
    "retry_with_backoff",
    "VideoGenerationError",
    "AuthenticationError",
    "GenerationFailedError",
    "InsufficientCreditsError",
    "MaintenanceError",
    "NetworkTimeoutError",
    "PollTimeoutError",
    "ProviderError",
    "RateLimitError",
    "ServerError",
    "TaskNotFoundError",
    "ValidationError",
]
