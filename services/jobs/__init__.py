"""
Background Job Pipeline

Persistent queue, dispatcher and periodic triggers that move a topic from
research to a rendered video.
"""

from .models import BackgroundJob, JobStatus, JobType
from .processor import JobPreconditionError, JobProcessor
from .queue import JobQueue
from .scheduler import AsyncioTimerRegistry, PipelineScheduler, TimerRegistry

__all__ = [
    "BackgroundJob",
    "JobStatus",
    "JobType",
    "JobPreconditionError",
    "JobProcessor",
    "JobQueue",
    "AsyncioTimerRegistry",
    "PipelineScheduler",
    "TimerRegistry",
]
