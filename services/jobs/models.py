"""Background job row model."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union


class JobType(str, Enum):
    RESEARCH = "research"
    SCRIPT_GENERATION = "script_generation"
    AUTO_APPROVAL = "auto_approval"
    VIDEO_GENERATION = "video_generation"
    TOPIC_GENERATION = "topic_generation"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def parse_job_type(value: Union[JobType, str]) -> Union[JobType, str]:
    """Known types become JobType; anything else is kept as the raw string."""
    if isinstance(value, JobType):
        return value
    try:
        return JobType(value)
    except ValueError:
        return value


@dataclass
class BackgroundJob:
    """One row of background_jobs."""
    id: str
    job_type: Union[JobType, str]
    payload: dict = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    last_error: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_known_type(self) -> bool:
        return isinstance(self.job_type, JobType)

    @property
    def type_name(self) -> str:
        return self.job_type.value if isinstance(self.job_type, JobType) else str(self.job_type)

    @classmethod
    def from_record(cls, record) -> "BackgroundJob":
        data = dict(record)
        payload: Any = data.get("payload") or {}
        if isinstance(payload, (str, bytes)):
            payload = json.loads(payload)

        return cls(
            id=str(data["id"]),
            job_type=parse_job_type(data["job_type"]),
            payload=payload,
            status=JobStatus(data.get("status") or JobStatus.PENDING.value),
            attempts=data.get("attempts") or 0,
            max_attempts=data.get("max_attempts") or 3,
            last_error=data.get("last_error"),
            scheduled_at=data.get("scheduled_at"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
