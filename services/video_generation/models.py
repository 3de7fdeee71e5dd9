"""
Provider-neutral task models.

Adapters translate each provider's wire format into these; nothing above
the adapter layer sees a raw provider response.
"""

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

Provider = Literal["kie", "poyo"]

# Tried in order on create; each entry is one full retry_with_backoff run
DEFAULT_MODEL = "sora-2"
FALLBACK_MODEL = "sora-2-stable"


class TaskState(str, Enum):
    """Canonical task state shared by every provider."""
    WAITING = "waiting"
    SUCCESS = "success"
    FAIL = "fail"


class CreateTaskOptions(BaseModel):
    """Optional knobs for a create call. Adapters ignore what they cannot send."""
    duration_seconds: int = 10
    model: Optional[str] = None
    callback_url: Optional[str] = None
    remove_watermark: bool = True
    character_ids: List[str] = Field(default_factory=list)
    language: Optional[str] = None
    image_urls: List[str] = Field(default_factory=list)
    style: Optional[str] = None


class CreateTaskResult(BaseModel):
    """Normalized create-task response."""
    task_id: str
    provider: str
    model: Optional[str] = None
    status: Optional[str] = None
    created_time: Optional[str] = None


class TaskDetail(BaseModel):
    """Normalized view of a provider task."""
    task_id: str
    provider: str
    state: TaskState = TaskState.WAITING
    result_urls: List[str] = Field(default_factory=list)
    fail_reason: Optional[str] = None
    fail_code: Optional[str] = None
    model: Optional[str] = None

    @property
    def video_url(self) -> Optional[str]:
        return self.result_urls[0] if self.result_urls else None

    @property
    def is_terminal(self) -> bool:
        return self.state != TaskState.WAITING


def normalize_state(raw: Optional[str]) -> TaskState:
    """Map any provider state vocabulary onto TaskState."""
    value = (raw or "").strip().lower()
    if value in ("success", "finished"):
        return TaskState.SUCCESS
    if value in ("fail", "failed"):
        return TaskState.FAIL
    return TaskState.WAITING


def fallback_sequence(requested: Optional[str] = None) -> List[str]:
    """Models to try on create: the requested model twice, then the stable model twice."""
    primary = requested or DEFAULT_MODEL
    return [primary, primary, FALLBACK_MODEL, FALLBACK_MODEL]
