"""
Pipeline entities: topics, content items with research, and reels.

Rows come back from asyncpg as Records; JSONB columns arrive as strings
unless a codec is registered, so from_record() accepts either form.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, Field

# Topic/research categories the LLM is allowed to choose from
CATEGORIES = ("Trading", "Fin. Freedom", "Lifestyle")


class Topic(BaseModel):
    """A generated topic idea."""
    idea: str = Field(validation_alias=AliasChoices("idea", "Idea"), description="Short topic in English")
    category: str = Field(validation_alias=AliasChoices("category", "Category"), description="One of the allowed categories")


class Research(BaseModel):
    """Structured research for one topic. Older rows use TitleCase keys."""
    idea: str = Field(default="", validation_alias=AliasChoices("idea", "Idea"))
    description: str = Field(default="", validation_alias=AliasChoices("description", "Description"))
    why_it_matters: str = Field(default="", validation_alias=AliasChoices("why_it_matters", "WhyItMatters"))
    useful_tips: str = Field(default="", validation_alias=AliasChoices("useful_tips", "UsefulTips"))
    category: Optional[str] = Field(default=None, validation_alias=AliasChoices("category", "Category"))
    keywords: List[str] = Field(default_factory=list)


class ReelStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


def _json_value(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class ContentItem(BaseModel):
    """A topic moving through research and scripting."""
    id: str
    user_id: Optional[str] = None
    topic: str
    category: Optional[str] = None
    research: Optional[Research] = None
    done: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record) -> "ContentItem":
        data = dict(record)
        data["id"] = str(data["id"])
        if data.get("user_id") is not None:
            data["user_id"] = str(data["user_id"])
        research = _json_value(data.get("research"))
        data["research"] = Research.model_validate(research) if research else None
        return cls.model_validate(data)


class Reel(BaseModel):
    """A scripted short video awaiting approval and rendering."""
    id: str
    user_id: Optional[str] = None
    content_item_id: Optional[str] = None
    topic: str
    category: Optional[str] = None
    description: Optional[str] = None
    why_it_matters: Optional[str] = None
    useful_tips: Optional[str] = None
    script: Optional[str] = None
    status: ReelStatus = ReelStatus.PENDING
    scheduled_time: Optional[datetime] = None
    video_url: Optional[str] = None
    provider_video_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def has_video(self) -> bool:
        return bool(self.provider_video_id or self.video_url)

    @classmethod
    def from_record(cls, record) -> "Reel":
        data = dict(record)
        for key in ("id", "user_id", "content_item_id"):
            if data.get(key) is not None:
                data[key] = str(data[key])
        return cls.model_validate(data)
