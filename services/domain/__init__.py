"""
Domain Services

Content items, reels and the LLM-backed collaborators that research
topics and write scripts.
"""

from .content import ContentService
from .llm import GeminiClient
from .models import ContentItem, Reel, ReelStatus, Research, Topic
from .prompts import build_video_prompt
from .reels import ReelService
from .research import ResearchService
from .scripts import ScriptService

__all__ = [
    "ContentService",
    "GeminiClient",
    "ContentItem",
    "Reel",
    "ReelStatus",
    "Research",
    "Topic",
    "ReelService",
    "ResearchService",
    "ScriptService",
    "build_video_prompt",
]
