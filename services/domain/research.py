"""Topic generation and research, backed by the LLM."""

import logging
from typing import List, Optional

from .content import ContentService
from .llm import GeminiClient
from .models import Research, Topic

logger = logging.getLogger(__name__)

# How many past topics the model is told to avoid
RECENT_TOPICS_WINDOW = 10


class ResearchService:
    def __init__(self, llm: GeminiClient, content: ContentService):
        self.llm = llm
        self.content = content

    async def generate_topics(self, user_id: Optional[str] = None) -> List[Topic]:
        """Fresh topics that do not repeat the user's recent ones."""
        recent = await self.content.get_recent_topics(user_id, RECENT_TOPICS_WINDOW)
        topics = await self.llm.generate_topics(recent)

        seen = {t.strip().lower() for t in recent}
        fresh = []
        for topic in topics:
            key = topic.idea.strip().lower()
            if not key or key in seen:
                logger.info(f"Dropping repeated topic: {topic.idea}")
                continue
            seen.add(key)
            fresh.append(topic)
        return fresh

    async def research_topic(self, topic: str, category: Optional[str]) -> Research:
        research = await self.llm.research_topic(topic, category)
        if not research.idea:
            research.idea = topic
        if not research.category:
            research.category = category
        return research
