"""
LLM Client - Gemini with Langfuse tracing

Usage:
    llm = GeminiClient(config.llm)
    topics = await llm.generate_topics(recent_topics=["Prop firm payouts"])

Features:
    - Gemini for topic, research and script generation
    - Langfuse tracing via @observe
    - Structured output with Pydantic models
"""

import logging
from typing import List, Optional

from google import genai
from google.genai import types
from langfuse import observe
from pydantic import BaseModel, Field

from core.config import LLMConfig

from .models import CATEGORIES, Research, Topic

logger = logging.getLogger(__name__)


# ============================================================
# Output Models
# ============================================================

class TopicList(BaseModel):
    """Fresh topic ideas, one per category"""
    topics: List[Topic]


class ScriptDraft(BaseModel):
    """A short-form video script"""
    script: str = Field(description="Full spoken script, hook first, ending with a call to action")
    estimated_duration_seconds: int = Field(description="Estimated spoken duration")


class LLMError(Exception):
    """Raised when the model returns nothing usable."""


# ============================================================
# Client
# ============================================================

class GeminiClient:
    """Gemini wrapper for the content collaborators."""

    def __init__(self, config: LLMConfig):
        self.config = config
        self._client: Optional[genai.Client] = None

    def get_client(self) -> genai.Client:
        """Get or create the Gemini client (lazy-loaded)."""
        if self._client is None:
            if not self.config.google_api_key:
                raise ValueError("GOOGLE_API_KEY environment variable not set")
            self._client = genai.Client(api_key=self.config.google_api_key)
        return self._client

    async def _generate(self, system_prompt: str, user_prompt: str, schema, temperature: float):
        response = await self.get_client().aio.models.generate_content(
            model=self.config.model,
            contents=user_prompt,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                response_mime_type="application/json",
                response_schema=schema,
                temperature=temperature,
                max_output_tokens=4096,
            ),
        )
        if not response.text:
            raise LLMError(f"Empty response from {self.config.model}")
        return schema.model_validate_json(response.text)

    @observe(name="generate_topics")
    async def generate_topics(self, recent_topics: List[str], count: Optional[int] = None) -> List[Topic]:
        """
        Generate fresh short-video topics.

        Args:
            recent_topics: Topics already covered; the model must not repeat them
            count: Number of topics (defaults to config.topics_per_run)
        """
        count = count or self.config.topics_per_run
        categories = ", ".join(CATEGORIES)

        system_prompt = f"""You are a research scout for short educational finance videos.

Your topics are:
- Specific and fact-checked, framed positively
- Useful to a trader who wants to grow without risking personal funds
- Free of clickbait and promises of easy money

Never repeat or lightly rephrase a topic the user lists as already covered.
Every topic belongs to exactly one category: {categories}.
"""

        covered = "\n".join(f"- {t}" for t in recent_topics) or "- (none)"
        user_prompt = f"""Suggest {count} fresh topics for today.

Already covered:
{covered}

Spread the topics across the categories in this order: {categories}.
"""

        result = await self._generate(system_prompt, user_prompt, TopicList, temperature=0.8)
        return result.topics[:count]

    @observe(name="research_topic")
    async def research_topic(self, topic: str, category: Optional[str]) -> Research:
        """Return one structured research object for a topic."""
        categories = ", ".join(CATEGORIES)

        system_prompt = f"""You are a research analyst for short educational finance videos.

For each topic return exactly one research object:
- idea: the topic, tightened into a headline
- description: what it is, in friendly simple English
- why_it_matters: why the viewer should care
- useful_tips: concrete, actionable tips
- category: one of {categories}
- keywords: 3-6 search keywords

Spend most of the words on benefits and solutions, fewer on rules and limits.
"""

        user_prompt = f"Research this topic: {topic} (category: {category or 'any'})"

        return await self._generate(system_prompt, user_prompt, Research, temperature=0.4)

    @observe(name="generate_script")
    async def generate_script(
        self,
        idea: str,
        description: str = "",
        why_it_matters: str = "",
        useful_tips: str = "",
        category: Optional[str] = None,
    ) -> str:
        """
        Write a ~15 second script (45-50 words) from research fields.

        Returns:
            The script text
        """
        system_prompt = """You are a scriptwriter for 15-second educational videos (about 45-50 words).

Timing:
- Hook: 0-3 seconds, grabs attention immediately
- Main content: 3-12 seconds, delivers value quickly
- Ending: 12-15 seconds, clear call to action

Write only the spoken words. No scene markers, no stage directions.
"""

        user_prompt = f"""Create a script using ALL of the following:

Topic/Idea: {idea}
Description: {description or '(not provided)'}
Why It Matters: {why_it_matters or '(not provided)'}
Useful Tips: {useful_tips or '(not provided)'}
Category: {category or '(not provided)'}

Fields marked "(not provided)" can be ignored; every other field must shape the script.
"""

        draft = await self._generate(system_prompt, user_prompt, ScriptDraft, temperature=0.5)
        script = draft.script.strip()
        if not script:
            raise LLMError("Model returned an empty script")
        return script
