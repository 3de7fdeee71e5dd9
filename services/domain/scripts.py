"""Script writing from researched content items."""

from .llm import GeminiClient
from .models import ContentItem


class ScriptService:
    def __init__(self, llm: GeminiClient):
        self.llm = llm

    async def generate_from_content(self, item: ContentItem) -> str:
        """Write a script from the item's research. Raises ValueError without research."""
        if item.research is None:
            raise ValueError("Content item must have research data to generate script")

        research = item.research
        return await self.llm.generate_script(
            idea=research.idea or item.topic,
            description=research.description,
            why_it_matters=research.why_it_matters,
            useful_tips=research.useful_tips,
            category=item.category,
        )
