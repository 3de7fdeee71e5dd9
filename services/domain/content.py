"""
Content item persistence.

A content item starts as a bare topic, gains research, and is marked done
once a reel has been scripted from it.
"""

import json
import logging
from typing import List, Optional

import asyncpg

from .models import ContentItem, Research

logger = logging.getLogger(__name__)


class ContentService:
    """asyncpg-backed access to the content_items table."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def get_by_id(self, content_item_id: str) -> Optional[ContentItem]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM content_items WHERE id = $1", content_item_id)
        return ContentItem.from_record(row) if row else None

    async def get_pending(self, limit: int = 5, user_id: Optional[str] = None) -> List[ContentItem]:
        """Items not yet scripted, oldest first."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM content_items
                WHERE done = FALSE
                  AND ($2::uuid IS NULL OR user_id = $2::uuid)
                ORDER BY created_at ASC
                LIMIT $1
                """,
                limit,
                user_id,
            )
        return [ContentItem.from_record(r) for r in rows]

    async def get_without_research(self, limit: int = 3, user_id: Optional[str] = None) -> List[ContentItem]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM content_items
                WHERE research IS NULL
                  AND done = FALSE
                  AND ($2::uuid IS NULL OR user_id = $2::uuid)
                ORDER BY created_at ASC
                LIMIT $1
                """,
                limit,
                user_id,
            )
        return [ContentItem.from_record(r) for r in rows]

    async def get_recent_topics(self, user_id: Optional[str] = None, limit: int = 10) -> List[str]:
        """Most recent topics, newest first, for de-duplication."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT topic FROM content_items
                WHERE ($2::uuid IS NULL OR user_id = $2::uuid)
                ORDER BY created_at DESC
                LIMIT $1
                """,
                limit,
                user_id,
            )
        return [r["topic"] for r in rows]

    async def create_item(self, user_id: str, topic: str, category: Optional[str]) -> ContentItem:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO content_items (user_id, topic, category)
                VALUES ($1, $2, $3)
                RETURNING *
                """,
                user_id,
                topic,
                category,
            )
        item = ContentItem.from_record(row)
        logger.info(f"Created content item {item.id}: {topic}")
        return item

    async def update_research(self, content_item_id: str, research: Research):
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE content_items
                SET research = $1::jsonb, updated_at = NOW()
                WHERE id = $2
                """,
                json.dumps(research.model_dump()),
                content_item_id,
            )

    async def mark_done(self, content_item_id: str):
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                "UPDATE content_items SET done = TRUE, updated_at = NOW() WHERE id = $1",
                content_item_id,
            )
