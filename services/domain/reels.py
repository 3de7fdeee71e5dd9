"""
Reel persistence and approval.

New reels wait in 'pending' until their scheduled_time passes, then the
auto-approval trigger approves them. approve() is conditional on the reel
still being pending, so two concurrent approvers cannot both win.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import asyncpg

from .models import Reel

logger = logging.getLogger(__name__)


class ReelService:
    """asyncpg-backed access to the reels table."""

    def __init__(self, db_pool: asyncpg.Pool, review_minutes: int = 20):
        self.db_pool = db_pool
        self.review_minutes = review_minutes

    async def get_by_id(self, reel_id: str) -> Optional[Reel]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM reels WHERE id = $1", reel_id)
        return Reel.from_record(row) if row else None

    async def create_from_fields(
        self,
        user_id: Optional[str],
        content_item_id: str,
        topic: str,
        category: Optional[str],
        description: Optional[str],
        why_it_matters: Optional[str],
        useful_tips: Optional[str],
        script: str,
    ) -> Reel:
        """Insert a pending reel, open for manual review until scheduled_time."""
        scheduled_time = datetime.now(timezone.utc) + timedelta(minutes=self.review_minutes)

        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO reels (
                    user_id, content_item_id, topic, category, description,
                    why_it_matters, useful_tips, script, status, scheduled_time
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, 'pending', $9)
                RETURNING *
                """,
                user_id,
                content_item_id,
                topic,
                category,
                description,
                why_it_matters,
                useful_tips,
                script,
                scheduled_time,
            )
        reel = Reel.from_record(row)
        logger.info(f"Created reel {reel.id} for content {content_item_id}, review until {scheduled_time}")
        return reel

    async def get_ready_for_auto_approval(self) -> List[Reel]:
        """Pending reels whose review window has closed."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM reels
                WHERE status = 'pending'
                  AND scheduled_time <= NOW()
                ORDER BY scheduled_time ASC
                """
            )
        return [Reel.from_record(r) for r in rows]

    async def approve(self, reel_id: str) -> Optional[Reel]:
        """
        Approve a reel if it is still pending.

        Returns:
            The approved reel, or None when another approver got there first
            (or the reel was rejected meanwhile)
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE reels
                SET status = 'approved', scheduled_time = NULL, updated_at = NOW()
                WHERE id = $1 AND status = 'pending'
                RETURNING *
                """,
                reel_id,
            )
        return Reel.from_record(row) if row else None

    async def get_approved_without_video(self, limit: int = 10) -> List[Reel]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM reels
                WHERE status = 'approved'
                  AND video_url IS NULL
                  AND provider_video_id IS NULL
                ORDER BY created_at ASC
                LIMIT $1
                """,
                limit,
            )
        return [Reel.from_record(r) for r in rows]

    async def update_video(self, reel_id: str, video_url: Optional[str], provider_video_id: str):
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE reels
                SET video_url = $1, provider_video_id = $2, updated_at = NOW()
                WHERE id = $3
                """,
                video_url,
                provider_video_id,
                reel_id,
            )
