"""
Persistent job queue on the background_jobs table.

State machine:
    pending -> processing -> completed
                          -> pending   (retryable failure, budget left)
                          -> failed    (non-retryable or budget spent)

Claiming is a single conditional UPDATE with FOR UPDATE SKIP LOCKED, so
concurrent drainers never claim the same row. Transitions out of
processing are guarded on the current status; a stale transition is a
logged no-op rather than an error.
"""

import json
import logging
from datetime import datetime
from typing import Dict, List, Optional, Union

import asyncpg

from core.config import QueueConfig

from .models import BackgroundJob, JobStatus, JobType

logger = logging.getLogger(__name__)


class JobQueue:
    """
    asyncpg-backed job queue.

    Usage:
        queue = JobQueue(db_pool, config.queue)
        job_id = await queue.enqueue(JobType.RESEARCH, {"content_item_id": item_id})
        for job in await queue.claim_next_batch(10):
            ...
    """

    def __init__(self, db_pool: asyncpg.Pool, config: Optional[QueueConfig] = None):
        self.db_pool = db_pool
        self.config = config or QueueConfig()

    async def enqueue(
        self,
        job_type: Union[JobType, str],
        payload: dict,
        scheduled_at: Optional[datetime] = None,
        max_attempts: Optional[int] = None,
    ) -> str:
        """Insert a pending job and return its id."""
        type_name = job_type.value if isinstance(job_type, JobType) else job_type

        async with self.db_pool.acquire() as conn:
            job_id = await conn.fetchval(
                """
                INSERT INTO background_jobs (job_type, payload, status, attempts, max_attempts, scheduled_at)
                VALUES ($1, $2::jsonb, 'pending', 0, $3, COALESCE($4, NOW()))
                RETURNING id
                """,
                type_name,
                json.dumps(payload),
                max_attempts or self.config.max_attempts,
                scheduled_at,
            )

        logger.info(f"Enqueued {type_name} job {job_id}: {payload}")
        return str(job_id)

    async def claim_next_batch(self, limit: int) -> List[BackgroundJob]:
        """Atomically move up to `limit` due pending jobs to processing, oldest first."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                UPDATE background_jobs
                SET status = 'processing', updated_at = NOW()
                WHERE id IN (
                    SELECT id FROM background_jobs
                    WHERE status = 'pending'
                      AND scheduled_at <= NOW()
                      AND attempts < max_attempts
                    ORDER BY created_at ASC
                    LIMIT $1
                    FOR UPDATE SKIP LOCKED
                )
                AND status = 'pending'
                RETURNING *
                """,
                limit,
            )

        jobs = [BackgroundJob.from_record(r) for r in rows]
        # RETURNING order is unspecified
        jobs.sort(key=lambda j: (j.created_at is None, j.created_at or datetime.min))
        return jobs

    async def claim(self, job_id: str) -> Optional[BackgroundJob]:
        """Claim one specific pending job, ignoring its scheduled_at."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE background_jobs
                SET status = 'processing', updated_at = NOW()
                WHERE id = $1
                  AND status = 'pending'
                  AND attempts < max_attempts
                RETURNING *
                """,
                job_id,
            )

        if row is None:
            logger.warning(f"Job {job_id} not claimable (missing or not pending)")
            return None
        return BackgroundJob.from_record(row)

    async def mark_completed(self, job_id: str) -> bool:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE background_jobs
                SET status = 'completed', updated_at = NOW()
                WHERE id = $1 AND status = 'processing'
                RETURNING id
                """,
                job_id,
            )

        if row is None:
            logger.warning(f"mark_completed ignored: job {job_id} is missing or not processing")
            return False
        return True

    async def mark_failed(self, job_id: str, message: str, retryable: bool = True) -> Optional[JobStatus]:
        """
        Record a failure on a processing job.

        A retryable failure with attempts left goes back to pending,
        delayed by the configured retry delay; anything else is terminal.

        Returns:
            The resulting status, or None when the job was not processing
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE background_jobs
                SET attempts = attempts + 1,
                    last_error = $2,
                    status = CASE
                        WHEN $3::boolean AND attempts + 1 < max_attempts THEN 'pending'
                        ELSE 'failed'
                    END,
                    scheduled_at = CASE
                        WHEN $3::boolean AND attempts + 1 < max_attempts
                            THEN NOW() + make_interval(secs => $4::double precision)
                        ELSE scheduled_at
                    END,
                    updated_at = NOW()
                WHERE id = $1 AND status = 'processing'
                RETURNING status, attempts, max_attempts
                """,
                job_id,
                message,
                retryable,
                float(self.config.retry_delay_seconds),
            )

        if row is None:
            logger.warning(f"mark_failed ignored: job {job_id} is missing or not processing")
            return None

        status = JobStatus(row["status"])
        if status == JobStatus.FAILED:
            logger.error(f"Job {job_id} failed permanently after {row['attempts']} attempts: {message}")
        else:
            logger.warning(
                f"Job {job_id} failed (attempt {row['attempts']}/{row['max_attempts']}), "
                f"retrying in {self.config.retry_delay_seconds}s: {message}"
            )
        return status

    async def has_open_job(
        self,
        job_type: Union[JobType, str],
        payload_key: Optional[str] = None,
        value: Optional[str] = None,
        include_failed: bool = False,
    ) -> bool:
        """
        True if a pending or processing job of this type exists, optionally for one entity.

        With include_failed, a terminally failed job also counts: the entity
        already spent its attempt budget and is left for an operator to requeue.
        """
        type_name = job_type.value if isinstance(job_type, JobType) else job_type
        statuses = [JobStatus.PENDING.value, JobStatus.PROCESSING.value]
        if include_failed:
            statuses.append(JobStatus.FAILED.value)

        async with self.db_pool.acquire() as conn:
            return await conn.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1 FROM background_jobs
                    WHERE job_type = $1
                      AND status = ANY($4::text[])
                      AND ($2::text IS NULL OR payload->>$2 = $3)
                )
                """,
                type_name,
                payload_key,
                None if value is None else str(value),
                statuses,
            )

    async def get(self, job_id: str) -> Optional[BackgroundJob]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM background_jobs WHERE id = $1", job_id)
        return BackgroundJob.from_record(row) if row else None

    async def count_by_status(self) -> Dict[str, int]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT status, COUNT(*) AS count FROM background_jobs GROUP BY status"
            )
        counts = {s.value: 0 for s in JobStatus}
        counts.update({r["status"]: r["count"] for r in rows})
        return counts
