"""
Job processor: advances content through the pipeline.

    topic_generation -> content items
    research         -> research on a content item
    script_generation -> reel (pending review) -> auto_approval
    auto_approval    -> approved reels -> video_generation
    video_generation -> provider video written onto the reel

Each handler either finishes its stage or raises. process() turns the
outcome into a queue transition; failures are retried unless the error
says retrying cannot help.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional

from core.config import Config
from services.domain.content import ContentService
from services.domain.models import ReelStatus
from services.domain.prompts import build_video_prompt
from services.domain.reels import ReelService
from services.domain.research import ResearchService
from services.domain.scripts import ScriptService
from services.video_generation.client import ProviderClient
from services.video_generation.models import CreateTaskOptions

from .models import BackgroundJob, JobType
from .queue import JobQueue

logger = logging.getLogger(__name__)


class JobPreconditionError(Exception):
    """The job's inputs are missing or in the wrong state; retrying will not help."""

    retryable = False


def _require(payload: dict, key: str, job_type: JobType) -> str:
    value = payload.get(key)
    if not value:
        raise JobPreconditionError(f"{key} is required for {job_type.value}")
    return value


class JobProcessor:
    """
    Dispatches claimed jobs to their handlers.

    Usage:
        processor = JobProcessor(queue, content, reels, research, scripts, provider, config)
        processed = await processor.drain()
    """

    def __init__(
        self,
        queue: JobQueue,
        content: ContentService,
        reels: ReelService,
        research: ResearchService,
        scripts: ScriptService,
        provider: ProviderClient,
        config: Config,
    ):
        self.queue = queue
        self.content = content
        self.reels = reels
        self.research = research
        self.scripts = scripts
        self.provider = provider
        self.config = config

        self._handlers: Dict[JobType, Callable[[BackgroundJob], Awaitable[None]]] = {
            JobType.RESEARCH: self._handle_research,
            JobType.SCRIPT_GENERATION: self._handle_script_generation,
            JobType.AUTO_APPROVAL: self._handle_auto_approval,
            JobType.VIDEO_GENERATION: self._handle_video_generation,
            JobType.TOPIC_GENERATION: self._handle_topic_generation,
        }

    async def process(self, job: BackgroundJob) -> bool:
        """
        Run one claimed job and record the outcome.

        Returns:
            True if the job completed
        """
        handler = self._handlers.get(job.job_type) if job.is_known_type else None
        if handler is None:
            logger.error(f"Job {job.id} has unknown type: {job.type_name}")
            await self.queue.mark_failed(job.id, f"Unknown job type: {job.type_name}", retryable=False)
            return False

        logger.info(f"Processing {job.type_name} job {job.id} (attempt {job.attempts + 1}/{job.max_attempts})")

        try:
            await handler(job)
        except Exception as e:
            message = str(e) or type(e).__name__
            retryable = getattr(e, "retryable", True)
            logger.error(f"Job {job.id} ({job.type_name}) failed: {type(e).__name__}: {message}")
            await self.queue.mark_failed(job.id, message, retryable=retryable)
            return False

        await self.queue.mark_completed(job.id)
        logger.info(f"Job {job.id} ({job.type_name}) completed")
        return True

    async def drain(self, limit: Optional[int] = None) -> int:
        """Claim a batch of due jobs and process them in order. Returns the number processed."""
        jobs = await self.queue.claim_next_batch(limit or self.config.queue.drain_batch_size)
        for job in jobs:
            # A failed status write must not strand the rest of the claimed batch
            try:
                await self.process(job)
            except Exception as e:
                logger.error(f"Error processing job {job.id} ({job.type_name}): {type(e).__name__}: {e}")
        if jobs:
            logger.info(f"Processed {len(jobs)} jobs")
        return len(jobs)

    async def run_now(self, job_type: JobType, payload: dict) -> Optional[BackgroundJob]:
        """Enqueue a job and process it immediately. Returns the job's final row."""
        job_id = await self.queue.enqueue(job_type, payload)
        job = await self.queue.claim(job_id)
        if job is None:
            return None
        await self.process(job)
        return await self.queue.get(job_id)

    async def run_auto_approval(self) -> int:
        """
        Approve every reel whose review window has closed and queue its video.

        Each reel is approved independently; one failure does not stop the rest.

        Returns:
            Number of reels this call approved
        """
        reels = await self.reels.get_ready_for_auto_approval()
        approved = 0

        for reel in reels:
            try:
                result = await self.reels.approve(reel.id)
                if result is None:
                    logger.info(f"Reel {reel.id} already handled by another approver, skipping")
                    continue
                logger.info(f"Auto-approved reel {reel.id}")
                await self.queue.enqueue(JobType.VIDEO_GENERATION, {"reel_id": reel.id})
                approved += 1
            except Exception as e:
                logger.error(f"Error auto-approving reel {reel.id}: {e}")

        if reels:
            logger.info(f"Auto-approval processed {len(reels)} reels, approved {approved}")
        return approved

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_research(self, job: BackgroundJob):
        content_item_id = _require(job.payload, "content_item_id", JobType.RESEARCH)

        item = await self.content.get_by_id(content_item_id)
        if item is None:
            raise JobPreconditionError(f"Content item not found: {content_item_id}")

        if item.research is not None:
            logger.info(f"Skipping research: content item {item.id} already has research")
            return

        research = await self.research.research_topic(item.topic, item.category)
        await self.content.update_research(item.id, research)

    async def _handle_script_generation(self, job: BackgroundJob):
        content_item_id = _require(job.payload, "content_item_id", JobType.SCRIPT_GENERATION)

        item = await self.content.get_by_id(content_item_id)
        if item is None:
            raise JobPreconditionError(f"Content item not found: {content_item_id}")
        if item.research is None:
            raise JobPreconditionError(f"Content item {content_item_id} must have research data")
        if item.done:
            logger.info(f"Skipping script generation: content item {item.id} is already done")
            return

        script = await self.scripts.generate_from_content(item)

        research = item.research
        reel = await self.reels.create_from_fields(
            user_id=item.user_id,
            content_item_id=item.id,
            topic=research.idea or item.topic,
            category=item.category,
            description=research.description or None,
            why_it_matters=research.why_it_matters or None,
            useful_tips=research.useful_tips or None,
            script=script,
        )

        await self.content.mark_done(item.id)
        await self.queue.enqueue(JobType.AUTO_APPROVAL, {"reel_id": reel.id})

    async def _handle_auto_approval(self, job: BackgroundJob):
        await self.run_auto_approval()

    async def _handle_video_generation(self, job: BackgroundJob):
        reel_id = _require(job.payload, "reel_id", JobType.VIDEO_GENERATION)

        reel = await self.reels.get_by_id(reel_id)
        if reel is None:
            raise JobPreconditionError(f"Reel not found: {reel_id}")

        if reel.has_video:
            logger.info(
                f"Skipping video generation: reel {reel_id} already has a video "
                f"(provider_video_id={reel.provider_video_id}, has_url={bool(reel.video_url)})"
            )
            return

        if reel.status != ReelStatus.APPROVED:
            raise JobPreconditionError(f"Reel is not approved (status: {reel.status.value})")
        if not (reel.script or "").strip():
            raise JobPreconditionError("Reel must have a script")

        duration = self.config.default_duration_seconds
        prompt = build_video_prompt(reel, duration)

        def on_progress(percent: int, state: str):
            logger.info(f"Reel {reel_id} video: {percent}% ({state})")

        detail = await self.provider.generate_video(
            prompt,
            aspect_ratio=self.config.default_aspect_ratio,
            options=CreateTaskOptions(duration_seconds=duration),
            on_progress=on_progress,
        )

        await self.reels.update_video(reel_id, detail.video_url, detail.task_id)
        logger.info(f"Reel {reel_id} video ready: {detail.video_url}")

    async def _handle_topic_generation(self, job: BackgroundJob):
        user_id = _require(job.payload, "user_id", JobType.TOPIC_GENERATION)

        topics = await self.research.generate_topics(user_id)
        for topic in topics:
            await self.content.create_item(user_id, topic.idea, topic.category)
        logger.info(f"Generated {len(topics)} topics for user {user_id}")
