"""
Pipeline scheduler.

Periodic triggers that find entities ready for their next stage and feed
the job queue, plus the drain trigger that works the queue off.

    research scan   content without research      -> research job
    script scan     researched, unscripted content -> script_generation job
    auto-approval   reels past their review window -> approved (+ video job)
    video scan      approved reels without video   -> video_generation job
    drain           due pending jobs               -> JobProcessor

Triggers run on their own asyncio tasks. A tick never overlaps the
previous tick of the same trigger, and an error in one trigger is logged
without affecting the others.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Protocol

from core.config import SchedulerConfig
from services.domain.content import ContentService
from services.domain.reels import ReelService

from .models import JobType
from .processor import JobProcessor
from .queue import JobQueue

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[Any]]


class TimerRegistry(Protocol):
    """Anything that can call a coroutine function every N seconds."""

    def register(self, interval_seconds: float, callback: TickCallback, name: str) -> None:
        ...


class AsyncioTimerRegistry:
    """
    TimerRegistry backed by one asyncio task per trigger.

    Usage:
        registry = AsyncioTimerRegistry()
        scheduler.register_all(registry)
        registry.start()
        ...
        await registry.stop()
    """

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        run_immediately: bool = False,
    ):
        self._sleep = sleep
        self._run_immediately = run_immediately
        self._timers: List[tuple] = []
        self._tasks: List[asyncio.Task] = []

    @property
    def names(self) -> List[str]:
        return [name for _, _, name in self._timers]

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def register(self, interval_seconds: float, callback: TickCallback, name: str) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"Trigger {name} needs a positive interval, got {interval_seconds}")
        self._timers.append((interval_seconds, callback, name))
        if self._tasks:
            # Registered after start(): run it too
            self._tasks.append(self._spawn(interval_seconds, callback, name))

    def start(self):
        """Start one task per registered trigger."""
        if self._tasks:
            return
        for interval, callback, name in self._timers:
            self._tasks.append(self._spawn(interval, callback, name))
        logger.info(f"Started {len(self._tasks)} triggers: {', '.join(self.names)}")

    async def stop(self):
        """Cancel every trigger task and wait for them to finish."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Triggers stopped")

    def _spawn(self, interval: float, callback: TickCallback, name: str) -> asyncio.Task:
        return asyncio.create_task(self._run(interval, callback, name), name=f"trigger:{name}")

    async def _run(self, interval: float, callback: TickCallback, name: str):
        if not self._run_immediately:
            await self._sleep(interval)
        while True:
            await self.tick(callback, name)
            await self._sleep(interval)

    @staticmethod
    async def tick(callback: TickCallback, name: str):
        """Run one tick, logging instead of raising."""
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{name}] Error: {type(e).__name__}: {e}")


class PipelineScheduler:
    """The pipeline's periodic triggers."""

    def __init__(
        self,
        queue: JobQueue,
        processor: JobProcessor,
        content: ContentService,
        reels: ReelService,
        config: Optional[SchedulerConfig] = None,
        drain_batch_size: int = 10,
    ):
        self.queue = queue
        self.processor = processor
        self.content = content
        self.reels = reels
        self.config = config or SchedulerConfig()
        self.drain_batch_size = drain_batch_size

    def register_all(self, registry: TimerRegistry):
        registry.register(self.config.research_interval, self.research_scan, "research_scan")
        registry.register(self.config.script_interval, self.script_scan, "script_scan")
        registry.register(self.config.auto_approval_interval, self.auto_approval, "auto_approval")
        registry.register(self.config.video_interval, self.video_scan, "video_scan")
        registry.register(self.config.drain_interval, self.drain, "drain")

    async def _enqueue_once(self, job_type: JobType, key: str, entity_id: str, trigger: str) -> bool:
        """
        Enqueue unless a job already targets the entity. Never raises.

        Entities whose job failed terminally are skipped too, so a scan never
        re-queues work that has exhausted its attempts.
        """
        try:
            if await self.queue.has_open_job(job_type, key, entity_id, include_failed=True):
                logger.debug(f"[{trigger}] {job_type.value} already queued or failed for {entity_id}")
                return False
            await self.queue.enqueue(job_type, {key: entity_id})
        except Exception as e:
            logger.error(f"[{trigger}] Error scheduling {job_type.value} for {entity_id}: {e}")
            return False
        logger.info(f"[{trigger}] Scheduled {job_type.value} for {entity_id}")
        return True

    async def research_scan(self) -> int:
        items = await self.content.get_without_research(self.config.research_batch_size)
        scheduled = 0
        for item in items:
            if await self._enqueue_once(JobType.RESEARCH, "content_item_id", item.id, "Research"):
                scheduled += 1
        return scheduled

    async def script_scan(self) -> int:
        items = await self.content.get_pending(self.config.script_batch_size)
        scheduled = 0
        for item in items:
            if item.research is None:
                continue
            if await self._enqueue_once(JobType.SCRIPT_GENERATION, "content_item_id", item.id, "Script Generation"):
                scheduled += 1
        if items:
            logger.info(f"[Script Generation] Processed {len(items)} content items")
        return scheduled

    async def auto_approval(self) -> int:
        if self.config.auto_approval_mode == "queue":
            if not await self.queue.has_open_job(JobType.AUTO_APPROVAL):
                await self.queue.enqueue(JobType.AUTO_APPROVAL, {})
            return 0
        return await self.processor.run_auto_approval()

    async def video_scan(self) -> int:
        reels = await self.reels.get_approved_without_video(self.config.video_batch_size)
        scheduled = 0
        for reel in reels:
            if await self._enqueue_once(JobType.VIDEO_GENERATION, "reel_id", reel.id, "Video Generation"):
                scheduled += 1
        if reels:
            logger.info(f"[Video Generation] Processed {len(reels)} reels")
        return scheduled

    async def drain(self) -> int:
        processed = await self.processor.drain(self.drain_batch_size)
        if processed:
            logger.info(f"[Job Queue] Processed {processed} jobs")
        return processed
