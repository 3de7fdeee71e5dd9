"""
Tests for the pipeline triggers and the asyncio timer registry.

Run with:
    python -m pytest tests/test_scheduler.py -v
"""

import asyncio
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import SchedulerConfig
from services.domain.models import ContentItem, Reel, ReelStatus, Research
from services.jobs.models import JobType
from services.jobs.scheduler import AsyncioTimerRegistry, PipelineScheduler


def item(item_id, researched=True):
    research = Research(idea=f"Idea {item_id}") if researched else None
    return ContentItem(id=item_id, topic=f"Topic {item_id}", research=research)


def reel(reel_id):
    return Reel(id=reel_id, topic="Budgeting", script="Track every coin.", status=ReelStatus.APPROVED)


class StopAfter:
    """Sleep stand-in that cancels the loop after `n` calls."""

    def __init__(self, n):
        self.n = n
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if len(self.calls) >= self.n:
            raise asyncio.CancelledError()


class TestPipelineScheduler:

    @pytest.fixture
    def queue(self):
        queue = AsyncMock()
        queue.has_open_job = AsyncMock(return_value=False)
        queue.enqueue = AsyncMock(return_value="job-1")
        return queue

    @pytest.fixture
    def processor(self):
        processor = AsyncMock()
        processor.run_auto_approval = AsyncMock(return_value=2)
        processor.drain = AsyncMock(return_value=3)
        return processor

    @pytest.fixture
    def content(self):
        return AsyncMock()

    @pytest.fixture
    def reels(self):
        return AsyncMock()

    def make_scheduler(self, queue, processor, content, reels, **config):
        values = dict(
            research_interval=60,
            script_interval=60,
            auto_approval_interval=30,
            video_interval=45,
            drain_interval=5,
            research_batch_size=3,
            script_batch_size=5,
            video_batch_size=10,
            auto_approval_mode="direct",
        )
        values.update(config)
        return PipelineScheduler(queue, processor, content, reels, SchedulerConfig(**values), drain_batch_size=8)

    def test_register_all(self, queue, processor, content, reels):
        scheduler = self.make_scheduler(queue, processor, content, reels)
        registry = MagicMock()

        scheduler.register_all(registry)

        registered = [(c.args[0], c.args[2]) for c in registry.register.call_args_list]
        assert registered == [
            (60, "research_scan"),
            (60, "script_scan"),
            (30, "auto_approval"),
            (45, "video_scan"),
            (5, "drain"),
        ]

    @pytest.mark.asyncio
    async def test_research_scan_enqueues_per_item(self, queue, processor, content, reels):
        content.get_without_research.return_value = [item("a", researched=False), item("b", researched=False)]
        scheduler = self.make_scheduler(queue, processor, content, reels)

        assert await scheduler.research_scan() == 2

        content.get_without_research.assert_awaited_once_with(3)
        assert [c.args for c in queue.enqueue.await_args_list] == [
            (JobType.RESEARCH, {"content_item_id": "a"}),
            (JobType.RESEARCH, {"content_item_id": "b"}),
        ]

    @pytest.mark.asyncio
    async def test_video_scan_does_not_requeue_terminally_failed_reel(self, queue, processor, content, reels):
        # r1's video job already failed for good (e.g. out of credits)
        failed = {(JobType.VIDEO_GENERATION, "r1")}

        async def has_job(job_type, key=None, value=None, include_failed=False):
            return include_failed and (job_type, value) in failed

        queue.has_open_job = AsyncMock(side_effect=has_job)
        reels.get_approved_without_video.return_value = [reel("r1"), reel("r2")]
        scheduler = self.make_scheduler(queue, processor, content, reels)

        for _ in range(3):
            await scheduler.video_scan()

        enqueued = [c.args[1]["reel_id"] for c in queue.enqueue.await_args_list]
        assert "r1" not in enqueued
        assert all(c.kwargs["include_failed"] for c in queue.has_open_job.await_args_list)

    @pytest.mark.asyncio
    async def test_scan_skips_entities_with_open_jobs(self, queue, processor, content, reels):
        content.get_without_research.return_value = [item("a", researched=False), item("b", researched=False)]
        queue.has_open_job.side_effect = [True, False]
        scheduler = self.make_scheduler(queue, processor, content, reels)

        assert await scheduler.research_scan() == 1

        queue.enqueue.assert_awaited_once_with(JobType.RESEARCH, {"content_item_id": "b"})

    @pytest.mark.asyncio
    async def test_scan_error_on_one_entity_does_not_stop_the_rest(self, queue, processor, content, reels):
        reels.get_approved_without_video.return_value = [reel("r1"), reel("r2"), reel("r3")]
        queue.enqueue.side_effect = ["job-1", RuntimeError("insert failed"), "job-3"]
        scheduler = self.make_scheduler(queue, processor, content, reels)

        assert await scheduler.video_scan() == 2

        reels.get_approved_without_video.assert_awaited_once_with(10)
        assert queue.enqueue.await_count == 3

    @pytest.mark.asyncio
    async def test_script_scan_ignores_unresearched_items(self, queue, processor, content, reels):
        content.get_pending.return_value = [item("a"), item("b", researched=False), item("c")]
        scheduler = self.make_scheduler(queue, processor, content, reels)

        assert await scheduler.script_scan() == 2

        content.get_pending.assert_awaited_once_with(5)
        ids = [c.args[1]["content_item_id"] for c in queue.enqueue.await_args_list]
        assert ids == ["a", "c"]

    @pytest.mark.asyncio
    async def test_auto_approval_direct_mode(self, queue, processor, content, reels):
        scheduler = self.make_scheduler(queue, processor, content, reels)

        assert await scheduler.auto_approval() == 2

        processor.run_auto_approval.assert_awaited_once()
        queue.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_auto_approval_queue_mode(self, queue, processor, content, reels):
        scheduler = self.make_scheduler(queue, processor, content, reels, auto_approval_mode="queue")

        await scheduler.auto_approval()
        queue.enqueue.assert_awaited_once_with(JobType.AUTO_APPROVAL, {})

        queue.has_open_job.return_value = True
        await scheduler.auto_approval()
        assert queue.enqueue.await_count == 1
        processor.run_auto_approval.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_drain_uses_batch_size(self, queue, processor, content, reels):
        scheduler = self.make_scheduler(queue, processor, content, reels)

        assert await scheduler.drain() == 3

        processor.drain.assert_awaited_once_with(8)


class TestAsyncioTimerRegistry:

    def test_rejects_non_positive_interval(self):
        registry = AsyncioTimerRegistry()

        with pytest.raises(ValueError):
            registry.register(0, AsyncMock(), "broken")

    @pytest.mark.asyncio
    async def test_tick_logs_and_swallows_errors(self):
        callback = AsyncMock(side_effect=RuntimeError("db down"))

        await AsyncioTimerRegistry.tick(callback, "research_scan")

        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_loop_keeps_ticking_after_an_error(self):
        sleep = StopAfter(4)
        callback = AsyncMock(side_effect=[RuntimeError("first tick fails"), None, None])
        registry = AsyncioTimerRegistry(sleep=sleep)

        with pytest.raises(asyncio.CancelledError):
            await registry._run(30, callback, "video_scan")

        # Initial wait, then a wait after each tick
        assert sleep.calls == [30, 30, 30, 30]
        assert callback.await_count == 3

    @pytest.mark.asyncio
    async def test_ticks_of_one_trigger_never_overlap(self):
        active = 0
        peak = 0

        async def slow_tick():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            active -= 1

        registry = AsyncioTimerRegistry(sleep=StopAfter(5), run_immediately=True)
        with pytest.raises(asyncio.CancelledError):
            await registry._run(1, slow_tick, "drain")

        assert peak == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        ticked = asyncio.Event()

        async def callback():
            ticked.set()

        registry = AsyncioTimerRegistry(run_immediately=True)
        registry.register(3600, callback, "drain")
        registry.start()

        await asyncio.wait_for(ticked.wait(), timeout=1)
        assert registry.running
        assert registry.names == ["drain"]

        await registry.stop()
        assert not registry.running

    @pytest.mark.asyncio
    async def test_failing_or_stuck_trigger_does_not_hold_up_others(self):
        never = asyncio.Event()
        plain_ticks = 0
        plain_done = asyncio.Event()
        failing = AsyncMock(side_effect=RuntimeError("research api down"))

        async def stuck():
            await never.wait()

        async def plain():
            nonlocal plain_ticks
            plain_ticks += 1
            if plain_ticks >= 3:
                plain_done.set()

        registry = AsyncioTimerRegistry(run_immediately=True)
        registry.register(0.01, failing, "research_scan")
        registry.register(0.01, stuck, "video_scan")
        registry.register(0.01, plain, "drain")
        registry.start()

        try:
            await asyncio.wait_for(plain_done.wait(), timeout=2)
        finally:
            await registry.stop()

        assert plain_ticks >= 3
        assert failing.await_count >= 2
        assert not registry.running
