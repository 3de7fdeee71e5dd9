"""
Tests for JobProcessor: dispatch, failure classification and every handler.

Services are AsyncMocks; the queue records transitions.

Run with:
    python -m pytest tests/test_job_processor.py -v
"""

import os
import sys
from unittest.mock import AsyncMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Config, QueueConfig
from services.domain.models import ContentItem, Reel, ReelStatus, Research, Topic
from services.jobs.models import BackgroundJob, JobStatus, JobType
from services.jobs.processor import JobPreconditionError, JobProcessor
from services.video_generation.errors import AuthenticationError, ServerError
from services.video_generation.models import TaskDetail, TaskState


def make_job(job_type, payload=None, job_id="job-1"):
    return BackgroundJob(id=job_id, job_type=job_type, payload=payload or {}, status=JobStatus.PROCESSING)


def make_item(**overrides):
    values = dict(id="item-1", user_id="user-1", topic="Compound interest", category="Fin. Freedom")
    values.update(overrides)
    return ContentItem(**values)


def make_research():
    return Research(
        idea="Compound interest for beginners",
        description="How small deposits snowball",
        why_it_matters="Time in the market beats timing",
        useful_tips="Automate monthly deposits",
        category="Fin. Freedom",
    )


def make_reel(**overrides):
    values = dict(
        id="reel-1",
        user_id="user-1",
        content_item_id="item-1",
        topic="Compound interest for beginners",
        script="Start small. Stay consistent. Let time do the work.",
        status=ReelStatus.APPROVED,
    )
    values.update(overrides)
    return Reel(**values)


class TestJobProcessor:

    @pytest.fixture
    def queue(self):
        queue = AsyncMock()
        queue.mark_completed = AsyncMock(return_value=True)
        queue.mark_failed = AsyncMock(return_value=JobStatus.PENDING)
        queue.enqueue = AsyncMock(return_value="job-next")
        queue.claim_next_batch = AsyncMock(return_value=[])
        return queue

    @pytest.fixture
    def content(self):
        return AsyncMock()

    @pytest.fixture
    def reels(self):
        return AsyncMock()

    @pytest.fixture
    def research(self):
        return AsyncMock()

    @pytest.fixture
    def scripts(self):
        return AsyncMock()

    @pytest.fixture
    def provider(self):
        return AsyncMock()

    @pytest.fixture
    def processor(self, queue, content, reels, research, scripts, provider):
        config = Config(queue=QueueConfig(max_attempts=3, retry_delay_seconds=300, drain_batch_size=7))
        return JobProcessor(
            queue=queue,
            content=content,
            reels=reels,
            research=research,
            scripts=scripts,
            provider=provider,
            config=config,
        )

    # -- dispatch -------------------------------------------------------

    @pytest.mark.asyncio
    async def test_unknown_type_fails_permanently(self, processor, queue):
        job = make_job("thumbnail_render")

        assert await processor.process(job) is False

        queue.mark_failed.assert_awaited_once_with("job-1", "Unknown job type: thumbnail_render", retryable=False)
        queue.mark_completed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_precondition_error_is_not_retried(self, processor, queue, content):
        content.get_by_id.return_value = None

        ok = await processor.process(make_job(JobType.RESEARCH, {"content_item_id": "missing"}))

        assert ok is False
        queue.mark_failed.assert_awaited_once_with("job-1", "Content item not found: missing", retryable=False)

    @pytest.mark.asyncio
    async def test_missing_payload_key(self, processor, queue):
        await processor.process(make_job(JobType.VIDEO_GENERATION, {}))

        message = queue.mark_failed.call_args[0][1]
        assert message == "reel_id is required for video_generation"
        assert queue.mark_failed.call_args.kwargs["retryable"] is False

    @pytest.mark.asyncio
    async def test_unexpected_error_is_retryable(self, processor, queue, content):
        content.get_by_id.side_effect = ConnectionError("db went away")

        await processor.process(make_job(JobType.RESEARCH, {"content_item_id": "item-1"}))

        queue.mark_failed.assert_awaited_once_with("job-1", "db went away", retryable=True)

    @pytest.mark.asyncio
    async def test_empty_error_message_uses_type_name(self, processor, queue, content):
        content.get_by_id.side_effect = KeyError()

        await processor.process(make_job(JobType.RESEARCH, {"content_item_id": "item-1"}))

        assert queue.mark_failed.call_args[0][1] == "KeyError"

    @pytest.mark.asyncio
    async def test_drain_uses_configured_batch_size(self, processor, queue, content):
        content.get_by_id.return_value = make_item(research=make_research())
        queue.claim_next_batch.return_value = [
            make_job(JobType.RESEARCH, {"content_item_id": "item-1"}, job_id="a"),
            make_job(JobType.RESEARCH, {"content_item_id": "item-1"}, job_id="b"),
        ]

        assert await processor.drain() == 2

        queue.claim_next_batch.assert_awaited_once_with(7)
        assert [c.args[0] for c in queue.mark_completed.await_args_list] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_drain_continues_when_a_status_write_fails(self, processor, queue, research):
        research.generate_topics.return_value = []
        queue.claim_next_batch.return_value = [
            make_job(JobType.TOPIC_GENERATION, {"user_id": "u1"}, job_id="j0"),
            make_job(JobType.TOPIC_GENERATION, {"user_id": "u2"}, job_id="j1"),
            make_job(JobType.TOPIC_GENERATION, {"user_id": "u3"}, job_id="j2"),
        ]
        queue.mark_completed.side_effect = [ConnectionError("connection reset"), True, True]

        assert await processor.drain() == 3

        assert research.generate_topics.await_count == 3
        assert [c.args[0] for c in queue.mark_completed.await_args_list] == ["j0", "j1", "j2"]

    @pytest.mark.asyncio
    async def test_run_now_claims_the_enqueued_job(self, processor, queue, content):
        content.get_by_id.return_value = make_item(research=make_research())
        queue.enqueue.return_value = "job-9"
        queue.claim = AsyncMock(return_value=make_job(JobType.RESEARCH, {"content_item_id": "item-1"}, job_id="job-9"))
        final = make_job(JobType.RESEARCH, job_id="job-9")
        final.status = JobStatus.COMPLETED
        queue.get = AsyncMock(return_value=final)

        job = await processor.run_now(JobType.RESEARCH, {"content_item_id": "item-1"})

        queue.claim.assert_awaited_once_with("job-9")
        queue.mark_completed.assert_awaited_once_with("job-9")
        assert job.status == JobStatus.COMPLETED

    # -- research -------------------------------------------------------

    @pytest.mark.asyncio
    async def test_research_stores_result(self, processor, queue, content, research):
        content.get_by_id.return_value = make_item()
        research.research_topic.return_value = make_research()

        assert await processor.process(make_job(JobType.RESEARCH, {"content_item_id": "item-1"})) is True

        research.research_topic.assert_awaited_once_with("Compound interest", "Fin. Freedom")
        content.update_research.assert_awaited_once_with("item-1", make_research())
        queue.mark_completed.assert_awaited_once_with("job-1")

    @pytest.mark.asyncio
    async def test_research_skips_when_already_researched(self, processor, content, research):
        content.get_by_id.return_value = make_item(research=make_research())

        assert await processor.process(make_job(JobType.RESEARCH, {"content_item_id": "item-1"})) is True

        research.research_topic.assert_not_awaited()
        content.update_research.assert_not_awaited()

    # -- script generation ----------------------------------------------

    @pytest.mark.asyncio
    async def test_script_generation_creates_reel_and_chains(self, processor, queue, content, reels, scripts):
        item = make_item(research=make_research())
        content.get_by_id.return_value = item
        scripts.generate_from_content.return_value = "Start small. Stay consistent."
        reels.create_from_fields.return_value = make_reel(id="reel-5", status=ReelStatus.PENDING)

        ok = await processor.process(make_job(JobType.SCRIPT_GENERATION, {"content_item_id": "item-1"}))

        assert ok is True
        kwargs = reels.create_from_fields.call_args.kwargs
        assert kwargs["topic"] == "Compound interest for beginners"
        assert kwargs["content_item_id"] == "item-1"
        assert kwargs["user_id"] == "user-1"
        assert kwargs["useful_tips"] == "Automate monthly deposits"
        assert kwargs["script"] == "Start small. Stay consistent."
        content.mark_done.assert_awaited_once_with("item-1")
        queue.enqueue.assert_awaited_once_with(JobType.AUTO_APPROVAL, {"reel_id": "reel-5"})

    @pytest.mark.asyncio
    async def test_script_generation_requires_research(self, processor, queue, content, scripts):
        content.get_by_id.return_value = make_item()

        await processor.process(make_job(JobType.SCRIPT_GENERATION, {"content_item_id": "item-1"}))

        scripts.generate_from_content.assert_not_awaited()
        assert "must have research data" in queue.mark_failed.call_args[0][1]
        assert queue.mark_failed.call_args.kwargs["retryable"] is False

    @pytest.mark.asyncio
    async def test_script_generation_skips_done_item(self, processor, content, reels, scripts):
        content.get_by_id.return_value = make_item(research=make_research(), done=True)

        assert await processor.process(make_job(JobType.SCRIPT_GENERATION, {"content_item_id": "item-1"})) is True

        scripts.generate_from_content.assert_not_awaited()
        reels.create_from_fields.assert_not_awaited()

    # -- auto approval --------------------------------------------------

    @pytest.mark.asyncio
    async def test_auto_approval_enqueues_video_per_approved_reel(self, processor, queue, reels):
        reels.get_ready_for_auto_approval.return_value = [make_reel(id="r1"), make_reel(id="r2"), make_reel(id="r3")]
        # r2 was approved by someone else in the meantime
        reels.approve.side_effect = [make_reel(id="r1"), None, make_reel(id="r3")]

        approved = await processor.run_auto_approval()

        assert approved == 2
        assert queue.enqueue.await_args_list[0].args == (JobType.VIDEO_GENERATION, {"reel_id": "r1"})
        assert queue.enqueue.await_args_list[1].args == (JobType.VIDEO_GENERATION, {"reel_id": "r3"})

    @pytest.mark.asyncio
    async def test_auto_approval_continues_after_error(self, processor, queue, reels):
        reels.get_ready_for_auto_approval.return_value = [make_reel(id="r1"), make_reel(id="r2")]
        reels.approve.side_effect = [RuntimeError("deadlock detected"), make_reel(id="r2")]

        ok = await processor.process(make_job(JobType.AUTO_APPROVAL))

        assert ok is True
        queue.enqueue.assert_awaited_once_with(JobType.VIDEO_GENERATION, {"reel_id": "r2"})

    # -- video generation -----------------------------------------------

    @pytest.mark.asyncio
    async def test_video_generation_updates_reel(self, processor, queue, reels, provider):
        reels.get_by_id.return_value = make_reel()
        provider.generate_video.return_value = TaskDetail(
            task_id="kie-1", provider="kie", state=TaskState.SUCCESS, result_urls=["https://cdn.test/v.mp4"]
        )

        assert await processor.process(make_job(JobType.VIDEO_GENERATION, {"reel_id": "reel-1"})) is True

        prompt = provider.generate_video.call_args[0][0]
        assert "Topic: Compound interest for beginners" in prompt
        kwargs = provider.generate_video.call_args.kwargs
        assert kwargs["aspect_ratio"] == "9:16"
        assert kwargs["options"].duration_seconds == 10
        reels.update_video.assert_awaited_once_with("reel-1", "https://cdn.test/v.mp4", "kie-1")

    @pytest.mark.asyncio
    async def test_video_generation_skips_reel_with_video(self, processor, reels, provider):
        reels.get_by_id.return_value = make_reel(provider_video_id="kie-old")

        assert await processor.process(make_job(JobType.VIDEO_GENERATION, {"reel_id": "reel-1"})) is True

        provider.generate_video.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_video_generation_requires_approval(self, processor, queue, reels, provider):
        reels.get_by_id.return_value = make_reel(status=ReelStatus.PENDING)

        await processor.process(make_job(JobType.VIDEO_GENERATION, {"reel_id": "reel-1"}))

        provider.generate_video.assert_not_awaited()
        queue.mark_failed.assert_awaited_once_with(
            "job-1", "Reel is not approved (status: pending)", retryable=False
        )

    @pytest.mark.asyncio
    async def test_video_generation_requires_script(self, processor, queue, reels, provider):
        reels.get_by_id.return_value = make_reel(script="   ")

        await processor.process(make_job(JobType.VIDEO_GENERATION, {"reel_id": "reel-1"}))

        provider.generate_video.assert_not_awaited()
        assert queue.mark_failed.call_args[0][1] == "Reel must have a script"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,retryable",
        [
            (AuthenticationError("bad key", status_code=401), False),
            (ServerError("provider down", status_code=503), True),
        ],
    )
    async def test_provider_errors_keep_their_retryability(self, processor, queue, reels, provider, error, retryable):
        reels.get_by_id.return_value = make_reel()
        provider.generate_video.side_effect = error

        await processor.process(make_job(JobType.VIDEO_GENERATION, {"reel_id": "reel-1"}))

        reels.update_video.assert_not_awaited()
        assert queue.mark_failed.call_args.kwargs["retryable"] is retryable

    # -- topic generation -----------------------------------------------

    @pytest.mark.asyncio
    async def test_topic_generation_creates_items(self, processor, content, research):
        research.generate_topics.return_value = [
            Topic(idea="Index funds vs stock picking", category="Trading"),
            Topic(idea="Morning routine of savers", category="Lifestyle"),
        ]

        assert await processor.process(make_job(JobType.TOPIC_GENERATION, {"user_id": "user-1"})) is True

        research.generate_topics.assert_awaited_once_with("user-1")
        assert [c.args for c in content.create_item.await_args_list] == [
            ("user-1", "Index funds vs stock picking", "Trading"),
            ("user-1", "Morning routine of savers", "Lifestyle"),
        ]

    def test_precondition_error_flag(self):
        assert JobPreconditionError("x").retryable is False
