#!/usr/bin/env python3
"""
ReelForge - Main Entry Point

Runs the short-video job pipeline.

Usage:
    # Start the scheduler (all triggers + queue drain)
    python main.py run

    # Work off due jobs once
    python main.py drain --limit 20

    # Queue a job by hand
    python main.py enqueue topic_generation --payload '{"user_id": "..."}'

    # Queue counts
    python main.py status

    # One-off provider generation, no database needed
    python main.py generate --prompt "A barista pouring latte art" --provider poyo
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional

from core.config import Config, get_config
from core.logging_config import setup_logging

logger = logging.getLogger("reelforge")


async def build_pipeline(config: Config):
    """Create the pool and wire every service. Caller closes pool and provider."""
    import asyncpg
    from services.domain import ContentService, GeminiClient, ReelService, ResearchService, ScriptService
    from services.jobs import JobProcessor, JobQueue
    from services.video_generation import ProviderClient

    db_pool = await asyncpg.create_pool(
        config.database.url,
        min_size=config.database.pool_min_size,
        max_size=config.database.pool_max_size,
    )

    llm = GeminiClient(config.llm)
    content = ContentService(db_pool)
    reels = ReelService(db_pool, review_minutes=config.reel_review_minutes)
    queue = JobQueue(db_pool, config.queue)
    provider = ProviderClient(config.providers)

    processor = JobProcessor(
        queue=queue,
        content=content,
        reels=reels,
        research=ResearchService(llm, content),
        scripts=ScriptService(llm),
        provider=provider,
        config=config,
    )
    return db_pool, queue, processor, content, reels, provider


async def run_scheduler(config: Config):
    """Start every trigger and run until SIGINT/SIGTERM."""
    from services.jobs import AsyncioTimerRegistry, PipelineScheduler

    db_pool, queue, processor, content, reels, provider = await build_pipeline(config)

    scheduler = PipelineScheduler(
        queue=queue,
        processor=processor,
        content=content,
        reels=reels,
        config=config.scheduler,
        drain_batch_size=config.queue.drain_batch_size,
    )
    registry = AsyncioTimerRegistry()
    scheduler.register_all(registry)

    # Handle shutdown
    stop_event = asyncio.Event()

    def handle_signal():
        logger.info("Shutting down scheduler...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal)

    registry.start()
    logger.info("Scheduler running. Press Ctrl+C to stop.")

    await stop_event.wait()

    # Cleanup
    await registry.stop()
    await provider.close()
    await db_pool.close()
    logger.info("Scheduler stopped")


async def drain_once(config: Config, limit: Optional[int]) -> int:
    db_pool, _, processor, _, _, provider = await build_pipeline(config)
    try:
        return await processor.drain(limit)
    finally:
        await provider.close()
        await db_pool.close()


async def enqueue_job(config: Config, job_type: str, payload: dict, run_now: bool):
    from services.jobs import JobType

    db_pool, queue, processor, _, _, provider = await build_pipeline(config)
    try:
        if run_now:
            job = await processor.run_now(JobType(job_type), payload)
            if job is None:
                print("Job could not be claimed")
                return False
            print(f"Job {job.id}: {job.status.value}" + (f" ({job.last_error})" if job.last_error else ""))
            return job.status.value == "completed"

        job_id = await queue.enqueue(JobType(job_type), payload)
        print(f"Enqueued {job_type} job {job_id}")
        return True
    finally:
        await provider.close()
        await db_pool.close()


async def show_status(config: Config):
    import asyncpg
    from services.jobs import JobQueue

    db_pool = await asyncpg.create_pool(config.database.url, min_size=1, max_size=2)
    try:
        counts = await JobQueue(db_pool, config.queue).count_by_status()
    finally:
        await db_pool.close()

    print("Background jobs:")
    for status, count in counts.items():
        print(f"  {status:<11} {count}")


async def generate_once(config: Config, prompt: str, provider: Optional[str], aspect_ratio: str, duration: int):
    """Create + poll against the provider directly."""
    from services.video_generation import CreateTaskOptions, ProviderClient, VideoGenerationError

    client = ProviderClient(config.providers)

    def print_progress(percent: int, state: str):
        print(f"  [{percent:3d}%] {state}")

    try:
        detail = await client.generate_video(
            prompt,
            aspect_ratio=aspect_ratio,
            options=CreateTaskOptions(duration_seconds=duration),
            provider=provider,
            on_progress=print_progress,
        )
    except VideoGenerationError as e:
        print(f"Generation failed [{e.error_code}]: {e}")
        return False
    finally:
        await client.close()

    print(f"Task {detail.task_id} ({detail.provider}) complete")
    print(f"Video: {detail.video_url}")
    return True


def main():
    parser = argparse.ArgumentParser(
        description="ReelForge - Short-video job pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start the scheduler
    python main.py run

    # Process due jobs once
    python main.py drain

    # Research a content item right now
    python main.py enqueue research --payload '{"content_item_id": "..."}' --now

    # Generate one video on Kie
    python main.py generate --prompt "Sunrise over a trading desk" --provider kie
        """,
    )
    parser.add_argument("--log-level", help="Override LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Run command
    subparsers.add_parser("run", help="Start the scheduler")

    # Drain command
    drain_parser = subparsers.add_parser("drain", help="Process due jobs once")
    drain_parser.add_argument("--limit", type=int, help="Maximum jobs to claim")

    # Enqueue command
    job_types = ["research", "script_generation", "auto_approval", "video_generation", "topic_generation"]
    enq_parser = subparsers.add_parser("enqueue", help="Queue a background job")
    enq_parser.add_argument("job_type", choices=job_types, help="Job type")
    enq_parser.add_argument("--payload", "-p", default="{}", help="JSON payload")
    enq_parser.add_argument("--now", action="store_true", help="Process the job immediately")

    # Status command
    subparsers.add_parser("status", help="Show queue counts by status")

    # Generate command
    gen_parser = subparsers.add_parser("generate", help="Generate one video via the provider")
    gen_parser.add_argument("--prompt", "-t", required=True, help="Video prompt")
    gen_parser.add_argument("--provider", choices=["kie", "poyo"], help="Provider (default: VIDEO_PROVIDER)")
    gen_parser.add_argument("--aspect-ratio", "-a", default=None, help="9:16 or 16:9")
    gen_parser.add_argument("--duration", "-d", type=int, default=None, help="Seconds (10 or 15)")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.log_level)
    config = get_config()

    for issue in config.validate():
        logger.warning(f"Config: {issue}")

    # Run appropriate command
    if args.command == "run":
        asyncio.run(run_scheduler(config))

    elif args.command == "drain":
        processed = asyncio.run(drain_once(config, args.limit))
        print(f"Processed {processed} jobs")

    elif args.command == "enqueue":
        try:
            payload = json.loads(args.payload)
        except json.JSONDecodeError as e:
            print(f"Invalid --payload JSON: {e}")
            sys.exit(2)
        ok = asyncio.run(enqueue_job(config, args.job_type, payload, args.now))
        sys.exit(0 if ok else 1)

    elif args.command == "status":
        asyncio.run(show_status(config))

    elif args.command == "generate":
        ok = asyncio.run(
            generate_once(
                config,
                prompt=args.prompt,
                provider=args.provider,
                aspect_ratio=args.aspect_ratio or config.default_aspect_ratio,
                duration=args.duration or config.default_duration_seconds,
            )
        )
        sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
