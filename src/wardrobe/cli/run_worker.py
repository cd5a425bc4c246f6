"""CLI command for running standalone AI job workers.

Runs dispatcher loops outside the API process, sharing the queue and lease
tables with every other worker.

Usage:
    python -m wardrobe.cli.run_worker [OPTIONS]

Examples:
    # One dispatcher loop with the configured batch size
    python -m wardrobe.cli.run_worker

    # Four concurrent dispatcher loops
    python -m wardrobe.cli.run_worker --concurrency 4
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from typing import Optional, Sequence

import structlog

from wardrobe.core import timezone  # noqa: F401
from wardrobe.core.config import Settings, configure_logging
from wardrobe.core.database import create_db_engine, create_session_factory
from wardrobe.services.exceptions import QueueConnectionError
from wardrobe.services.images.asset_store import ImageAssetStore
from wardrobe.services.provider.openrouter_client import OpenRouterClient
from wardrobe.services.queue.job_queue import JobQueue, RetryPolicy
from wardrobe.services.queue.lease import LeaseManager
from wardrobe.uow import create_uow_factory
from wardrobe.workers.dispatcher import WorkerDispatcher, run_ai_job_worker

logger = structlog.get_logger()


def parse_args(argv: Optional[Sequence[str]] = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(description="Run AI job workers")

    parser.add_argument(
        "--concurrency",
        type=int,
        help="Number of dispatcher loops (default: WORKER_CONCURRENCY)",
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        help="Deliveries claimed per batch (default: WORKER_BATCH_SIZE)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: Optional[Sequence[str]] = None) -> int:
    """Run dispatcher loops until interrupted.

    Returns:
        Exit code: 0 (clean shutdown), 1 (startup error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    if not settings.ai_enabled:
        print("Error: AI processing is disabled (AI_ENABLED=false)", file=sys.stderr)
        return 1

    concurrency = args.concurrency or settings.worker_concurrency
    db_engine = create_db_engine(settings.database_url, settings.db_pool_size)
    queue = JobQueue(
        create_db_engine(settings.effective_queue_database_url, settings.db_pool_size),
        RetryPolicy(
            max_attempts=settings.job_max_attempts,
            backoff_base_seconds=settings.job_backoff_base_seconds,
            keep_completed=settings.queue_keep_completed,
            keep_failed=settings.queue_keep_failed,
            stall_timeout_seconds=settings.lease_ttl_seconds,
        ),
    )

    try:
        await queue.connect(attempts=settings.queue_connect_attempts)
    except QueueConnectionError as e:
        print(f"Error: {e}", file=sys.stderr)
        await db_engine.dispose()
        return 1

    dispatcher = WorkerDispatcher(
        queue=queue,
        leases=LeaseManager(queue.engine, ttl_seconds=settings.lease_ttl_seconds),
        uow_factory=create_uow_factory(create_session_factory(db_engine)),
        provider=OpenRouterClient.from_settings(settings),
        assets=ImageAssetStore(settings.data_dir),
        handler_timeout=settings.handler_timeout_seconds,
        batch_size=args.batch_size or settings.worker_batch_size,
    )

    logger.info("cli.started", command="run_worker", concurrency=concurrency)
    tasks = [
        asyncio.create_task(run_ai_job_worker(dispatcher, settings.poll_interval_seconds))
        for _ in range(concurrency)
    ]

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("cli.interrupted")
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await queue.close()
        await db_engine.dispose()

    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Synchronous entry point for CLI."""
    try:
        sys.exit(asyncio.run(async_main(argv)))
    except KeyboardInterrupt:
        sys.exit(130)  # Standard exit code for SIGINT


if __name__ == "__main__":
    main()
