"""CLI command for reconciling AI job records with the job queue.

Runs one reconciliation sweep: recovers stalled deliveries, re-enqueues
stranded 'queued' jobs, fails orphaned 'processing' jobs and trims queue
history.

Usage:
    python -m wardrobe.cli.reconcile_jobs [OPTIONS]

Examples:
    # Run one sweep with the configured grace period
    python -m wardrobe.cli.reconcile_jobs

    # Only touch jobs untouched for 10 minutes
    python -m wardrobe.cli.reconcile_jobs --grace-seconds 600

    # Verbose logging
    python -m wardrobe.cli.reconcile_jobs -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from typing import Optional, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError

from wardrobe.core import timezone  # noqa: F401
from wardrobe.core.config import Settings, configure_logging
from wardrobe.core.database import create_db_engine, create_session_factory
from wardrobe.services.exceptions import QueueError
from wardrobe.services.jobs.reconciliation import ReconciliationSweep
from wardrobe.services.queue.job_queue import JobQueue, RetryPolicy
from wardrobe.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: Optional[Sequence[str]] = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Reconcile AI job records with the job queue",
        epilog="Safe to run while workers are running",
    )

    parser.add_argument(
        "--grace-seconds",
        type=float,
        help="Minimum job age before it is touched (default: RECONCILE_GRACE_SECONDS)",
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        default=100,
        help="Maximum jobs examined per status (default: 100)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    grace_seconds = (
        args.grace_seconds if args.grace_seconds is not None else settings.reconcile_grace_seconds
    )
    logger.info("cli.started", command="reconcile_jobs", grace_seconds=grace_seconds)

    db_engine = create_db_engine(settings.database_url, pool_size=5)
    queue = JobQueue(
        create_db_engine(settings.effective_queue_database_url, pool_size=5),
        RetryPolicy(
            max_attempts=settings.job_max_attempts,
            backoff_base_seconds=settings.job_backoff_base_seconds,
            keep_completed=settings.queue_keep_completed,
            keep_failed=settings.queue_keep_failed,
            stall_timeout_seconds=settings.lease_ttl_seconds,
        ),
    )
    sweep = ReconciliationSweep(
        create_uow_factory(create_session_factory(db_engine)),
        queue,
        grace_seconds=grace_seconds,
        batch_size=args.batch_size,
    )

    try:
        await queue.connect(attempts=settings.queue_connect_attempts)
        report = await sweep.run_once()

        print("\n" + "=" * 60)
        print("AI Job Reconciliation Summary")
        print("=" * 60)
        print(f"Stalled deliveries requeued: {len(report.requeued_stalled)}")
        print(f"Stalled jobs failed (attempts exhausted): {len(report.failed_exhausted)}")
        print(f"Stranded queued jobs re-enqueued: {len(report.reenqueued)}")
        print(f"Orphaned processing jobs failed: {len(report.failed_orphaned)}")
        print(f"Queue entries trimmed: {report.trimmed}")
        print("=" * 60 + "\n")

        logger.info("cli.success", **report.as_dict())
        return 0

    except (QueueError, SQLAlchemyError) as e:
        logger.error("cli.reconcile_error", error=str(e), error_type=type(e).__name__)
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nReconciliation interrupted by user", file=sys.stderr)
        return 130  # Standard exit code for SIGINT

    finally:
        await queue.close()
        await db_engine.dispose()


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main(argv)))


if __name__ == "__main__":
    main()
