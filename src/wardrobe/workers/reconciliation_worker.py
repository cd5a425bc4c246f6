"""Periodic reconciliation sweep worker."""

import asyncio

import structlog

from wardrobe.services.jobs.reconciliation import ReconciliationSweep

logger = structlog.get_logger(__name__)


async def run_reconciliation_worker(sweep: ReconciliationSweep, interval: float = 60.0) -> None:
    """Run the reconciliation sweep every ``interval`` seconds until cancelled.

    Args:
        sweep: Configured sweep
        interval: Seconds between sweeps
    """
    logger.info("worker.started", worker="reconciliation", interval=interval)

    try:
        while True:
            try:
                await sweep.run_once()
                await asyncio.sleep(interval)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    worker="reconciliation",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker="reconciliation")
        raise
