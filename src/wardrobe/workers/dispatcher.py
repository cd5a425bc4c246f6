"""AI job worker: claims queue deliveries and reconciles their outcome.

Per delivery:
1. Acquire the job's processing lease. If another worker holds it, the
   delivery is handed back to the queue without using up an attempt.
2. Mark the record 'processing' under the record's row lock. A delivery for a
   terminal record is stale and is acknowledged without running anything. A
   delivery whose record is gone is discarded.
3. Run the type-specific handler under the handler time budget. Exceeding it
   counts as a ProviderTimeout.
4. Success: mark the record 'completed', then acknowledge the queue entry.
5. Failure: on the final attempt mark the record 'failed' with a
   PermanentFailure error first, then report the failure to the queue. With
   attempts left, only the queue is told; it redelivers after backoff and the
   record stays 'processing'. If the queue retires the entry anyway (it was
   exhausted or parked while the handler ran), the record is failed too.
6. Release the lease on every exit path.

## Why the dispatcher does NOT hold one Unit of Work per delivery

A provider call can take up to the full handler budget. Holding a transaction
(and a pooled connection) open across it would pin connections for minutes
under load. Each record update is its own short Unit of Work instead, and the
record store's forward-only transitions keep racing deliveries safe.
"""

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable

import structlog

from wardrobe.models.ai_job import AIJob, InvalidTransition, JobStatus, JobType
from wardrobe.services.exceptions import (
    JobNotFound,
    PermanentFailure,
    ProviderTimeout,
    ServiceError,
)
from wardrobe.services.images.asset_store import ImageAssetStore
from wardrobe.services.provider.base import GenerationProvider
from wardrobe.services.queue.job_queue import Delivery, JobQueue
from wardrobe.services.queue.lease import LeaseManager
from wardrobe.uow import UnitOfWork
from wardrobe.workers.handlers import HandlerContext, HandlerResult, run_handler

logger = structlog.get_logger(__name__)


class DeliveryOutcome(str, Enum):
    """What the dispatcher did with one delivery."""

    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    LEASE_HELD = "lease_held"
    STALE = "stale"
    MISSING = "missing"


def _error_summary(error: BaseException) -> str:
    if isinstance(error, ServiceError):
        return f"{error.code}: {error}"
    return f"{type(error).__name__}: {error}"


class WorkerDispatcher:
    """Runs AI job deliveries from the queue against the generation provider."""

    def __init__(
        self,
        queue: JobQueue,
        leases: LeaseManager,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        provider: GenerationProvider,
        assets: ImageAssetStore,
        handler_timeout: float = 60.0,
        batch_size: int = 2,
    ):
        """Initialize dispatcher.

        Args:
            queue: Process-wide job queue
            leases: Lease manager for this worker process
            uow_factory: Factory for record store units of work
            provider: Generation provider used by handlers
            assets: Image asset store used by handlers
            handler_timeout: Wall-clock budget per handler run in seconds (default: 60)
            batch_size: Maximum deliveries claimed per batch (default: 2)
        """
        self.queue = queue
        self.leases = leases
        self.uow_factory = uow_factory
        self.handler_timeout = handler_timeout
        self.batch_size = batch_size
        self.context = HandlerContext(uow_factory=uow_factory, provider=provider, assets=assets)

    async def process_delivery(self, delivery: Delivery) -> DeliveryOutcome:
        """Process one delivery end to end. See module docstring for the steps."""
        async with self.leases.hold(delivery.job_id) as acquired:
            if not acquired:
                await self.queue.release(delivery.job_id, delivery.attempt)
                return DeliveryOutcome.LEASE_HELD
            return await self._process_leased(delivery)

    async def _process_leased(self, delivery: Delivery) -> DeliveryOutcome:
        job_id = delivery.job_id

        job: AIJob | None
        async with await self.uow_factory() as uow:
            try:
                job = await uow.ai_jobs.transition(job_id, JobStatus.PROCESSING)
            except JobNotFound:
                job = None
            except InvalidTransition:
                # Already terminal under the row lock; the check below reports it stale
                job = await uow.ai_jobs.get(job_id)

        if job is None:
            await self.queue.discard(job_id, "job record not found")
            logger.warning("ai_job.record_missing", job_id=str(job_id))
            return DeliveryOutcome.MISSING

        status = JobStatus(job.status)
        if status.is_terminal:
            # Stale redelivery of a job that already reached its final state
            if status == JobStatus.COMPLETED:
                await self.queue.complete(job_id)
            else:
                await self.queue.discard(job_id, "job already failed")
            logger.info("ai_job.stale_delivery", job_id=str(job_id), status=status.value)
            return DeliveryOutcome.STALE

        logger.info(
            "ai_job.started",
            job_id=str(job_id),
            job_type=JobType(job.type).value,
            attempt=delivery.attempt,
            max_attempts=delivery.max_attempts,
        )
        start_time = time.monotonic()

        try:
            outcome = await asyncio.wait_for(
                run_handler(job, self.context), timeout=self.handler_timeout
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            error: Exception = ProviderTimeout(
                f"Handler exceeded {self.handler_timeout:g}s time budget"
            )
            return await self._handle_failure(delivery, job, error, time.monotonic() - start_time)
        except Exception as e:
            # Every handler error is a failed attempt; the queue decides what happens next
            return await self._handle_failure(delivery, job, e, time.monotonic() - start_time)

        return await self._handle_success(delivery, job, outcome, time.monotonic() - start_time)

    async def _handle_success(
        self, delivery: Delivery, job: AIJob, outcome: HandlerResult, duration: float
    ) -> DeliveryOutcome:
        try:
            async with await self.uow_factory() as uow:
                await uow.ai_jobs.transition(
                    job.id,
                    JobStatus.COMPLETED,
                    result=outcome.result,
                    model_name=outcome.model_name,
                )
        except InvalidTransition as e:
            # Reconciliation failed the record while the handler was running
            logger.warning("ai_job.transition_rejected", job_id=str(job.id), error=str(e))

        await self.queue.complete(job.id)
        logger.info(
            "ai_job.completed",
            job_id=str(job.id),
            job_type=JobType(job.type).value,
            attempt=delivery.attempt,
            model_name=outcome.model_name,
            duration_seconds=round(duration, 3),
        )
        return DeliveryOutcome.COMPLETED

    async def _handle_failure(
        self, delivery: Delivery, job: AIJob, error: Exception, duration: float
    ) -> DeliveryOutcome:
        reason = _error_summary(error)

        if not delivery.is_final_attempt:
            outcome = await self.queue.fail(job.id, reason)
            logger.warning(
                "ai_job.attempt_failed",
                job_id=str(job.id),
                job_type=JobType(job.type).value,
                attempt=delivery.attempt,
                max_attempts=delivery.max_attempts,
                error_type=type(error).__name__,
                error_message=str(error),
                retry_in_seconds=outcome.delay_seconds if outcome.will_retry else None,
                duration_seconds=round(duration, 3),
            )
            if outcome.will_retry:
                return DeliveryOutcome.RETRY_SCHEDULED

            # The entry was retired while the handler ran; nothing will redeliver it
            if not await self._fail_record(job, reason, error, outcome.attempt):
                return DeliveryOutcome.STALE
        else:
            await self._fail_record(job, reason, error, delivery.attempt)
            # Record is failed before the queue stops redelivering
            await self.queue.fail(job.id, reason)

        logger.error(
            "ai_job.failed",
            job_id=str(job.id),
            job_type=JobType(job.type).value,
            attempts=delivery.attempt,
            error_type=type(error).__name__,
            error_message=str(error),
            duration_seconds=round(duration, 3),
        )
        return DeliveryOutcome.FAILED

    async def _fail_record(
        self, job: AIJob, reason: str, error: Exception, attempts: int
    ) -> bool:
        """Fail the job record with a PermanentFailure carrying the last cause.

        Returns:
            False if the record had already reached a terminal state
        """
        failure = PermanentFailure(
            f"Job failed after {attempts} attempts: {reason}",
            attempts=attempts,
            cause=error,
        )
        try:
            async with await self.uow_factory() as uow:
                await uow.ai_jobs.transition(
                    job.id, JobStatus.FAILED, error=failure.to_error_dict()
                )
        except InvalidTransition as e:
            logger.warning("ai_job.transition_rejected", job_id=str(job.id), error=str(e))
            return False
        return True

    async def process_batch(self) -> list[DeliveryOutcome]:
        """Claim up to batch_size deliveries and process them concurrently.

        Each delivery is isolated: one delivery's error never affects the others.
        """
        deliveries = await self.queue.claim(self.batch_size)
        if not deliveries:
            return []

        tasks = [self.process_delivery(delivery) for delivery in deliveries]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes = []
        for delivery, result in zip(deliveries, results):
            if isinstance(result, BaseException):
                # Entry stays active; stall recovery returns it to the queue
                logger.error(
                    "ai_job.delivery_error",
                    job_id=str(delivery.job_id),
                    attempt=delivery.attempt,
                    error=str(result),
                    error_type=type(result).__name__,
                )
            else:
                outcomes.append(result)
        return outcomes


async def run_ai_job_worker(dispatcher: WorkerDispatcher, poll_interval: float = 1.0) -> None:
    """Main worker loop for AI jobs.

    Polls the queue at poll_interval, processes batches, and handles graceful
    shutdown. Unexpected loop errors are logged and retried after 5 seconds.

    Args:
        dispatcher: Configured dispatcher
        poll_interval: Seconds between polls when the queue is idle
    """
    logger.info(
        "worker.started",
        worker="ai_jobs",
        poll_interval=poll_interval,
        batch_size=dispatcher.batch_size,
        lease_owner=dispatcher.leases.owner,
    )

    try:
        while True:
            try:
                outcomes = await dispatcher.process_batch()

                # Drain back-to-back while there is work, sleep when idle
                if not outcomes:
                    await asyncio.sleep(poll_interval)

            except asyncio.CancelledError:
                # Propagate cancellation for graceful shutdown
                raise

            except Exception as e:
                # Unexpected error in polling loop - log and continue with backoff
                logger.error(
                    "worker.error",
                    worker="ai_jobs",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        # Graceful shutdown
        logger.info("worker.stopped", worker="ai_jobs")
        raise
