"""Reconciliation sweep: closes the gaps between the record store and the queue.

Neither submission (create then enqueue) nor processing (record update then
queue acknowledgement) is atomic across the two stores. The sweep finds
records stranded in a gap and resolves them:

1. Stalled deliveries: active queue entries whose worker vanished are
   returned to the queue; entries that stalled on their final attempt are
   parked and their records failed.
2. Stranded submissions: 'queued' records older than the grace period with no
   live queue entry are re-enqueued.
3. Orphaned processing: 'processing' records older than the grace period
   whose queue entry is gone or terminal are failed.
4. Queue retention is applied.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable
from uuid import UUID

import structlog

from wardrobe.core.timezone import utcnow
from wardrobe.models.ai_job import InvalidTransition, JobStatus, JobType
from wardrobe.services.exceptions import PermanentFailure
from wardrobe.services.queue.job_queue import JobQueue
from wardrobe.uow import UnitOfWork

logger = structlog.get_logger(__name__)


@dataclass
class SweepReport:
    """What one sweep changed."""

    requeued_stalled: list[UUID] = field(default_factory=list)
    failed_exhausted: list[UUID] = field(default_factory=list)
    reenqueued: list[UUID] = field(default_factory=list)
    failed_orphaned: list[UUID] = field(default_factory=list)
    trimmed: int = 0

    @property
    def changed(self) -> bool:
        return bool(
            self.requeued_stalled
            or self.failed_exhausted
            or self.reenqueued
            or self.failed_orphaned
            or self.trimmed
        )

    def as_dict(self) -> dict[str, int]:
        return {
            "requeued_stalled": len(self.requeued_stalled),
            "failed_exhausted": len(self.failed_exhausted),
            "reenqueued": len(self.reenqueued),
            "failed_orphaned": len(self.failed_orphaned),
            "trimmed": self.trimmed,
        }


class ReconciliationSweep:
    """Periodic repair of records stranded between the record store and the queue."""

    def __init__(
        self,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        queue: JobQueue,
        grace_seconds: float = 300.0,
        batch_size: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize sweep.

        Args:
            uow_factory: Factory for record store units of work
            queue: Process-wide job queue
            grace_seconds: Minimum record age before the sweep touches it
            batch_size: Maximum records examined per status per sweep
            clock: Naive-UTC clock, injectable for tests
        """
        self.uow_factory = uow_factory
        self.queue = queue
        self.grace_seconds = grace_seconds
        self.batch_size = batch_size
        self._clock = clock

    async def run_once(self) -> SweepReport:
        """Run all reconciliation steps once."""
        report = SweepReport()

        stalled = await self.queue.recover_stalled()
        report.requeued_stalled = stalled.requeued
        for job_id in stalled.exhausted:
            if await self._fail_record(job_id, "Delivery stalled on final attempt"):
                report.failed_exhausted.append(job_id)

        cutoff = self._clock() - timedelta(seconds=self.grace_seconds)
        report.reenqueued = await self._reenqueue_stranded(cutoff)
        report.failed_orphaned = await self._fail_orphaned(cutoff)
        report.trimmed = await self.queue.trim()

        if report.changed:
            logger.info("reconciliation.completed", **report.as_dict())
        else:
            logger.debug("reconciliation.completed", **report.as_dict())
        return report

    async def _reenqueue_stranded(self, cutoff: datetime) -> list[UUID]:
        async with await self.uow_factory() as uow:
            stranded = await uow.ai_jobs.list_stale(JobStatus.QUEUED, cutoff, limit=self.batch_size)

        live = await self.queue.live_job_ids(job.id for job in stranded)
        reenqueued = []
        for job in stranded:
            if job.id in live:
                continue
            created = await self.queue.enqueue(
                job.id,
                JobType(job.type).value,
                {
                    "item_id": str(job.item_id) if job.item_id else None,
                    "outfit_id": str(job.outfit_id) if job.outfit_id else None,
                },
            )
            if created:
                reenqueued.append(job.id)
                logger.warning(
                    "reconciliation.reenqueued",
                    job_id=str(job.id),
                    job_type=JobType(job.type).value,
                    queued_since=job.updated_at.isoformat(),
                )
        return reenqueued

    async def _fail_orphaned(self, cutoff: datetime) -> list[UUID]:
        async with await self.uow_factory() as uow:
            processing = await uow.ai_jobs.list_stale(
                JobStatus.PROCESSING, cutoff, limit=self.batch_size
            )

        live = await self.queue.live_job_ids(job.id for job in processing)
        failed = []
        for job in processing:
            if job.id in live:
                continue
            if await self._fail_record(job.id, "Job delivery lost while processing"):
                failed.append(job.id)
        return failed

    async def _fail_record(self, job_id: UUID, message: str) -> bool:
        """Fail a non-terminal record with a PermanentFailure error.

        Returns:
            True if the record was moved to failed
        """
        async with await self.uow_factory() as uow:
            job = await uow.ai_jobs.get_by_id(job_id)
            if job is None or JobStatus(job.status).is_terminal:
                return False

            failure = PermanentFailure(message, attempts=job.attempts)
            try:
                await uow.ai_jobs.transition(
                    job_id, JobStatus.FAILED, error=failure.to_error_dict()
                )
            except InvalidTransition as e:
                # A worker finished the job between the read and the update
                logger.warning("reconciliation.transition_rejected", job_id=str(job_id), error=str(e))
                return False

        logger.warning(
            "reconciliation.job_failed", job_id=str(job_id), reason=message, attempts=job.attempts
        )
        return True
