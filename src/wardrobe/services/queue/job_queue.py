"""Durable AI job queue backed by the ai_job_queue table.

One row per job id. The primary key makes enqueue idempotent: while an entry
is live (waiting, delayed or active) a second enqueue for the same id is a
no-op, so a retried HTTP submission or a reconciliation re-enqueue can never
start a second delivery stream.

Delivery is at-least-once. Workers claim due entries with
FOR UPDATE SKIP LOCKED plus a conditional update, so concurrent workers get
non-overlapping deliveries. A failed attempt is redelivered after exponential
backoff (2s, 4s, ...) until max_attempts is reached; after that the entry is
parked in 'failed' and never redelivered.

Retention only bounds this table (last N completed / failed entries). Job
records in ai_jobs are never trimmed.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from wardrobe.core.database import create_session_factory
from wardrobe.core.timezone import utcnow
from wardrobe.models.queue_entry import LIVE_STATES, QueueEntry, QueueState
from wardrobe.services.exceptions import QueueConnectionError, QueueError
from wardrobe.services.queue.dialect import insert_ignore

logger = structlog.get_logger(__name__)

CLAIMABLE_STATES = (QueueState.WAITING, QueueState.DELAYED)


@dataclass(frozen=True)
class RetryPolicy:
    """Delivery attempts, backoff and retention for the queue."""

    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    keep_completed: int = 100
    keep_failed: int = 500
    stall_timeout_seconds: float = 90.0

    def backoff_delay(self, attempt: int) -> float:
        """Delay before redelivering after ``attempt`` failed: base * 2^(attempt-1)."""
        return self.backoff_base_seconds * (2 ** (max(attempt, 1) - 1))


@dataclass(frozen=True)
class Delivery:
    """One delivery attempt of a queue entry to a worker."""

    job_id: UUID
    job_type: str
    payload: dict[str, Any]
    attempt: int
    max_attempts: int

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts


@dataclass(frozen=True)
class FailureOutcome:
    """What the queue did with a failed attempt."""

    job_id: UUID
    attempt: int
    will_retry: bool
    delay_seconds: float = 0.0
    retry_at: Optional[datetime] = None


@dataclass
class StallReport:
    """Result of stalled-delivery recovery."""

    requeued: list[UUID] = field(default_factory=list)
    exhausted: list[UUID] = field(default_factory=list)


class JobQueue:
    """Durable, idempotent, at-least-once AI job queue.

    The queue owns its broker engine: connect() at startup, close() at shutdown.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize queue on a broker engine.

        Args:
            engine: Process-wide async engine for the queue database
            policy: Retry/backoff/retention policy (default: 3 attempts, 2s base)
            clock: Naive-UTC clock, injectable for tests
        """
        self.engine = engine
        self.policy = policy or RetryPolicy()
        self._clock = clock
        self._session_factory = create_session_factory(engine)

    # Lifecycle

    async def connect(self, attempts: int = 5, initial_delay: float = 1.0) -> None:
        """Verify the broker connection, reconnecting with backoff on failure.

        Raises:
            QueueConnectionError: If the broker is unreachable after all attempts
        """
        delay = initial_delay
        for attempt in range(1, attempts + 1):
            try:
                async with self.engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
                logger.info("queue.connected", attempt=attempt)
                return
            except (SQLAlchemyError, OSError) as e:
                logger.warning(
                    "queue.connect_failed",
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                    retry_in_seconds=delay if attempt < attempts else None,
                )
                if attempt == attempts:
                    raise QueueConnectionError(
                        f"Queue broker unreachable after {attempts} attempts: {e}"
                    ) from e
                await asyncio.sleep(delay)
                delay = min(delay * 2, 30.0)

    async def close(self) -> None:
        """Drain pooled broker connections."""
        await self.engine.dispose()
        logger.info("queue.closed")

    # Producer side

    async def enqueue(
        self, job_id: UUID, job_type: str, payload: dict[str, Any] | None = None
    ) -> bool:
        """Add a job to the queue unless it already has a live entry.

        A terminal (completed/failed) entry for the same id is re-armed as a new
        delivery stream with a fresh attempt budget.

        Returns:
            True if a delivery stream was created, False if the call was a no-op

        Raises:
            QueueError: If the broker write fails
        """
        now = self._clock()
        try:
            async with self._session_factory() as session:
                entry = await session.get(QueueEntry, job_id, with_for_update=True)

                if entry is not None:
                    if entry.is_live:
                        logger.info(
                            "queue.enqueue_skipped",
                            job_id=str(job_id),
                            state=QueueState(entry.state).value,
                            reason="live_entry_exists",
                        )
                        return False

                    entry.state = QueueState.WAITING
                    entry.job_type = job_type
                    entry.payload = payload or {}
                    entry.attempts_made = 0
                    entry.max_attempts = self.policy.max_attempts
                    entry.available_at = now
                    entry.started_at = None
                    entry.stalled_after = None
                    entry.finished_at = None
                    entry.failed_reason = None
                    entry.updated_at = now
                    session.add(entry)
                    await session.commit()
                    logger.info("queue.enqueued", job_id=str(job_id), job_type=job_type, rearmed=True)
                    return True

                stmt = insert_ignore(
                    self.engine.dialect.name,
                    QueueEntry,
                    {
                        "job_id": job_id,
                        "job_type": job_type,
                        "payload": payload or {},
                        "state": QueueState.WAITING,
                        "attempts_made": 0,
                        "max_attempts": self.policy.max_attempts,
                        "available_at": now,
                        "created_at": now,
                        "updated_at": now,
                    },
                    index_elements=["job_id"],
                )
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise QueueError(f"Failed to enqueue job {job_id}: {e}") from e

        inserted = result.rowcount == 1  # type: ignore[attr-defined]
        if inserted:
            logger.info("queue.enqueued", job_id=str(job_id), job_type=job_type)
        else:
            # Lost a race with a concurrent enqueue of the same id
            logger.info("queue.enqueue_skipped", job_id=str(job_id), reason="concurrent_insert")
        return inserted

    # Consumer side

    async def claim(self, limit: int = 1) -> list[Delivery]:
        """Claim up to ``limit`` due entries for processing, oldest first.

        Each claimed entry becomes active and its attempt counter is incremented.
        """
        now = self._clock()
        stalled_after = now + timedelta(seconds=self.policy.stall_timeout_seconds)
        deliveries: list[Delivery] = []

        async with self._session_factory() as session:
            result = await session.execute(
                select(QueueEntry)
                .where(QueueEntry.state.in_(CLAIMABLE_STATES))  # type: ignore[attr-defined]
                .where(QueueEntry.available_at <= now)  # type: ignore[arg-type]
                .order_by(QueueEntry.available_at.asc())  # type: ignore[attr-defined]
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            candidates = [
                (entry.job_id, entry.job_type, dict(entry.payload or {}), entry.attempts_made, entry.max_attempts)
                for entry in result.scalars().all()
            ]

            for job_id, job_type, payload, attempts_made, max_attempts in candidates:
                # Conditional update: only one claimer can move this attempt to active
                claimed = await session.execute(
                    update(QueueEntry)
                    .where(QueueEntry.job_id == job_id)  # type: ignore[arg-type]
                    .where(QueueEntry.state.in_(CLAIMABLE_STATES))  # type: ignore[attr-defined]
                    .where(QueueEntry.attempts_made == attempts_made)  # type: ignore[arg-type]
                    .values(
                        state=QueueState.ACTIVE,
                        attempts_made=attempts_made + 1,
                        started_at=now,
                        stalled_after=stalled_after,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount == 1:  # type: ignore[attr-defined]
                    deliveries.append(
                        Delivery(
                            job_id=job_id,
                            job_type=job_type,
                            payload=payload,
                            attempt=attempts_made + 1,
                            max_attempts=max_attempts,
                        )
                    )
            await session.commit()

        for delivery in deliveries:
            logger.debug(
                "queue.claimed",
                job_id=str(delivery.job_id),
                attempt=delivery.attempt,
                max_attempts=delivery.max_attempts,
            )
        return deliveries

    async def complete(self, job_id: UUID) -> bool:
        """Acknowledge a successful delivery.

        Returns:
            True if an active entry was completed
        """
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                update(QueueEntry)
                .where(QueueEntry.job_id == job_id)  # type: ignore[arg-type]
                .where(QueueEntry.state == QueueState.ACTIVE)  # type: ignore[arg-type]
                .values(state=QueueState.COMPLETED, finished_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        completed = result.rowcount == 1  # type: ignore[attr-defined]
        if completed:
            logger.info("queue.completed", job_id=str(job_id))
            await self.trim()
        return completed

    async def fail(self, job_id: UUID, reason: str) -> FailureOutcome:
        """Record a failed attempt and schedule a retry if attempts remain.

        Raises:
            QueueError: If the job has no queue entry
        """
        now = self._clock()
        async with self._session_factory() as session:
            entry = await session.get(QueueEntry, job_id, with_for_update=True)
            if entry is None:
                raise QueueError(f"No queue entry for job {job_id}")

            attempt = entry.attempts_made
            state = QueueState(entry.state)
            if state != QueueState.ACTIVE:
                # Already recovered (stalled) or acknowledged elsewhere
                logger.warning(
                    "queue.fail_ignored", job_id=str(job_id), state=state.value, attempt=attempt
                )
                return FailureOutcome(job_id=job_id, attempt=attempt, will_retry=entry.is_live)

            entry.failed_reason = reason[:1000]
            entry.updated_at = now
            entry.stalled_after = None

            if attempt < entry.max_attempts:
                delay = self.policy.backoff_delay(attempt)
                entry.state = QueueState.DELAYED
                entry.available_at = now + timedelta(seconds=delay)
                outcome = FailureOutcome(
                    job_id=job_id,
                    attempt=attempt,
                    will_retry=True,
                    delay_seconds=delay,
                    retry_at=entry.available_at,
                )
            else:
                entry.state = QueueState.FAILED
                entry.finished_at = now
                outcome = FailureOutcome(job_id=job_id, attempt=attempt, will_retry=False)

            session.add(entry)
            await session.commit()

        if outcome.will_retry:
            logger.info(
                "queue.retry_scheduled",
                job_id=str(job_id),
                attempt=attempt,
                delay_seconds=outcome.delay_seconds,
            )
        else:
            logger.warning("queue.attempts_exhausted", job_id=str(job_id), attempt=attempt)
            await self.trim()
        return outcome

    async def release(self, job_id: UUID, attempt: int) -> bool:
        """Hand back a claimed delivery that never started, refunding its attempt.

        Used when another worker still holds the job's lease. The entry becomes
        claimable again after one backoff base interval. Nothing happens if the
        entry has moved on since this attempt claimed it.

        Returns:
            True if the entry was handed back
        """
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                update(QueueEntry)
                .where(QueueEntry.job_id == job_id)  # type: ignore[arg-type]
                .where(QueueEntry.state == QueueState.ACTIVE)  # type: ignore[arg-type]
                .where(QueueEntry.attempts_made == attempt)  # type: ignore[arg-type]
                .values(
                    state=QueueState.DELAYED,
                    attempts_made=attempt - 1,
                    available_at=now + timedelta(seconds=self.policy.backoff_base_seconds),
                    stalled_after=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        released = result.rowcount == 1  # type: ignore[attr-defined]
        if released:
            logger.info("queue.released", job_id=str(job_id), attempt=attempt)
        return released

    async def discard(self, job_id: UUID, reason: str) -> None:
        """Park an entry in 'failed' without further delivery (e.g. its job record is gone)."""
        now = self._clock()
        async with self._session_factory() as session:
            await session.execute(
                update(QueueEntry)
                .where(QueueEntry.job_id == job_id)  # type: ignore[arg-type]
                .values(
                    state=QueueState.FAILED,
                    failed_reason=reason[:1000],
                    finished_at=now,
                    stalled_after=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        logger.warning("queue.discarded", job_id=str(job_id), reason=reason)

    async def recover_stalled(self) -> StallReport:
        """Return active entries whose worker vanished to the queue.

        Entries with attempts left go back to 'waiting'. Exhausted entries are
        parked in 'failed' and reported so the caller can fail their job records.
        """
        now = self._clock()
        report = StallReport()

        async with self._session_factory() as session:
            result = await session.execute(
                select(QueueEntry)
                .where(QueueEntry.state == QueueState.ACTIVE)  # type: ignore[arg-type]
                .where(QueueEntry.stalled_after < now)  # type: ignore[arg-type, operator]
                .with_for_update(skip_locked=True)
            )
            for entry in result.scalars().all():
                entry.stalled_after = None
                entry.updated_at = now
                if entry.attempts_made < entry.max_attempts:
                    entry.state = QueueState.WAITING
                    entry.available_at = now
                    entry.failed_reason = "stalled"
                    report.requeued.append(entry.job_id)
                else:
                    entry.state = QueueState.FAILED
                    entry.finished_at = now
                    entry.failed_reason = "stalled on final attempt"
                    report.exhausted.append(entry.job_id)
                session.add(entry)
            await session.commit()

        if report.requeued or report.exhausted:
            logger.warning(
                "queue.stalled_recovered",
                requeued=len(report.requeued),
                exhausted=len(report.exhausted),
            )
        return report

    async def trim(self) -> int:
        """Delete terminal entries beyond the retention limits.

        Returns:
            Number of entries deleted
        """
        deleted = 0
        async with self._session_factory() as session:
            for state, keep in (
                (QueueState.COMPLETED, self.policy.keep_completed),
                (QueueState.FAILED, self.policy.keep_failed),
            ):
                result = await session.execute(
                    select(QueueEntry.job_id)
                    .where(QueueEntry.state == state)  # type: ignore[arg-type]
                    .order_by(QueueEntry.finished_at.desc())  # type: ignore[union-attr]
                    .offset(keep)
                )
                stale_ids = list(result.scalars().all())
                if stale_ids:
                    await session.execute(
                        delete(QueueEntry)
                        .where(QueueEntry.job_id.in_(stale_ids))  # type: ignore[attr-defined]
                        .execution_options(synchronize_session=False)
                    )
                    deleted += len(stale_ids)
            await session.commit()

        if deleted:
            logger.debug("queue.trimmed", deleted=deleted)
        return deleted

    # Inspection

    async def get_entry(self, job_id: UUID) -> QueueEntry | None:
        async with self._session_factory() as session:
            return await session.get(QueueEntry, job_id)

    async def live_job_ids(self, job_ids: Iterable[UUID]) -> set[UUID]:
        """Subset of ``job_ids`` that currently have a live entry."""
        ids = list(job_ids)
        if not ids:
            return set()
        async with self._session_factory() as session:
            result = await session.execute(
                select(QueueEntry.job_id)
                .where(QueueEntry.job_id.in_(ids))  # type: ignore[attr-defined]
                .where(QueueEntry.state.in_(LIVE_STATES))  # type: ignore[attr-defined]
            )
            return set(result.scalars().all())

    async def counts(self) -> dict[str, int]:
        """Number of entries per queue state."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(QueueEntry.state, func.count()).group_by(QueueEntry.state)
            )
            counts = {state.value: 0 for state in QueueState}
            for state, count in result.all():
                counts[QueueState(state).value] = count
            return counts
