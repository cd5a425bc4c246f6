"""Per-job processing leases.

A lease is a time-bounded exclusive claim on processing one job id. It guards
against two workers running the same job at once when the queue redelivers
(stall recovery, duplicate delivery). Leases expire so a crashed worker never
blocks a job forever.
"""

import os
import socket
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable
from uuid import UUID, uuid4

import structlog
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncEngine

from wardrobe.core.database import create_session_factory
from wardrobe.core.timezone import utcnow
from wardrobe.models.job_lease import JobLease
from wardrobe.services.queue.dialect import insert_ignore

logger = structlog.get_logger(__name__)


def default_owner() -> str:
    """Unique owner id for this worker: host, pid and a random suffix."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


class LeaseManager:
    """Acquire and release job leases in the shared queue database."""

    def __init__(
        self,
        engine: AsyncEngine,
        ttl_seconds: float = 90.0,
        owner: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.ttl_seconds = ttl_seconds
        self.owner = owner or default_owner()
        self._clock = clock
        self._session_factory = create_session_factory(engine)

    async def acquire(self, job_id: UUID) -> bool:
        """Try to take the lease for a job.

        Succeeds if no lease exists, or the existing lease has expired
        (the previous holder is presumed dead).

        Returns:
            True if this owner now holds the lease
        """
        now = self._clock()
        expires_at = now + timedelta(seconds=self.ttl_seconds)

        async with self._session_factory() as session:
            inserted = await session.execute(
                insert_ignore(
                    self.engine.dialect.name,
                    JobLease,
                    {
                        "job_id": job_id,
                        "owner": self.owner,
                        "acquired_at": now,
                        "expires_at": expires_at,
                    },
                    index_elements=["job_id"],
                )
            )
            acquired = inserted.rowcount == 1  # type: ignore[attr-defined]

            if not acquired:
                stolen = await session.execute(
                    update(JobLease)
                    .where(JobLease.job_id == job_id)  # type: ignore[arg-type]
                    .where(JobLease.expires_at < now)  # type: ignore[arg-type]
                    .values(owner=self.owner, acquired_at=now, expires_at=expires_at)
                    .execution_options(synchronize_session=False)
                )
                acquired = stolen.rowcount == 1  # type: ignore[attr-defined]
                if acquired:
                    logger.warning("lease.expired_taken_over", job_id=str(job_id), owner=self.owner)

            await session.commit()

        if acquired:
            logger.debug("lease.acquired", job_id=str(job_id), owner=self.owner)
        else:
            logger.info("lease.held_elsewhere", job_id=str(job_id), owner=self.owner)
        return acquired

    async def release(self, job_id: UUID) -> None:
        """Drop this owner's lease on a job. A lease taken over by another owner is left alone."""
        async with self._session_factory() as session:
            await session.execute(
                delete(JobLease)
                .where(JobLease.job_id == job_id)  # type: ignore[arg-type]
                .where(JobLease.owner == self.owner)  # type: ignore[arg-type]
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        logger.debug("lease.released", job_id=str(job_id), owner=self.owner)

    @asynccontextmanager
    async def hold(self, job_id: UUID) -> AsyncIterator[bool]:
        """Hold the lease for the duration of the block.

        Yields whether the lease was acquired. The lease is released on exit
        (success, failure or cancellation) when it was acquired.

        Example:
            async with leases.hold(job_id) as acquired:
                if not acquired:
                    return
                ...
        """
        acquired = await self.acquire(job_id)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(job_id)
