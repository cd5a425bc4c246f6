"""AIJob repository - the job record store.

Provides data access methods for AIJob entities. The store only ever touches
its own table: it never calls the queue or the provider.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wardrobe.models.ai_job import AIJob, JobStatus, JobType
from wardrobe.services.exceptions import JobNotFound


class AIJobRepository:
    """Repository for AIJob entities.

    Status changes go through the entity's forward-only mark_* methods, so a
    racing duplicate delivery can never move a job backwards.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def create(
        self,
        job_type: JobType,
        *,
        item_id: Optional[UUID] = None,
        outfit_id: Optional[UUID] = None,
        input_refs: Optional[dict[str, Any]] = None,
        model_name: Optional[str] = None,
    ) -> AIJob:
        """Persist a new job in queued status.

        Returns:
            Persisted job with generated ID
        """
        job = AIJob(
            type=job_type,
            status=JobStatus.QUEUED,
            item_id=item_id,
            outfit_id=outfit_id,
            input_refs=input_refs,
            model_name=model_name,
        )
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> AIJob | None:
        """Retrieve job by UUID, or None if unknown."""
        result = await self.session.execute(select(AIJob).where(AIJob.id == job_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get(self, job_id: UUID) -> AIJob:
        """Retrieve job by UUID.

        Raises:
            JobNotFound: If no job has this id
        """
        job = await self.get_by_id(job_id)
        if job is None:
            raise JobNotFound(f"AI job {job_id} not found")
        return job

    async def get_for_update(self, job_id: UUID) -> AIJob:
        """Retrieve job by UUID with a row lock held until commit.

        Raises:
            JobNotFound: If no job has this id
        """
        result = await self.session.execute(
            select(AIJob).where(AIJob.id == job_id).with_for_update()  # type: ignore[arg-type]
        )
        job = result.scalar_one_or_none()
        if job is None:
            raise JobNotFound(f"AI job {job_id} not found")
        return job

    async def transition(
        self,
        job_id: UUID,
        new_status: JobStatus,
        *,
        result: Optional[dict[str, Any]] = None,
        error: Optional[dict[str, Any]] = None,
        model_name: Optional[str] = None,
    ) -> AIJob:
        """Move a job forward to ``new_status``.

        Raises:
            JobNotFound: If no job has this id
            InvalidTransition: If new_status does not follow the current status
        """
        job = await self.get_for_update(job_id)
        job.transition_to(new_status, result=result, error=error, model_name=model_name)
        self.session.add(job)
        await self.session.flush()
        return job

    async def list_jobs(
        self,
        *,
        item_id: Optional[UUID] = None,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        limit: int = 50,
    ) -> list[AIJob]:
        """List jobs matching the filter, newest first.

        Args:
            item_id: Only jobs referencing this item
            status: Only jobs in this status
            job_type: Only jobs of this kind
            limit: Maximum number of jobs to return (default: 50)
        """
        query = select(AIJob)
        if item_id is not None:
            query = query.where(AIJob.item_id == item_id)  # type: ignore[arg-type]
        if status is not None:
            query = query.where(AIJob.status == status)  # type: ignore[arg-type]
        if job_type is not None:
            query = query.where(AIJob.type == job_type)  # type: ignore[arg-type]

        result = await self.session.execute(
            query.order_by(AIJob.created_at.desc()).limit(limit)  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def list_stale(
        self, status: JobStatus, older_than: datetime, limit: int = 100
    ) -> list[AIJob]:
        """List jobs stuck in ``status`` since before ``older_than``, oldest first.

        Used by the reconciliation sweep to find queued jobs with no queue entry
        and processing jobs whose delivery is gone.
        """
        result = await self.session.execute(
            select(AIJob)
            .where(AIJob.status == status)  # type: ignore[arg-type]
            .where(AIJob.updated_at < older_than)  # type: ignore[arg-type]
            .order_by(AIJob.updated_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
