"""AIJob entity - durable record of one unit of AI work with lifecycle tracking."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from wardrobe.core.timezone import utcnow


class JobType(str, Enum):
    """Closed set of AI job kinds."""

    GENERATE_CATALOG_IMAGE = "generate_catalog_image"
    INFER_ITEM = "infer_item"
    EXTRACT_LABEL = "extract_label"
    GENERATE_OUTFIT = "generate_outfit"
    GENERATE_OUTFIT_VISUALIZATION = "generate_outfit_visualization"

    @property
    def targets_item(self) -> bool:
        """True for kinds that operate on a single item's images."""
        return self in ITEM_JOB_TYPES

    @property
    def targets_outfit(self) -> bool:
        """True for kinds that operate on an outfit's items."""
        return self in OUTFIT_JOB_TYPES


ITEM_JOB_TYPES = frozenset(
    {JobType.GENERATE_CATALOG_IMAGE, JobType.INFER_ITEM, JobType.EXTRACT_LABEL}
)
OUTFIT_JOB_TYPES = frozenset({JobType.GENERATE_OUTFIT, JobType.GENERATE_OUTFIT_VISUALIZATION})


class JobStatus(str, Enum):
    """AI job lifecycle status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# processing -> processing is the re-entry of a redelivered attempt
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class InvalidTransition(Exception):
    """Raised when attempting a status transition that is not strictly forward."""

    pass


class AIJob(SQLModel, table=True):
    """AIJob tracks one submitted AI job from queueing to its terminal state.

    item_id/outfit_id are plain columns (no foreign keys): job history outlives
    deletion of the referenced item or outfit.
    """

    __tablename__ = "ai_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    type: JobType = Field(index=True)
    status: JobStatus = Field(default=JobStatus.QUEUED, index=True)
    item_id: Optional[UUID] = Field(default=None, index=True)
    outfit_id: Optional[UUID] = Field(default=None, index=True)
    input_refs: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    model_name: Optional[str] = Field(default=None, max_length=255)
    result: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    error: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    attempts: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = Field(default=None)

    def _check_transition(self, new_status: JobStatus) -> None:
        current = JobStatus(self.status)
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(
                f"Cannot move job {self.id} from {current.value} to {new_status.value}."
            )

    def mark_processing(self) -> None:
        """Start a processing attempt (queued -> processing, or a redelivery re-entry).

        Raises:
            InvalidTransition: If the job is already terminal
        """
        self._check_transition(JobStatus.PROCESSING)
        self.status = JobStatus.PROCESSING
        self.attempts += 1
        self.updated_at = utcnow()

    def mark_completed(self, result: dict[str, Any], model_name: str | None = None) -> None:
        """Transition from processing to completed.

        Args:
            result: Handler output, stored once
            model_name: Model that produced the result (overrides the submitted one)

        Raises:
            InvalidTransition: If current status is not processing
            ValueError: If result is missing
        """
        self._check_transition(JobStatus.COMPLETED)
        if result is None:
            raise ValueError("result is required to complete a job")
        now = utcnow()
        self.status = JobStatus.COMPLETED
        self.result = result
        if model_name:
            self.model_name = model_name
        self.updated_at = now
        self.completed_at = now

    def mark_failed(self, error: dict[str, Any]) -> None:
        """Transition from any non-terminal state to failed.

        Args:
            error: Structured error details, stored once

        Raises:
            InvalidTransition: If current status is already terminal
            ValueError: If error is missing
        """
        self._check_transition(JobStatus.FAILED)
        if not error:
            raise ValueError("error details are required to fail a job")
        now = utcnow()
        self.status = JobStatus.FAILED
        self.error = error
        self.updated_at = now
        self.completed_at = now

    def transition_to(
        self,
        new_status: JobStatus,
        *,
        result: dict[str, Any] | None = None,
        error: dict[str, Any] | None = None,
        model_name: str | None = None,
    ) -> None:
        """Apply a status transition, dispatching to the matching mark_* method."""
        if result is not None and error is not None:
            raise ValueError("result and error are mutually exclusive")

        if new_status == JobStatus.PROCESSING:
            self.mark_processing()
        elif new_status == JobStatus.COMPLETED:
            self.mark_completed(result, model_name=model_name)  # type: ignore[arg-type]
        elif new_status == JobStatus.FAILED:
            self.mark_failed(error)  # type: ignore[arg-type]
        else:
            # Nothing moves back to queued
            self._check_transition(new_status)
