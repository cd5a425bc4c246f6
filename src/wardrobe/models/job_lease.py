"""JobLease entity - time-bounded exclusive claim on processing a job id."""

from datetime import datetime
from uuid import UUID

from sqlmodel import Field, SQLModel

from wardrobe.core.timezone import utcnow


class JobLease(SQLModel, table=True):
    """JobLease lives in the shared queue database so every worker process sees it."""

    __tablename__ = "ai_job_leases"  # type: ignore[assignment]

    job_id: UUID = Field(primary_key=True)
    owner: str = Field(max_length=255)
    acquired_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(index=True)
