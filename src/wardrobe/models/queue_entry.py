"""QueueEntry entity - durable delivery bookkeeping for one AI job."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from wardrobe.core.timezone import utcnow


class QueueState(str, Enum):
    """Delivery state of a queue entry."""

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


LIVE_STATES = (QueueState.WAITING, QueueState.DELAYED, QueueState.ACTIVE)
TERMINAL_STATES = (QueueState.COMPLETED, QueueState.FAILED)


class QueueEntry(SQLModel, table=True):
    """QueueEntry is keyed by job id, so one job can never have two delivery streams."""

    __tablename__ = "ai_job_queue"  # type: ignore[assignment]

    job_id: UUID = Field(primary_key=True)
    job_type: str = Field(max_length=50)
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON))
    state: QueueState = Field(default=QueueState.WAITING, index=True)
    attempts_made: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    available_at: datetime = Field(default_factory=utcnow, index=True)
    started_at: Optional[datetime] = Field(default=None)
    stalled_after: Optional[datetime] = Field(default=None)
    finished_at: Optional[datetime] = Field(default=None, index=True)
    failed_reason: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_live(self) -> bool:
        return QueueState(self.state) in LIVE_STATES
