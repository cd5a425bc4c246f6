"""Response models shared by the AI job routes."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from wardrobe.models.ai_job import AIJob, JobStatus, JobType


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class AIJobResponse(_CamelModel):
    """Job record as returned by the API."""

    id: UUID
    type: JobType
    status: JobStatus
    item_id: Optional[UUID] = None
    outfit_id: Optional[UUID] = None
    input_refs: Optional[dict[str, Any]] = None
    model_name: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[dict[str, Any]] = None
    attempts: int = 0
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: AIJob) -> "AIJobResponse":
        return cls.model_validate(job)


class AIJobListResponse(_CamelModel):
    jobs: list[AIJobResponse] = Field(default_factory=list)


class JobAcceptedResponse(_CamelModel):
    """Acknowledgement for submission wrappers that return 202."""

    job_id: UUID
    status: JobStatus = JobStatus.QUEUED
    message: Optional[str] = None
