"""Submission gateway: the boundary callers use to create and query AI jobs.

submit() is create-then-enqueue, two steps across two stores with no shared
transaction. If enqueue fails after the record was committed, the record stays
'queued' with no live queue entry and the reconciliation sweep re-enqueues it
once it is older than the grace period. The caller still gets its job back.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError

from wardrobe.models.ai_job import AIJob, JobStatus, JobType
from wardrobe.models.job_inputs import (
    GenerateCatalogImageInput,
    GenerateOutfitInput,
    OutfitVisualizationInput,
    StyleTransfer,
    dump_job_input,
    parse_job_input,
)
from wardrobe.services.exceptions import AIDisabledError, NotFoundError, QueueError, ValidationError
from wardrobe.services.queue.job_queue import JobQueue
from wardrobe.uow import UnitOfWork

logger = structlog.get_logger(__name__)

DEFAULT_LIST_LIMIT = 50


class JobSubmission(BaseModel):
    """Request body for creating an AI job."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    type: JobType
    item_id: Optional[UUID] = None
    outfit_id: Optional[UUID] = None
    input_refs: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class Accepted:
    """A submission that passed schema and reference-shape validation."""

    submission: JobSubmission
    job_input: BaseModel

    @property
    def input_refs(self) -> dict[str, Any]:
        return dump_job_input(self.job_input)


@dataclass(frozen=True)
class Rejected:
    """A submission that failed validation, with the reason."""

    error: ValidationError


ValidationResult = Union[Accepted, Rejected]


@dataclass(frozen=True)
class ModelNames:
    """Provider models, recorded on the job at submission for audit."""

    image: Optional[str] = None
    vision: Optional[str] = None
    text: Optional[str] = None

    def for_job(self, job_type: JobType, job_input: BaseModel) -> Optional[str]:
        if job_type in (JobType.INFER_ITEM, JobType.EXTRACT_LABEL):
            return self.vision
        if job_type == JobType.GENERATE_OUTFIT:
            if isinstance(job_input, GenerateOutfitInput) and job_input.target_context:
                return self.image
            return self.text
        return self.image


def _error_details(error: PydanticValidationError, prefix: tuple = ()) -> list[dict[str, Any]]:
    return [
        {"loc": list(prefix) + list(detail["loc"]), "msg": detail["msg"], "type": detail["type"]}
        for detail in error.errors(include_url=False, include_context=False, include_input=False)
    ]


class SubmissionGateway:
    """Validates, creates and enqueues AI jobs, and answers status queries.

    Status queries read only the job record store, never the queue.
    """

    def __init__(
        self,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        queue: JobQueue,
        ai_enabled: bool = True,
        models: ModelNames | None = None,
    ):
        """Initialize gateway.

        Args:
            uow_factory: Factory for record store units of work
            queue: Process-wide job queue
            ai_enabled: Global AI switch (AI_ENABLED)
            models: Provider models recorded on new jobs
        """
        self.uow_factory = uow_factory
        self.queue = queue
        self.ai_enabled = ai_enabled
        self.models = models or ModelNames()

    # Validation

    def validate(self, payload: Any) -> ValidationResult:
        """Validate a raw submission payload.

        Never raises for schema problems: the outcome is an explicit
        Accepted or Rejected value.
        """
        if not isinstance(payload, dict):
            return Rejected(ValidationError("Request body must be a JSON object"))

        try:
            submission = JobSubmission.model_validate(payload)
        except PydanticValidationError as e:
            return Rejected(ValidationError("Invalid input", details=_error_details(e)))

        if submission.type.targets_item:
            if submission.item_id is None:
                return Rejected(ValidationError(f"itemId is required for {submission.type.value}"))
            if submission.outfit_id is not None:
                return Rejected(ValidationError(f"outfitId is not allowed for {submission.type.value}"))
        else:
            if submission.outfit_id is None:
                return Rejected(ValidationError(f"outfitId is required for {submission.type.value}"))
            if submission.item_id is not None:
                return Rejected(ValidationError(f"itemId is not allowed for {submission.type.value}"))

        try:
            job_input = parse_job_input(submission.type, submission.input_refs)
        except PydanticValidationError as e:
            return Rejected(
                ValidationError("Invalid inputRefs", details=_error_details(e, ("inputRefs",)))
            )

        return Accepted(submission=submission, job_input=job_input)

    # Submission

    def _ensure_enabled(self) -> None:
        if not self.ai_enabled:
            raise AIDisabledError("AI processing is disabled")

    async def _check_references(self, uow: UnitOfWork, accepted: Accepted) -> None:
        submission = accepted.submission
        if submission.item_id is not None and not await uow.wardrobe.item_exists(submission.item_id):
            raise NotFoundError("Item not found")
        if submission.outfit_id is not None and not await uow.wardrobe.outfit_exists(
            submission.outfit_id
        ):
            raise NotFoundError("Outfit not found")

        job_input = accepted.job_input
        if isinstance(job_input, GenerateCatalogImageInput):
            image_ids = []
            if job_input.image_id is not None:
                image_ids.append(job_input.image_id)
            if isinstance(job_input.transform, StyleTransfer):
                image_ids.append(job_input.transform.style_reference_image_id)
            for image_id in image_ids:
                if await uow.wardrobe.get_image(image_id) is None:
                    raise NotFoundError(f"Image {image_id} not found")

    async def _enqueue(self, job: AIJob) -> None:
        try:
            await self.queue.enqueue(
                job.id,
                JobType(job.type).value,
                {
                    "item_id": str(job.item_id) if job.item_id else None,
                    "outfit_id": str(job.outfit_id) if job.outfit_id else None,
                },
            )
        except (QueueError, SQLAlchemyError) as e:
            # Record stays queued; the reconciliation sweep re-enqueues it
            logger.error(
                "ai_job.enqueue_failed",
                job_id=str(job.id),
                job_type=JobType(job.type).value,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def submit(self, accepted: Accepted) -> AIJob:
        """Create a queued job record, then enqueue it.

        Raises:
            AIDisabledError: If AI processing is disabled
            NotFoundError: If a referenced item, outfit or image does not exist
        """
        self._ensure_enabled()
        submission = accepted.submission

        async with await self.uow_factory() as uow:
            await self._check_references(uow, accepted)
            job = await uow.ai_jobs.create(
                submission.type,
                item_id=submission.item_id,
                outfit_id=submission.outfit_id,
                input_refs=accepted.input_refs,
                model_name=self.models.for_job(submission.type, accepted.job_input),
            )

        logger.info(
            "ai_job.created",
            job_id=str(job.id),
            job_type=submission.type.value,
            item_id=str(submission.item_id) if submission.item_id else None,
            outfit_id=str(submission.outfit_id) if submission.outfit_id else None,
        )
        await self._enqueue(job)
        return job

    async def submit_payload(self, payload: dict[str, Any]) -> AIJob:
        """Validate and submit in one call, raising on rejection.

        Raises:
            ValidationError: If the payload is rejected
            AIDisabledError: If AI processing is disabled
            NotFoundError: If a referenced entity does not exist
        """
        outcome = self.validate(payload)
        if isinstance(outcome, Rejected):
            raise outcome.error
        return await self.submit(outcome)

    async def submit_outfit_visualization(
        self, outfit_id: UUID, visualization_type: str = "outfit_board"
    ) -> AIJob:
        """Queue a visualization of a saved outfit.

        Raises:
            AIDisabledError: If AI processing is disabled
            NotFoundError: If the outfit does not exist
            ValidationError: If the outfit has no items, no item has an image,
                or visualization_type is unknown
        """
        self._ensure_enabled()
        try:
            job_input = OutfitVisualizationInput(visualization_type=visualization_type)  # type: ignore[arg-type]
        except PydanticValidationError as e:
            raise ValidationError("Invalid visualizationType", details=_error_details(e)) from e

        async with await self.uow_factory() as uow:
            if not await uow.wardrobe.outfit_exists(outfit_id):
                raise NotFoundError("Outfit not found")

            members = await uow.wardrobe.get_outfit_members(outfit_id)
            if not members:
                raise ValidationError("Outfit has no items")
            if not any(member.image is not None for member in members):
                raise ValidationError("No images found for outfit items")

            job = await uow.ai_jobs.create(
                JobType.GENERATE_OUTFIT_VISUALIZATION,
                outfit_id=outfit_id,
                input_refs=dump_job_input(job_input),
                model_name=self.models.image,
            )

        logger.info(
            "ai_job.created",
            job_id=str(job.id),
            job_type=JobType.GENERATE_OUTFIT_VISUALIZATION.value,
            outfit_id=str(outfit_id),
            visualization_type=visualization_type,
        )
        await self._enqueue(job)
        return job

    # Queries

    async def get(self, job_id: UUID) -> AIJob:
        """Retrieve a job record.

        Raises:
            JobNotFound: If no job has this id
        """
        async with await self.uow_factory() as uow:
            return await uow.ai_jobs.get(job_id)

    async def list(
        self,
        *,
        item_id: Optional[UUID] = None,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[AIJob]:
        """List job records matching the filter, newest first."""
        async with await self.uow_factory() as uow:
            return await uow.ai_jobs.list_jobs(
                item_id=item_id, status=status, job_type=job_type, limit=limit
            )
