"""AI job API endpoints.

This module implements REST endpoints for AI jobs:
- POST /api/ai/jobs - Validate, create and queue an AI job
- GET /api/ai/jobs - List jobs (newest first, up to 50) filtered by item, status or type
- GET /api/ai/jobs/{job_id} - Poll one job's status, result or error

Processing happens asynchronously; clients poll the job record for the outcome.
"""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, Request, status

from wardrobe.api.dependencies import get_gateway, raise_http_error, read_json_object
from wardrobe.api.schemas import AIJobListResponse, AIJobResponse
from wardrobe.models.ai_job import JobStatus, JobType
from wardrobe.services.exceptions import ServiceError
from wardrobe.services.jobs.submission import Rejected, SubmissionGateway

logger = structlog.get_logger()
router = APIRouter(prefix="/api/ai/jobs", tags=["ai-jobs"])


@router.post("", response_model=AIJobResponse, status_code=status.HTTP_201_CREATED)
async def create_ai_job(
    request: Request,
    gateway: SubmissionGateway = Depends(get_gateway),
) -> AIJobResponse:
    """Create and queue an AI job.

    Example:
        POST /api/ai/jobs
        {
            "type": "infer_item",
            "itemId": "3f1c9a2e-...",
            "inputRefs": {"includeLabel": true}
        }

        Response 201: the job record with status "queued"

    Raises:
        HTTPException 400: Payload violates the job schema
        HTTPException 404: Referenced item, outfit or image not found
        HTTPException 503: AI processing is disabled
    """
    payload = await read_json_object(request)

    outcome = gateway.validate(payload)
    if isinstance(outcome, Rejected):
        logger.info("ai_job.submission_rejected", reason=str(outcome.error))
        raise_http_error(outcome.error)

    try:
        job = await gateway.submit(outcome)
    except ServiceError as e:
        raise_http_error(e)

    return AIJobResponse.from_job(job)


@router.get("", response_model=AIJobListResponse)
async def list_ai_jobs(
    item_id: Optional[UUID] = Query(default=None, alias="itemId"),
    job_status: Optional[JobStatus] = Query(default=None, alias="status"),
    job_type: Optional[JobType] = Query(default=None, alias="type"),
    gateway: SubmissionGateway = Depends(get_gateway),
) -> AIJobListResponse:
    """List AI jobs, newest first, up to 50."""
    jobs = await gateway.list(item_id=item_id, status=job_status, job_type=job_type)
    return AIJobListResponse(jobs=[AIJobResponse.from_job(job) for job in jobs])


@router.get("/{job_id}", response_model=AIJobResponse)
async def get_ai_job(
    job_id: UUID,
    gateway: SubmissionGateway = Depends(get_gateway),
) -> AIJobResponse:
    """Get one AI job.

    Raises:
        HTTPException 404: Unknown job id
    """
    try:
        job = await gateway.get(job_id)
    except ServiceError as e:
        raise_http_error(e)
    return AIJobResponse.from_job(job)
