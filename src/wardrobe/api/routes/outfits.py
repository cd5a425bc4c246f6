"""Outfit AI endpoints.

- POST /api/outfits/{outfit_id}/visualize - Queue an outfit board or person-wearing image
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Request, status

from wardrobe.api.dependencies import get_gateway, raise_http_error, read_json_object
from wardrobe.api.schemas import JobAcceptedResponse
from wardrobe.services.exceptions import ServiceError, ValidationError
from wardrobe.services.jobs.submission import SubmissionGateway

logger = structlog.get_logger()
router = APIRouter(prefix="/api/outfits", tags=["outfits"])


@router.post(
    "/{outfit_id}/visualize",
    response_model=JobAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def visualize_outfit(
    outfit_id: UUID,
    request: Request,
    gateway: SubmissionGateway = Depends(get_gateway),
) -> JobAcceptedResponse:
    """Queue a visualization of a saved outfit.

    Body (optional):
        {"visualizationType": "outfit_board" | "person_wearing"}

    Raises:
        HTTPException 400: Outfit has no items, no item has an image, or unknown type
        HTTPException 404: Outfit not found
        HTTPException 503: AI processing is disabled
    """
    body = await request.body()
    payload = await read_json_object(request) if body.strip() else {}

    visualization_type = payload.get("visualizationType", "outfit_board")
    if not isinstance(visualization_type, str):
        raise_http_error(ValidationError("visualizationType must be a string"))

    try:
        job = await gateway.submit_outfit_visualization(outfit_id, visualization_type)
    except ServiceError as e:
        raise_http_error(e)

    return JobAcceptedResponse(
        job_id=job.id,
        message="Visualization generation queued",
    )
