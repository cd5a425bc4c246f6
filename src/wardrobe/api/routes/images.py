"""Image transform endpoints.

Thin submission wrappers that queue AI jobs for image transforms of a stored
item or outfit:
- POST /api/images/style-transfer - Restyle an item after a style reference image
- POST /api/images/generate-matching - Generate a piece that complements an item
- POST /api/images/coordinated-set - Generate a coordinated set around an item
- POST /api/images/outfit-context - Adapt an outfit to a new context

All return 202 with the queued job id. Input rules (e.g. style strength in
[0.3, 0.9]) are enforced at submission, before anything reaches the provider.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, status

from wardrobe.api.dependencies import get_gateway, raise_http_error, read_json_object
from wardrobe.api.schemas import JobAcceptedResponse
from wardrobe.models.ai_job import JobType
from wardrobe.services.exceptions import ServiceError, ValidationError
from wardrobe.services.jobs.submission import SubmissionGateway

logger = structlog.get_logger()
router = APIRouter(prefix="/api/images", tags=["images"])


def _drop_none(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def _catalog_payload(body: dict[str, Any], transform: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": JobType.GENERATE_CATALOG_IMAGE.value,
        "itemId": body.get("itemId"),
        "inputRefs": _drop_none({"imageId": body.get("imageId"), "transform": transform}),
    }


async def _submit(gateway: SubmissionGateway, payload: dict[str, Any], message: str) -> JobAcceptedResponse:
    try:
        job = await gateway.submit_payload(payload)
    except ServiceError as e:
        raise_http_error(e)
    return JobAcceptedResponse(job_id=job.id, message=message)


@router.post("/style-transfer", response_model=JobAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def style_transfer(
    request: Request,
    gateway: SubmissionGateway = Depends(get_gateway),
) -> JobAcceptedResponse:
    """Queue a style transfer.

    Body:
        {
            "itemId": "...",
            "imageId": "...",                  // optional, defaults to the item's main photo
            "styleReferenceImageId": "...",
            "strength": 0.6                    // 0.3-0.9, also accepted as transferStrength
        }
    """
    body = await read_json_object(request)
    strength = body.get("strength", body.get("transferStrength"))
    transform = _drop_none(
        {
            "kind": "style_transfer",
            "styleReferenceImageId": body.get("styleReferenceImageId"),
            "strength": strength,
        }
    )
    return await _submit(gateway, _catalog_payload(body, transform), "Style transfer queued")


@router.post(
    "/generate-matching", response_model=JobAcceptedResponse, status_code=status.HTTP_202_ACCEPTED
)
async def generate_matching(
    request: Request,
    gateway: SubmissionGateway = Depends(get_gateway),
) -> JobAcceptedResponse:
    """Queue generation of a piece that complements an item.

    Body:
        {"itemId": "...", "targetCategory": "bottoms", "styleNotes": "..."}
    """
    body = await read_json_object(request)
    transform = _drop_none(
        {
            "kind": "matching_item",
            "targetCategory": body.get("targetCategory"),
            "styleNotes": body.get("styleNotes"),
        }
    )
    return await _submit(gateway, _catalog_payload(body, transform), "Matching item generation queued")


@router.post(
    "/coordinated-set", response_model=JobAcceptedResponse, status_code=status.HTTP_202_ACCEPTED
)
async def coordinated_set(
    request: Request,
    gateway: SubmissionGateway = Depends(get_gateway),
) -> JobAcceptedResponse:
    """Queue generation of a coordinated set.

    Body:
        {"itemId": "...", "setType": "two-piece" | "three-piece" | "complete-outfit"}
    """
    body = await read_json_object(request)
    transform = {"kind": "coordinated_set", "setType": body.get("setType", "two-piece")}
    return await _submit(gateway, _catalog_payload(body, transform), "Coordinated set generation queued")


@router.post(
    "/outfit-context", response_model=JobAcceptedResponse, status_code=status.HTTP_202_ACCEPTED
)
async def outfit_context(
    request: Request,
    gateway: SubmissionGateway = Depends(get_gateway),
) -> JobAcceptedResponse:
    """Queue an outfit context variation.

    Body:
        {"outfitId": "...", "targetContext": "job interview", "maintainPieces": ["<item id>"]}
    """
    body = await read_json_object(request)
    if not body.get("targetContext"):
        # Without a target context the job would be a plain outfit suggestion
        raise_http_error(
            ValidationError('targetContext is required (e.g. "formal dinner", "job interview")')
        )

    payload = {
        "type": JobType.GENERATE_OUTFIT.value,
        "outfitId": body.get("outfitId"),
        "inputRefs": _drop_none(
            {
                "targetContext": body.get("targetContext"),
                "maintainPieces": body.get("maintainPieces"),
            }
        ),
    }
    return await _submit(gateway, payload, "Outfit context variation queued")
