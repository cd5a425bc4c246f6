"""FastAPI dependencies for request handling.

This module provides reusable FastAPI dependencies for:
- Access to process-wide services created in the application lifespan
- Translation of service errors into HTTP errors
"""

import json
from typing import Any, NoReturn

from fastapi import HTTPException, Request, status

from wardrobe.services.exceptions import (
    AIDisabledError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from wardrobe.services.jobs.submission import SubmissionGateway


def get_gateway(request: Request) -> SubmissionGateway:
    """Get the submission gateway from app state."""
    return request.app.state.gateway


async def read_json_object(request: Request) -> dict[str, Any]:
    """Read the request body as a JSON object.

    Raises:
        HTTPException: 400 Bad Request if the body is not a JSON object
    """
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": ValidationError.code, "message": "Request body must be valid JSON"},
        )
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": ValidationError.code, "message": "Request body must be a JSON object"},
        )
    return payload


def raise_http_error(error: ServiceError) -> NoReturn:
    """Translate a synchronous-path service error into an HTTPException.

    - ValidationError → 400
    - NotFoundError → 404
    - AIDisabledError → 503
    - anything else → 500
    """
    detail: dict[str, Any] = {"code": error.code, "message": str(error)}
    if isinstance(error, ValidationError):
        if error.details:
            detail["details"] = error.details
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, AIDisabledError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    raise HTTPException(status_code=code, detail=detail) from error
