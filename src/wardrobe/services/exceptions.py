"""Service error hierarchy for AI job submission, queueing and generation.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- Submission errors: surfaced synchronously to the caller (400/404/503)
- Provider errors: one failed attempt against the generation provider
- Queue errors: broker connectivity and enqueue failures
- PermanentFailure: all attempts exhausted, recorded on the job only
"""

from typing import Any


class ServiceError(Exception):
    """Base exception for all service errors."""

    code: str = "SERVICE_ERROR"

    def to_error_dict(self, **extra: Any) -> dict[str, Any]:
        """Structured form stored on AIJob.error."""
        error = {
            "code": self.code,
            "error_type": type(self).__name__,
            "message": str(self),
        }
        error.update(extra)
        return error


# Submission errors (synchronous path)


class ValidationError(ServiceError):
    """Malformed submission (400)."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.details = details or []


class NotFoundError(ServiceError):
    """Referenced entity does not exist (404)."""

    code = "NOT_FOUND"


class JobNotFound(NotFoundError):
    """AI job id is unknown to the job record store."""

    pass


class AIDisabledError(ServiceError):
    """AI processing is globally disabled (503)."""

    code = "AI_DISABLED"


# Provider errors (asynchronous path, each one is a failed attempt)


class ProviderError(ServiceError):
    """Base exception for generation provider failures."""

    code = "PROVIDER_ERROR"


class ProviderTimeout(ProviderError):
    """No response within the time budget."""

    code = "PROVIDER_TIMEOUT"


class ProviderRejected(ProviderError):
    """Provider rejected the input (bad request, malformed image, auth)."""

    code = "PROVIDER_REJECTED"


class ProviderMalformedResponse(ProviderError):
    """Response does not match the expected schema, even after repair."""

    code = "PROVIDER_MALFORMED_RESPONSE"


class ProviderUnavailable(ProviderError):
    """Rate limit (429), server error (5xx) or network failure."""

    code = "PROVIDER_UNAVAILABLE"


class HandlerInputError(ServiceError):
    """Job inputs cannot be assembled (e.g. the item has no usable image)."""

    code = "HANDLER_INPUT_ERROR"


# Queue errors


class QueueError(ServiceError):
    """Base exception for job queue failures."""

    code = "QUEUE_ERROR"


class QueueConnectionError(QueueError):
    """Queue broker could not be reached."""

    pass


# Terminal outcome


class PermanentFailure(ServiceError):
    """All delivery attempts for a job are exhausted."""

    code = "PERMANENT_FAILURE"

    def __init__(self, message: str, attempts: int, cause: Exception | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.cause = cause

    def to_error_dict(self, **extra: Any) -> dict[str, Any]:
        error = super().to_error_dict(attempts=self.attempts, **extra)
        if self.cause is not None:
            if isinstance(self.cause, ServiceError):
                error["cause"] = self.cause.to_error_dict()
            else:
                error["cause"] = {
                    "code": "UNEXPECTED_ERROR",
                    "error_type": type(self.cause).__name__,
                    "message": str(self.cause),
                }
        return error
