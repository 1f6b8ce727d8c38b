"""
Error taxonomy for the scheduling engine.

Services raise these; routes stay thin and let the exception handler in
app.main turn them into JSON responses.
"""
from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

# ---------------------------------------------------------------------------
# HTTP status codes per error category
# ---------------------------------------------------------------------------

STATUS_BAD_REQUEST = 400
STATUS_FORBIDDEN = 403
STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_GONE = 410


class SchedulingError(Exception):
    """Base class for every error the engine surfaces to callers."""

    status_code = STATUS_BAD_REQUEST
    error = "scheduling_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(SchedulingError):
    """Malformed input (end <= start, unknown scope). Never retried."""

    status_code = STATUS_BAD_REQUEST
    error = "validation_error"


class ConflictError(SchedulingError):
    """The requested range is no longer free, or a state race was lost."""

    status_code = STATUS_CONFLICT
    error = "conflict"


class NotFoundError(SchedulingError):
    status_code = STATUS_NOT_FOUND
    error = "not_found"


class InvalidTokenError(SchedulingError):
    status_code = STATUS_FORBIDDEN
    error = "invalid_token"


class OfferExpiredError(SchedulingError):
    status_code = STATUS_GONE
    error = "offer_expired"


async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Render a SchedulingError as the ErrorResponse shape used across the API."""
    body = {"error": exc.error, "message": exc.message}
    if exc.details:
        body["details"] = {k: str(v) for k, v in exc.details.items()}
    return JSONResponse(status_code=exc.status_code, content=body)
