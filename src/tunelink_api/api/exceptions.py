"""Error response format and exception handlers for the API.

All API errors use a consistent response format:
{
    "error": "error_code",
    "message": "Human-readable description",
    ...additional context fields
}
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from tunelink import TunelinkError

logger = logging.getLogger(__name__)

# Exception attributes copied into the error response when set
_CONTEXT_FIELDS = ("task_id", "platform", "current", "requested", "retry_after")


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    message: str


def error_content(exc: TunelinkError) -> dict[str, str | float]:
    """Build the response body of a TunelinkError."""
    content: dict[str, str | float] = {
        "error": exc.error_code,
        "message": exc.message,
    }
    for field in _CONTEXT_FIELDS:
        value = getattr(exc, field, None)
        if value is not None:
            content[field] = value if isinstance(value, float) else str(value)
    return content


def register_exception_handlers(app: FastAPI) -> None:
    """Register custom exception handlers on the FastAPI app."""

    @app.exception_handler(TunelinkError)
    async def tunelink_error_handler(
        request: Request, exc: TunelinkError
    ) -> JSONResponse:
        """Generic handler for all TunelinkError subclasses."""
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content=error_content(exc))
