"""Error handling middleware."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from reelforge.models.errors import (
    DecodeError,
    ErrorResponse,
    IllegalTransitionError,
    IncompleteJobError,
    InvalidInputError,
    JobNotFoundError,
    ProviderError,
    ReelforgeError,
)

logger = logging.getLogger(__name__)


async def reelforge_error_handler(request: Request, exc: ReelforgeError) -> JSONResponse:
    """Handle ReelforgeError exceptions."""
    status_code = _get_status_code(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    response = ErrorResponse.from_exception(
        exc, guidance=_get_guidance(exc), retry=_is_retryable(exc)
    )
    return JSONResponse(status_code=status_code, content=response.model_dump())


def _get_status_code(exc: ReelforgeError) -> int:
    """Map error type to HTTP status code."""
    if isinstance(exc, (InvalidInputError, IllegalTransitionError, DecodeError)):
        return 400
    elif isinstance(exc, JobNotFoundError):
        return 404
    elif isinstance(exc, IncompleteJobError):
        return 409
    elif isinstance(exc, ProviderError):
        return 502
    return 500


def _get_guidance(exc: ReelforgeError) -> str:
    """Generate actionable guidance based on error type."""
    if isinstance(exc, IncompleteJobError):
        return "Wait for the listed segments to finish, or retry the failed ones."
    if isinstance(exc, DecodeError):
        return "Check that the audio file is a supported, uncorrupted format."
    if isinstance(exc, IllegalTransitionError):
        return "Check the job status before repeating this request."
    return "Please try again or contact support."


def _is_retryable(exc: ReelforgeError) -> bool:
    if isinstance(exc, ProviderError):
        return exc.retryable
    return isinstance(exc, IncompleteJobError)
