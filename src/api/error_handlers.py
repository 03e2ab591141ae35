"""Error handlers for the ClearPath API.

Converts ClearPathException subclasses and validation failures into JSON
responses with a single envelope:

    {"error": {"code": ..., "message": ..., "request_id": ..., "details": ...}}
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from src.api.exceptions import (
    ClearPathException,
    NotFoundError,
    InvalidInputError,
    UnauthorizedError,
    ForbiddenError,
    InvalidTransitionError,
    InsufficientDataError,
    StorageUnavailableError,
    GenerationTimeoutError,
    RateLimitError,
)
from src.utils.logging import get_logger

logger = get_logger("api.errors")

# Checked in order; the first matching category wins.
STATUS_MAP = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidInputError, status.HTTP_400_BAD_REQUEST),
    (UnauthorizedError, status.HTTP_401_UNAUTHORIZED),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (InsufficientDataError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RateLimitError, status.HTTP_429_TOO_MANY_REQUESTS),
    (GenerationTimeoutError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StorageUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def get_request_id(request: Request) -> str:
    """Extract request ID from request state or headers.

    Args:
        request: FastAPI request object

    Returns:
        Request ID string
    """
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id

    return request.headers.get("X-Request-ID", "unknown")


def status_for_exception(exc: ClearPathException) -> int:
    """Return the HTTP status code for a ClearPath exception."""
    for exc_type, status_code in STATUS_MAP:
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_error_response(
    status_code: int,
    error_code: str,
    message: str,
    request_id: str,
    details: dict = None,
    headers: dict = None
) -> JSONResponse:
    """Create standardized error response.

    Args:
        status_code: HTTP status code
        error_code: Machine-readable error code
        message: Human-readable error message
        request_id: Request ID for tracing
        details: Additional error details
        headers: Extra response headers (e.g. Retry-After)

    Returns:
        JSONResponse with error structure
    """
    error_response = {
        "error": {
            "code": error_code,
            "message": message,
            "request_id": request_id
        }
    }

    if details:
        error_response["error"]["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=error_response,
        headers=headers
    )


async def clearpath_exception_handler(request: Request, exc: ClearPathException) -> JSONResponse:
    """Handle ClearPath custom exceptions.

    Args:
        request: FastAPI request object
        exc: ClearPathException instance

    Returns:
        JSONResponse with error details
    """
    status_code = status_for_exception(exc)
    request_id = get_request_id(request)

    details = None
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(retry_after)}
    if getattr(exc, "retryable", False):
        details = {"retryable": True}

    if status_code >= 500:
        logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")

    return create_error_response(
        status_code=status_code,
        error_code=exc.error_code,
        message=exc.message,
        request_id=request_id,
        details=details,
        headers=headers
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors.

    Args:
        request: FastAPI request object
        exc: RequestValidationError instance

    Returns:
        JSONResponse with validation error details
    """
    request_id = get_request_id(request)

    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"]
        })

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        error_code="VALIDATION_ERROR",
        message="Input validation failed",
        request_id=request_id,
        details={"validation_errors": errors}
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions.

    Args:
        request: FastAPI request object
        exc: Exception instance

    Returns:
        JSONResponse with generic error details
    """
    request_id = get_request_id(request)
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code="INTERNAL_SERVER_ERROR",
        message="An unexpected error occurred",
        request_id=request_id
    )
