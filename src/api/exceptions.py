"""Custom exception classes for the ClearPath API.

Every error the pipeline reports to a caller is a ClearPathException. The
intermediate classes (NotFoundError, ForbiddenError, ...) are the categories
the error handlers map to HTTP status codes; the leaf classes carry the
machine-readable error code.
"""

from typing import Optional


class ClearPathException(Exception):
    """Base exception class for ClearPath errors.

    All custom exceptions should inherit from this class.
    Provides error code and message structure.
    """

    def __init__(self, message: str, error_code: Optional[str] = None):
        """Initialize exception.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
        """
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        super().__init__(self.message)


class NotFoundError(ClearPathException):
    """Base class for missing users and reviews."""


class UserNotFoundError(NotFoundError):
    """Exception raised when a user is not found."""

    def __init__(self, user_id):
        super().__init__(
            message=f"User not found: {user_id}",
            error_code="USER_NOT_FOUND"
        )
        self.user_id = user_id


class ReviewNotFoundError(NotFoundError):
    """Exception raised when a review record is not found."""

    def __init__(self, review_id):
        super().__init__(
            message=f"Review not found: {review_id}",
            error_code="REVIEW_NOT_FOUND"
        )
        self.review_id = review_id


class InvalidInputError(ClearPathException):
    """Exception raised when input validation fails."""

    def __init__(self, message: str, field: Optional[str] = None):
        error_code = f"INVALID_INPUT_{field.upper()}" if field else "INVALID_INPUT"
        super().__init__(message=message, error_code=error_code)
        self.field = field


class UnauthorizedError(ClearPathException):
    """Exception raised when authentication fails."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message=message, error_code="UNAUTHORIZED")


class ForbiddenError(ClearPathException):
    """Exception raised when user lacks required permissions."""

    def __init__(self, message: str = "Insufficient permissions", error_code: str = "FORBIDDEN"):
        super().__init__(message=message, error_code=error_code)


class ConsentNotGrantedError(ForbiddenError):
    """Exception raised when data processing consent is missing or revoked."""

    def __init__(self, user_id=None, message: str = "User consent required"):
        super().__init__(message=message, error_code="CONSENT_REQUIRED")
        self.user_id = user_id


class InvalidTransitionError(ClearPathException):
    """Exception raised when a review is not in a state that allows the change."""

    def __init__(self, review_id, current_status: str, target: str):
        super().__init__(
            message=f"Review {review_id} is {current_status}; cannot move to {target}",
            error_code="INVALID_TRANSITION"
        )
        self.review_id = review_id
        self.current_status = current_status
        self.target = target


class InsufficientDataError(ClearPathException):
    """Exception raised when a user has no computed persona or signals yet."""

    def __init__(self, user_id, message: Optional[str] = None):
        super().__init__(
            message=message or f"Not enough data to generate recommendations for user {user_id}",
            error_code="INSUFFICIENT_DATA"
        )
        self.user_id = user_id


class StorageUnavailableError(ClearPathException):
    """Exception raised when the backing store cannot be reached."""

    def __init__(self, message: str = "Storage unavailable"):
        super().__init__(message=message, error_code="STORAGE_UNAVAILABLE")


class GenerationTimeoutError(ClearPathException):
    """Exception raised when candidate generation exceeds its time budget.

    The caller may retry; nothing was written for the cycle that timed out.
    """

    retryable = True

    def __init__(self, user_id, timeout_seconds: float, retry_after: int = 5):
        super().__init__(
            message=f"Recommendation generation timed out after {timeout_seconds:g}s",
            error_code="GENERATION_TIMEOUT"
        )
        self.user_id = user_id
        self.timeout_seconds = timeout_seconds
        self.retry_after = retry_after


class RateLimitError(ClearPathException):
    """Exception raised when rate limit is exceeded."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[int] = None):
        super().__init__(message=message, error_code="RATE_LIMIT_EXCEEDED")
        self.retry_after = retry_after
