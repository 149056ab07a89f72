"""Custom exceptions and error handling utilities."""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError


class AppException(Exception):
    """Base exception for application errors.

    Every error that crosses the HTTP boundary is rendered into the same JSON
    envelope by :meth:`to_dict`.
    """

    status_code = 500
    code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details
        self.timestamp = datetime.now(timezone.utc).isoformat()

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "name": self.name,
                "message": self.message,
                "code": self.code,
                "statusCode": self.status_code,
                "details": self.details,
                "timestamp": self.timestamp,
            }
        }


class ValidationError(AppException):
    """Raised when validation fails."""
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(AppException):
    """Raised when authentication fails."""
    status_code = 401
    code = "AUTHENTICATION_ERROR"


class AuthorizationError(AppException):
    """Raised when the principal lacks a required scope."""
    status_code = 403
    code = "AUTHORIZATION_ERROR"


class NotFoundError(AppException):
    """Raised when a resource is not found."""
    status_code = 404
    code = "NOT_FOUND_ERROR"


class RateLimitError(AppException):
    """Raised when a client exceeds its request quota."""
    status_code = 429
    code = "RATE_LIMIT_ERROR"

    def __init__(self, message: str, retry_after: int, details: Any = None):
        super().__init__(message, details if details is not None else {"retryAfter": retry_after})
        self.retry_after = retry_after


class DatabaseError(AppException):
    """Raised when the persistence layer fails."""
    status_code = 500
    code = "DATABASE_ERROR"


class InternalServerError(AppException):
    """Fallback for unexpected errors."""


def handle_database_error(error: Exception, operation: str) -> AppException:
    """
    Convert database errors to application exceptions.

    Storage-engine specifics never leak: constraint violations become
    ValidationError, anything else a generic DatabaseError.

    Args:
        error: The database error
        operation: Description of the operation that failed

    Returns:
        AppException with appropriate status code
    """
    if isinstance(error, IntegrityError):
        return ValidationError(
            f"Constraint violation during {operation}",
            details={"reason": "duplicate or invalid value"},
        )

    if isinstance(error, SQLAlchemyError):
        return DatabaseError(f"Database error during {operation}")

    return InternalServerError("Internal Server Error")


def not_found_error(resource: str, identifier: Optional[str] = None) -> NotFoundError:
    """
    Create a standardized 404 error.

    Args:
        resource: Name of the resource (e.g., "Session", "API key")
        identifier: Optional identifier that was not found

    Returns:
        NotFoundError
    """
    message = f"{resource} not found"
    if identifier:
        message += f": {identifier}"
    return NotFoundError(message)
