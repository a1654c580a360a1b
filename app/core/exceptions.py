"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "You do not have access to this resource"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class SlotConflictException(ConflictException):
    """The requested doctor slot is held by another active appointment."""

    def __init__(
        self,
        message: str = "That time is already taken, please pick another slot.",
    ):
        """Initialize with the user-facing slot message."""
        super().__init__(message)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(
        self,
        message: str = "Validation error",
        details: list[dict[str, Any]] | None = None,
    ):
        """Initialize with 422 status code and optional field-level details."""
        super().__init__(message, status_code=422)
        self.details = details or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationException":
        """Build a validation error pointing at a single field."""
        return cls(message, details=[{"loc": [field], "msg": message}])


class InternalException(AppException):
    """Transient storage or transport failure, safe to retry."""

    def __init__(self, message: str = "Service temporarily unavailable, please retry"):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503)
