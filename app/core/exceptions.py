"""
Base exception classes for application-wide error handling.

This module provides a standardized exception hierarchy that enables:
- Consistent error envelopes across every API endpoint
- Machine-readable error codes for client handling
- An HTTP status per error class, used by the API exception handler

Exception Hierarchy:
    BaseApplicationError (base, 500)
    ├── ValidationError - Input validation failures (400)
    ├── NotFoundError - Resource not found (404)
    ├── ConflictError - State conflicts, duplicates, concurrent writes (409)
    └── ExternalServiceError - Third-party service failures (502)

Usage:
    from core.exceptions import ValidationError, NotFoundError

    # Raise with message only
    raise ValidationError("Amount must be positive")

    # Raise with error code and details
    raise NotFoundError(
        "Invoice not found",
        error_code="INVOICE_NOT_FOUND",
        details={"invoice_id": str(invoice_id)},
    )

Note:
    These exceptions are for domain/business logic errors. Views do not
    catch them; core.exception_handler renders them into the standard
    failure envelope.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, upstream status, etc.)
        http_status: Status code used when the error crosses the API boundary
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for logging or debug responses.

        Returns:
            Dict with error, error_code, and (when present) details keys
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Always user-visible and never retriable without new input.

    Example:
        raise ValidationError(
            "Validation failed",
            error_code="VALIDATION_ERROR",
            details={"amount": ["Must be greater than zero"]},
        )

    Note:
        For request-shape validation, use DRF serializers. Use this for
        service-layer business rules.
    """

    default_error_code: str = "VALIDATION_ERROR"
    http_status: int = 400


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Use for single-resource lookups where existence is expected,
    including lookups scoped to the calling user.
    """

    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Duplicate entries (unique constraint violations)
    - Concurrent modification conflicts
    - Invalid state transitions
    """

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Log the original error for debugging but don't expose internal
    details to clients in production.

    Attributes:
        is_retryable: Whether the caller may retry after backoff
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = 502
    is_retryable: bool = False
