"""
Error types for the business metrics dashboard service.

This module defines the DashboardError base class and the subclasses used by
the domain, storage and sync layers. Code below the transport raises these
errors instead of building JSON-RPC error objects directly; the protocol layer
maps each ``error_code`` to a JSON-RPC error code.
"""

from __future__ import annotations

from typing import Any


class DashboardError(Exception):
    """
    Base exception class for dashboard operation errors.

    DashboardError instances are caught at the server entry point and mapped
    to JSON-RPC errors using ``bizdash.protocol.ERROR_CODE_MAP``.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_argument",
            "storage_failure", "unavailable", "not_found", "internal").
        message: Human-readable error message.
        details: Optional structured details (e.g., violated fields).

    Example:
        >>> raise DashboardError(
        ...     error_code="invalid_argument",
        ...     message="metric_type must be one of revenue, jobs, customers, performance",
        ...     details={"fields": {"metric_type": "not a known metric type"}},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize a DashboardError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DashboardError):
    """
    Error raised when input fails schema constraints.

    ``details["fields"]`` maps every violated field name to the reason it was
    rejected, so callers can report all problems at once.
    """

    def __init__(
        self,
        message: str,
        fields: dict[str, str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize a ValidationError."""
        merged: dict[str, Any] = dict(details or {})
        merged["fields"] = dict(fields or {})
        super().__init__(
            error_code="invalid_argument", message=message, details=merged
        )

    @property
    def fields(self) -> dict[str, str]:
        """Return the mapping of violated field names to reasons."""
        return self.details["fields"]


class StorageError(DashboardError):
    """
    Error raised when the underlying persistence operation fails.

    Covers connectivity problems, schema initialization failures and
    constraint violations. Never retried automatically.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a StorageError."""
        super().__init__(
            error_code="storage_failure", message=message, details=details
        )


class ExternalSourceError(DashboardError):
    """
    Error raised when the external sync source fails or times out.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an ExternalSourceError."""
        super().__init__(error_code="unavailable", message=message, details=details)


class NotFoundError(DashboardError):
    """
    Error raised when a requested method or resource does not exist.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a NotFoundError."""
        super().__init__(error_code="not_found", message=message, details=details)


class InternalError(DashboardError):
    """
    Error raised for unexpected internal errors.

    Used to wrap exceptions that escape a handler without being a
    DashboardError; these are logged with full stack traces.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InternalError."""
        super().__init__(error_code="internal", message=message, details=details)
