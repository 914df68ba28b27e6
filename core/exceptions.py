"""
Error taxonomy for Ortho Insight.

Upstream failures (credentials, transport, schema drift) are absorbed by the
analytics pipeline and replaced with tagged sample data. Caller mistakes and
database failures are surfaced to the API client.
"""

from typing import Any, Dict, Optional


class OrthoInsightError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }


class CredentialsInvalidError(OrthoInsightError):
    """Upstream credentials are missing or contain transport-unsafe characters."""

    def __init__(self, message: str = "Greyfinch credentials are missing or invalid",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="CREDENTIALS_INVALID",
            status_code=502,
            details=details,
        )


class UpstreamError(OrthoInsightError):
    """Non-2xx, transport or GraphQL error from an upstream API."""

    def __init__(self, message: str, status: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = details or {}
        if status is not None:
            details["upstream_status"] = status
        super().__init__(
            message=message,
            error_code="UPSTREAM_ERROR",
            status_code=502,
            details=details,
        )
        self.status = status


class ValidationError(OrthoInsightError):
    """Malformed request parameters."""

    def __init__(self, message: str, field: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        if field:
            details = details or {}
            details["field"] = field
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=400,
            details=details,
        )


class NotFoundError(OrthoInsightError):
    """Requested resource does not exist or is not visible to the user."""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} {identifier} not found"
        super().__init__(
            message=message,
            error_code="NOT_FOUND",
            status_code=404,
            details={"resource": resource},
        )


class PersistenceError(OrthoInsightError):
    """Database read or write failed."""

    def __init__(self, message: str = "Database operation failed",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="PERSISTENCE_ERROR",
            status_code=500,
            details=details,
        )


class ConfigurationError(OrthoInsightError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            status_code=500,
            details=details,
        )
