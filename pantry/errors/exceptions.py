"""Domain error taxonomy shared by the service layer.

Every service raises a subclass of ServiceError; the API error handlers turn
them into JSON responses using ``status_code`` and ``to_dict``.
"""

from typing import Any, Optional


class ServiceError(Exception):
    """Base exception for expected, caller-visible service failures."""

    status_code = 500
    code = "SERVICE_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.message = message
        self.field = field
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.field:
            result["field"] = self.field
        return result


class NotFoundError(ServiceError):
    """A resource is absent or not owned by the caller."""

    status_code = 404
    code = "NOT_FOUND"


class ServiceValidationError(ServiceError):
    """Input that can never succeed as given."""

    status_code = 400
    code = "VALIDATION_ERROR"


class ConflictError(ServiceError):
    """A resource is not in the state required by the requested transition."""

    status_code = 409
    code = "CONFLICT"


class QuotaExceededError(ServiceError):
    """The caller has used up an allowance."""

    status_code = 429
    code = "QUOTA_EXCEEDED"

    def __init__(self, message: str, limit: Optional[int] = None):
        self.limit = limit
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.limit is not None:
            result["limit"] = self.limit
        return result


class UpstreamServiceError(ServiceError):
    """An external collaborator failed or returned an unusable response."""

    status_code = 502
    code = "UPSTREAM_ERROR"
