"""
Service Error Taxonomy

Every service raises one of these; the API layer turns them into the
standard ``{"success": false, "error": ...}`` envelope with the matching
HTTP status code.
"""

from typing import Optional


class ServiceError(Exception):
    """Base class for errors raised by the service layer."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert to the JSON error envelope."""
        payload = {"success": False, "error": self.message}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class ValidationError(ServiceError):
    """Malformed or missing input, rejected before persistence."""
    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(ServiceError):
    """Missing or unrecognized admin credentials."""
    status_code = 401
    default_message = "Unauthorized - Admin access required"


class NotFoundError(ServiceError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ServiceError):
    """Request is well formed but not allowed in the current state."""
    status_code = 409
    default_message = "Conflict"


class RateLimitError(ServiceError):
    status_code = 429
    default_message = "Too many requests. Please wait a minute and try again."


class PersistenceError(ServiceError):
    """A database write or read failed."""
    status_code = 500
    default_message = "Database operation failed"


class ServiceUnavailableError(ServiceError):
    """Backend unreachable or not configured."""
    status_code = 503
    default_message = "Service temporarily unavailable. Please try again."
