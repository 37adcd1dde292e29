"""Error taxonomy shared by the complaint lifecycle services and the JSON API."""
from typing import Optional


class ComplaintServiceError(Exception):
    """Base class for recoverable failures surfaced to API callers.

    Every subclass carries a stable error code, an HTTP status and a
    human-readable reason so callers can render an actionable message
    instead of a raw exception string.
    """

    code = "SERVICE_ERROR"
    status_code = 400
    default_message = "The request could not be completed."

    def __init__(self, message: Optional[str] = None, details: Optional[dict] = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        error = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"success": False, "error": error}


class NotFound(ComplaintServiceError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "The requested record does not exist."


class Forbidden(ComplaintServiceError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "You are not allowed to perform this action."


class InvalidTransition(ComplaintServiceError):
    code = "INVALID_TRANSITION"
    status_code = 409
    default_message = "This status change is not allowed."


class InvalidProgress(ComplaintServiceError):
    code = "INVALID_PROGRESS"
    status_code = 422
    default_message = "Progress must be a whole number that does not go below the current value."


class InvalidConfiguration(ComplaintServiceError):
    code = "INVALID_CONFIGURATION"
    status_code = 422
    default_message = "The supplied configuration is not valid."


class ValidationFailed(ComplaintServiceError):
    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "The submitted data is not valid."


class ConcurrentUpdate(ComplaintServiceError):
    """Raised when a complaint kept changing underneath a write until retries ran out."""

    code = "CONCURRENT_UPDATE"
    status_code = 409
    default_message = "The complaint was modified by another request. Reload and try again."


class RateLimited(ComplaintServiceError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429
    default_message = "Too many requests. Try again later."


HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMIT_EXCEEDED",
    500: "INTERNAL_ERROR",
}


def http_error_payload(status_code: int, message: str) -> dict:
    """Envelope for plain HTTP errors, matching ``ComplaintServiceError.to_dict``."""
    return {
        "success": False,
        "error": {"code": HTTP_ERROR_CODES.get(status_code, "UNKNOWN_ERROR"), "message": message},
    }
