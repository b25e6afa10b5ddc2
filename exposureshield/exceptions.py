"""Error taxonomy shared by the services and the HTTP layer.

Every error carries the HTTP status it maps to and the message that is safe
to show a client. Server-side errors (5xx) keep their detail for the logs
and always present a generic message.
"""

from typing import Optional


class ExposureShieldError(Exception):
    """Base class for errors that map onto a JSON error response."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None):
        self.message = message or self.default_message
        self.detail = detail or self.message
        super().__init__(self.detail)

    @property
    def public_message(self) -> str:
        """Message returned to the client."""
        if self.status_code >= 500:
            return self.default_message
        return self.message


class ValidationError(ExposureShieldError):
    status_code = 400
    default_message = "Invalid request"


class Unauthorized(ExposureShieldError):
    status_code = 401
    default_message = "Invalid or expired token"


class NotFound(ExposureShieldError):
    status_code = 404
    default_message = "Not found"


class Conflict(ExposureShieldError):
    status_code = 409
    default_message = "Conflict"


class ConfigurationError(ExposureShieldError):
    """A required secret or setting is missing."""

    status_code = 500
    default_message = "Server configuration error"


class UpstreamError(ExposureShieldError):
    """The backing store is unreachable or returned malformed data."""

    status_code = 500
    default_message = "Internal server error"
