from __future__ import annotations


class StudioError(Exception):
    """Base error carrying the HTTP status used when it reaches a route."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class Unauthorized(StudioError):
    status_code = 401
    default_message = "Unauthorized"


class BadRequest(StudioError):
    status_code = 400
    default_message = "Bad request"


class NotFound(StudioError):
    status_code = 404
    default_message = "Not found"


class TransportUnavailable(StudioError):
    """Realtime transport is not configured; callers degrade to no realtime."""

    status_code = 503
    default_message = "Realtime transport not configured"


class ValidationFailed(StudioError):
    """A webhook payload does not carry a usable artifact."""

    status_code = 422
    default_message = "Validation failed"
