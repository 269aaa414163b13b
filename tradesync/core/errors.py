from __future__ import annotations


class ServiceError(Exception):
    """Request-terminating failure with a caller-safe message."""

    status_code: int = 500
    default_message: str = "Server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRequest(ServiceError):
    status_code = 400
    default_message = "Invalid request"


class InvalidCredentials(ServiceError):
    status_code = 401
    default_message = "Invalid credentials"


class Unauthorized(ServiceError):
    status_code = 401
    default_message = "Unauthorized"


class NotFound(ServiceError):
    status_code = 404
    default_message = "Not found"


class StorageFailure(ServiceError):
    status_code = 500
    default_message = "Server error"


class MalformedToken(ValueError):
    """Raised by the token codec; callers map it to Unauthorized."""
