"""
Service error kinds.

Every failure that crosses the HTTP boundary is one of these. The exception
handler in main.py renders them as ``{success: false, error, kind, ...extra}``
with the kind's status code, so route handlers never build error bodies by hand.
"""
from typing import Any, Optional


class ServiceError(Exception):
    """Base class for structured, client-visible errors."""

    kind = "internal"
    status_code = 500

    def __init__(self, message: str, extra: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_body(self) -> dict[str, Any]:
        body = {"success": False, "error": self.message, "kind": self.kind}
        body.update(self.extra)
        return body


class InputInvalidError(ServiceError):
    kind = "input-invalid"
    status_code = 400


class NotFoundError(ServiceError):
    kind = "not-found"
    status_code = 404


class DatabaseUnavailableError(ServiceError):
    kind = "db-unavailable"
    status_code = 503


class ToolMissingError(ServiceError):
    kind = "tool-missing"
    status_code = 500


class ToolTimeoutError(ServiceError):
    kind = "tool-timeout"
    status_code = 504


class FilesystemError(ServiceError):
    kind = "fs-error"
    status_code = 500


class CapacityExceededError(ServiceError):
    """Roster is full (``code: no-free-slot``)."""
    kind = "capacity-exceeded"
    status_code = 400


class ConflictError(ServiceError):
    kind = "conflict"
    status_code = 409


class AuthFailedError(ServiceError):
    """
    Privileged call without a valid passkey or session.

    Rendered as 200 with success=false; the body is identical for every
    failure cause so callers learn nothing about which factor was wrong.
    """
    kind = "auth-failed"
    status_code = 200

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)
