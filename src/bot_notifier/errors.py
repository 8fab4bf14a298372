"""Error types shared by the messaging pipeline and the HTTP surface.

Each error carries the HTTP status it maps to, a stable machine-readable
code, and optional context for logging.
"""

from __future__ import annotations

from typing import Any


class NotifierError(Exception):
    """Base class for expected, structured errors."""

    status_code: int = 500
    error_code: str = "E_INTERNAL_SERVER"

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON error envelope body."""
        return {
            "code": self.status_code,
            "type": self.error_code,
            "message": self.message,
        }


class ValidationError(NotifierError):
    """Raised when caller input is invalid or an operation is refused."""

    status_code = 400
    error_code = "E_VALIDATION_FAILED"


class UnauthorizedError(NotifierError):
    """Raised when an inbound webhook fails the secret token check."""

    status_code = 401
    error_code = "E_UNAUTHORIZED"


class NotFoundError(NotifierError):
    """Raised when a referenced audit entry does not exist."""

    status_code = 404
    error_code = "E_RESOURCE_NOT_FOUND"


class InternalError(NotifierError):
    """Raised when an upstream provider call fails after a real attempt."""

    status_code = 500
    error_code = "E_INTERNAL_SERVER"

    def __init__(
        self,
        message: str,
        *,
        service: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context={"service": service, **(context or {})})
        self.service = service

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "service": self.service}

    def __str__(self) -> str:
        return f"[{self.service}] {self.message}"
