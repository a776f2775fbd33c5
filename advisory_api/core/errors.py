"""
Domain exceptions raised by services and rendered by the API error handlers.

Every error carries a single human-readable message. Messages for credential,
OTP and token failures are intentionally generic so responses can't be used
as an oracle.
"""
from __future__ import annotations

from typing import Any


class AppError(Exception):
    status_code: int = 400
    error: str = "BAD_REQUEST"
    retryable: bool = False

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(AppError):
    """Malformed input or a field missing for the requested flow."""

    status_code = 400
    error = "VALIDATION_ERROR"


class UnauthorizedError(AppError):
    """Bad credentials, invalid/expired/used OTP, invalid token, revoked session."""

    status_code = 401
    error = "UNAUTHORIZED"


class ForbiddenError(AppError):
    status_code = 403
    error = "FORBIDDEN"


class NotFoundError(AppError):
    status_code = 404
    error = "NOT_FOUND"


class ConflictError(AppError):
    """Duplicate email/phone or a one-time transition that already happened."""

    status_code = 409
    error = "CONFLICT"


class DependencyError(AppError):
    """A collaborator (queue, token verifier) failed. Safe for the client to retry."""

    status_code = 503
    error = "DEPENDENCY_FAILURE"
    retryable = True


class NotImplementedProviderError(AppError):
    status_code = 501
    error = "NOT_IMPLEMENTED"
