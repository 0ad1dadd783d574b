"""Application error taxonomy.

Services raise these; the API layer turns them into the response envelope.
"""

from __future__ import annotations

from fastapi import status


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors


class ValidationError(AppError):
    """Malformed, missing or too-short input."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthError(AppError):
    """Missing/invalid/expired credentials. Messages stay deliberately vague."""

    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(AppError):
    """A unique field (username, email) is already in use."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class QuotaExceededError(AppError):
    """Raised when an upload would exceed the user's storage quota."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, *, requested_bytes: int, available_bytes: int) -> None:
        super().__init__(message)
        self.requested_bytes = requested_bytes
        self.available_bytes = available_bytes


class UpstreamError(AppError):
    """The object store failed to accept or serve an object."""

    status_code = status.HTTP_502_BAD_GATEWAY
