"""Domain errors raised by the library store, share service and coordinator."""

from __future__ import annotations

from typing import Any


class LibraryError(Exception):
    """Base class for collection errors that map onto an HTTP status code."""

    status_code: int = 500
    message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        *,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        self.payload = payload or {}


class ValidationError(LibraryError):
    status_code = 400
    message = "Invalid game data."


class UnauthorizedError(LibraryError):
    status_code = 401
    message = "Unauthorized"


class NotFoundError(LibraryError):
    status_code = 404
    message = "Not found"


class UpstreamError(LibraryError):
    status_code = 502
    message = "Storage service unavailable."


class PendingCreateFailed(LibraryError):
    """An edit or delete targeted a pending record whose create was rolled back."""

    status_code = 409
    message = "Cannot edit: original create failed"


class OperationInProgress(LibraryError):
    status_code = 409
    message = "Please wait - another game is currently being deleted."


__all__ = [
    "LibraryError",
    "NotFoundError",
    "OperationInProgress",
    "PendingCreateFailed",
    "UnauthorizedError",
    "UpstreamError",
    "ValidationError",
]
