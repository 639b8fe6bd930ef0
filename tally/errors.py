"""Error taxonomy shared by the store, the services and the HTTP layer."""

from __future__ import annotations


class TallyError(Exception):
    """Base class for errors that carry a client-facing message."""

    message: str

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(TallyError):
    """Raised whenever a request is missing required fields or carries malformed values"""


class UnauthorizedError(TallyError):
    """Raised whenever credentials are missing, invalid or expired, or an old password does not match"""


class NotFoundError(TallyError):
    """Raised whenever the requested resource or user does not exist"""


class ConflictError(TallyError):
    """Raised whenever a change would violate a uniqueness constraint (e.g. a duplicate username)"""


class InternalError(TallyError):
    """Raised whenever the persistence layer fails. The client is not at fault."""


class BackupImportError(InternalError):
    """Raised when a backup import is aborted and rolled back."""

    imported: int

    def __init__(self, message: str, *, imported: int = 0) -> None:
        super().__init__(message)
        self.imported = imported


__all__ = [
    "BackupImportError",
    "ConflictError",
    "InternalError",
    "NotFoundError",
    "TallyError",
    "UnauthorizedError",
    "ValidationError",
]
