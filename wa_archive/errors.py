"""
Error taxonomy for the message archive.

- NotFoundError: a single-entity lookup matched no row
- StorageError: the storage engine failed during a read or write

Both propagate unchanged to the caller of the query functions; the HTTP
layer maps them to 404 and 500 respectively.
"""

from typing import Optional


class ArchiveError(Exception):
    """Base class for archive errors."""


class NotFoundError(ArchiveError):
    """Raised when a chat, message or media descriptor does not exist."""

    def __init__(self, entity: str, key: str):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class StorageError(ArchiveError):
    """Raised when the underlying database returns an error."""

    def __init__(self, operation: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.cause = cause
        message = f"storage failure during {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
