from __future__ import annotations


class FieldSyncError(Exception):
    """Base class for errors raised by the sync core."""


class ValidationError(FieldSyncError):
    """A value failed its field rules; nothing was written."""

    def __init__(self, message: str, *, field_errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field_errors = dict(field_errors or {})


class MissingContextError(FieldSyncError):
    """No source/period selected, so data capture cannot proceed."""


class StorageError(FieldSyncError):
    """The local durable store or the flat backup failed to read or write."""


class NetworkError(FieldSyncError):
    """Remote submission failed or the response did not signal success."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class InvalidTransition(FieldSyncError):
    """A status change that the field state machine does not allow."""
