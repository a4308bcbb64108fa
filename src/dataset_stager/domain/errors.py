"""Error taxonomy for the staging-and-captioning pipeline."""

from uuid import UUID


class DatasetStagerError(Exception):
    """Base class for pipeline errors."""


class DecodeError(DatasetStagerError):
    """Raised when an uploaded file cannot be decoded as an image."""

    def __init__(self, original_name: str, reason: str) -> None:
        super().__init__(f"Could not decode {original_name!r}: {reason}")
        self.original_name = original_name
        self.reason = reason


class StorageError(DatasetStagerError):
    """Raised when the staging store cannot be read or written."""


class CaptioningError(DatasetStagerError):
    """Raised when a single captioning call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PackagingError(DatasetStagerError):
    """Raised when one image cannot be added to an export archive."""


class SessionNotFoundError(DatasetStagerError):
    """Raised when a session id is unknown or already closed."""

    def __init__(self, session_id: UUID) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class CaptionRunInProgressError(DatasetStagerError):
    """Raised when a caption run or a batch mutation overlaps a running caption run."""


class StaleBatchError(DatasetStagerError):
    """Raised when the staged batch changed while captions were being generated."""
