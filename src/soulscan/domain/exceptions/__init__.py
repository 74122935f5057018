"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is stored as an attribute so handlers can log it
    # without parsing str(exception). Never raise this directly - use a subclass
    # so callers can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class DuplicateEntityException(DomainException):
    """Raised when trying to create a duplicate entity."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} already exists")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ConfigurationError(DomainException):
    """Configuration is missing or invalid.

    Raised before a scan starts (missing root folder, unset artist
    separators). Nothing has been written when this is raised.

    HTTP Status: 400
    """

    pass


# =============================================================================
# Scan errors
# =============================================================================


class ScanAlreadyRunningError(DomainException):
    """A scan for this folder is already in progress.

    HTTP Status: 409
    """

    def __init__(self, folder_path: str) -> None:
        super().__init__(f"A scan is already running for {folder_path}")
        self.folder_path = folder_path


class ScanCancelledError(DomainException):
    """Cooperative cancellation was requested for a scan.

    Hey future me - this is NOT a failure! The scanner catches it and reports
    ScanStatus.CANCELLED. It only exists so the batch writer can unwind out of
    a flush without committing the in-flight batch.
    """

    def __init__(self, message: str = "Scan cancelled") -> None:
        super().__init__(message)


class ExtractionFailedError(DomainException):
    """Tags could not be read from an audio file."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to read tags from {path}: {reason}")
        self.path = path
        self.reason = reason


class PersistenceBatchError(DomainException):
    """A batch of song upserts could not be committed."""

    def __init__(self, batch_number: int, reason: str) -> None:
        super().__init__(f"Batch {batch_number} failed: {reason}")
        self.batch_number = batch_number
        self.reason = reason


class CleanupError(DomainException):
    """The cleanup pass failed and was rolled back."""

    pass


class FolderNotEmptyError(DomainException):
    """A folder still owns songs and a cascading reset was not requested.

    HTTP Status: 409
    """

    def __init__(self, folder_path: str, song_count: int) -> None:
        super().__init__(
            f"Folder {folder_path} still owns {song_count} songs; "
            "use a cascading removal to delete them"
        )
        self.folder_path = folder_path
        self.song_count = song_count


__all__ = [
    "CleanupError",
    "ConfigurationError",
    "DomainException",
    "DuplicateEntityException",
    "EntityNotFoundException",
    "ExtractionFailedError",
    "FolderNotEmptyError",
    "PersistenceBatchError",
    "ScanAlreadyRunningError",
    "ScanCancelledError",
]
