"""Domain entities for library scanning.

Hey future me - these are plain dataclasses, NOT ORM models. They travel
between the walker, the change detector, the tag reader and the batch writer
without ever touching a session. The ORM rows live in
infrastructure/persistence/models.py.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


# =============================================================================
# Filesystem discovery
# =============================================================================


@dataclass(frozen=True, slots=True)
class DiscoveredFile:
    """An audio file seen by the walker (stat only, never opened)."""

    path: str
    mtime_ns: int
    size: int


@dataclass(frozen=True, slots=True)
class WalkWarning:
    """A directory the walker could not read."""

    path: str
    reason: str


# =============================================================================
# Tag extraction
# =============================================================================


@dataclass
class SongMetadata:
    """Everything the tag reader extracts from one file.

    Hey future me - artists holds the RAW tag values. Multi-value frames
    (ID3v2.4, Vorbis) give several entries, and each entry may itself be
    "A feat. B" - splitting happens in the EntityResolver with the
    configured separators. Missing numeric tags stay None, never 0.
    """

    path: str
    title: str
    artists: list[str] = field(default_factory=list)
    album: str | None = None
    album_artist: str | None = None
    genres: list[str] = field(default_factory=list)
    track_number: int | None = None
    track_count: int | None = None
    disc_number: int | None = None
    disc_count: int | None = None
    year: int | None = None
    duration_ms: int | None = None
    bitrate: int | None = None
    sample_rate: int | None = None
    channels: int | None = None
    cover_art: bytes | None = None
    cover_art_mime: str | None = None
    # Embedded or sidecar (.lrc) lyrics, LRC-timed when the source was synced
    lyrics: str | None = None
    replaygain_track_gain: float | None = None  # dB
    replaygain_track_peak: float | None = None


@dataclass(frozen=True, slots=True)
class FileFailure:
    """A file that was skipped because its tags could not be read."""

    path: str
    reason: str


# =============================================================================
# Scan progress & results
# =============================================================================


class ScanPhase(str, Enum):
    """Phase of a running scan, reported to progress sinks."""

    STARTING = "starting"
    DISCOVERING = "discovering"
    ANALYZING = "analyzing"
    PERSISTING = "persisting"
    CLEANING = "cleaning"
    FINISHED = "finished"


class ScanStatus(str, Enum):
    """Top-level status of a scan."""

    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    COMPLETE_WITH_ERRORS = "complete_with_errors"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if the scan is over."""
        return self is not ScanStatus.IN_PROGRESS


@dataclass
class ScanProgress:
    """Transient progress snapshot (never persisted)."""

    phase: ScanPhase
    current: int = 0
    total: int = 0
    message: str = ""
    status: ScanStatus = ScanStatus.IN_PROGRESS
    added: int = 0
    modified: int = 0
    removed: int = 0
    unchanged: int = 0
    failed: int = 0
    current_path: str | None = None

    @property
    def is_indeterminate(self) -> bool:
        """True while the total is still unknown (e.g. during discovery)."""
        return self.total <= 0

    @property
    def percentage(self) -> float:
        """Completion percentage in [0, 100]."""
        if self.is_indeterminate:
            return 0.0
        return round(min(self.current, self.total) / self.total * 100, 1)

    def to_dict(self) -> dict[str, object]:
        """Serialize for the HTTP API."""
        return {
            "phase": self.phase.value,
            "status": self.status.value,
            "current": self.current,
            "total": self.total,
            "percentage": self.percentage,
            "indeterminate": self.is_indeterminate,
            "message": self.message,
            "current_path": self.current_path,
            "added": self.added,
            "modified": self.modified,
            "removed": self.removed,
            "unchanged": self.unchanged,
            "failed": self.failed,
        }


@dataclass(frozen=True, slots=True)
class BatchFailure:
    """A persistence batch that was rolled back."""

    batch_number: int
    paths: tuple[str, ...]
    reason: str


@dataclass
class ScanResult:
    """Outcome of one scan of one folder."""

    scan_id: str
    folder_path: str
    full_scan: bool
    status: ScanStatus = ScanStatus.IN_PROGRESS
    added: int = 0
    modified: int = 0
    removed: int = 0
    unchanged: int = 0
    file_failures: list[FileFailure] = field(default_factory=list)
    batch_failures: list[BatchFailure] = field(default_factory=list)
    walk_warnings: list[WalkWarning] = field(default_factory=list)
    batches_committed: int = 0
    deleted_albums: int = 0
    deleted_artists: int = 0
    deleted_genres: int = 0
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def failed(self) -> int:
        """Per-file failure count."""
        return len(self.file_failures)

    @property
    def has_errors(self) -> bool:
        """Check if anything went wrong short of a fatal error."""
        return bool(self.file_failures or self.batch_failures or self.walk_warnings)

    def to_dict(self) -> dict[str, object]:
        """Serialize for logs and the HTTP API."""
        return {
            "scan_id": self.scan_id,
            "folder_path": self.folder_path,
            "full_scan": self.full_scan,
            "status": self.status.value,
            "added": self.added,
            "modified": self.modified,
            "removed": self.removed,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "failed_files": [
                {"path": f.path, "reason": f.reason} for f in self.file_failures
            ],
            "batch_failures": [
                {"batch": b.batch_number, "files": len(b.paths), "reason": b.reason}
                for b in self.batch_failures
            ],
            "walk_warnings": [
                {"path": w.path, "reason": w.reason} for w in self.walk_warnings
            ],
            "batches_committed": self.batches_committed,
            "deleted_albums": self.deleted_albums,
            "deleted_artists": self.deleted_artists,
            "deleted_genres": self.deleted_genres,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


__all__ = [
    "BatchFailure",
    "DiscoveredFile",
    "FileFailure",
    "ScanPhase",
    "ScanProgress",
    "ScanResult",
    "ScanStatus",
    "SongMetadata",
    "WalkWarning",
]
