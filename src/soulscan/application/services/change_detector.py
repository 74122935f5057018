"""Classify discovered files against the catalog.

Hey future me - the whole point of this module is to NOT read tags for
files that didn't change. One SELECT per folder loads {path_key: (mtime,
size)}, then classification is pure dict lookups. A 50k-song library that
didn't change costs one query and zero tag reads.

Removal policy: only a FULL walk of a folder may delete songs. A targeted
rescan of one album dir never sees the other 49k files, so treating
"not seen" as "deleted" there would wipe the library.
"""

import logging
import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from soulscan.domain.entities import DiscoveredFile
from soulscan.domain.value_objects import path_key
from soulscan.infrastructure.persistence.models import SongModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CatalogEntry:
    """What the catalog remembers about a file."""

    song_id: str
    path: str
    mtime_ns: int
    size: int


@dataclass
class FileChangeSet:
    """Four disjoint sets produced by one classification."""

    added: list[DiscoveredFile] = field(default_factory=list)
    modified: list[DiscoveredFile] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    removed: list[CatalogEntry] = field(default_factory=list)
    # Missing files we did NOT remove: inside a partial scan's coverage, or
    # under a directory the walker could not read
    skipped_removals: int = 0

    @property
    def to_extract(self) -> list[DiscoveredFile]:
        """Files whose tags must be (re-)read."""
        return self.added + self.modified

    @property
    def is_empty(self) -> bool:
        """True when nothing needs to be written."""
        return not (self.added or self.modified or self.removed)


class ChangeDetector:
    """Diffs walker output against one folder's catalog snapshot."""

    async def load_snapshot(
        self, session: AsyncSession, folder_id: str
    ) -> dict[str, CatalogEntry]:
        """Load every song of a folder in ONE query.

        Args:
            session: Database session
            folder_id: Folder whose songs to load

        Returns:
            Mapping of path_key to catalog entry
        """
        stmt = select(
            SongModel.id,
            SongModel.path,
            SongModel.path_key,
            SongModel.file_mtime_ns,
            SongModel.file_size,
        ).where(SongModel.folder_id == folder_id)
        result = await session.execute(stmt)

        snapshot = {
            row.path_key: CatalogEntry(
                song_id=row.id,
                path=row.path,
                mtime_ns=row.file_mtime_ns,
                size=row.file_size,
            )
            for row in result
        }
        logger.debug(f"Loaded catalog snapshot: {len(snapshot)} songs in folder {folder_id}")
        return snapshot

    def classify(
        self,
        discovered: Iterable[DiscoveredFile],
        snapshot: dict[str, CatalogEntry],
        *,
        full_scan: bool,
        coverage: Sequence[str] | None = None,
        unreadable: Sequence[str] = (),
    ) -> FileChangeSet:
        """Split discovered files into added/modified/unchanged/removed.

        Args:
            discovered: Walker output (consumed once)
            snapshot: Result of load_snapshot()
            full_scan: True if the walk covered the whole folder
            coverage: For partial scans, the walked sub-paths (only used to
                count the removals we are deliberately not acting on)
            unreadable: Paths the walker could not read. Catalog files under
                them are never removed, even by a full scan

        Returns:
            FileChangeSet with disjoint sets
        """
        changes = FileChangeSet()
        seen: set[str] = set()

        for file in discovered:
            key = path_key(file.path)
            if key in seen:
                continue  # same file reached twice (overlapping roots)
            seen.add(key)

            entry = snapshot.get(key)
            if entry is None:
                changes.added.append(file)
            elif entry.mtime_ns != file.mtime_ns or entry.size != file.size:
                changes.modified.append(file)
            else:
                changes.unchanged.append(file.path)

        missing = [entry for key, entry in snapshot.items() if key not in seen]
        if unreadable:
            # A directory we could not list says nothing about its files
            blocked = [path_key(p) for p in unreadable]
            kept = [e for e in missing if _is_covered(path_key(e.path), blocked)]
            if kept:
                changes.skipped_removals += len(kept)
                kept_ids = {e.song_id for e in kept}
                missing = [e for e in missing if e.song_id not in kept_ids]
        if full_scan:
            changes.removed = missing
        elif coverage:
            prefixes = [path_key(p) for p in coverage]
            changes.skipped_removals += sum(
                1 for entry in missing if _is_covered(path_key(entry.path), prefixes)
            )

        logger.info(
            f"Change detection: {len(changes.added)} added, "
            f"{len(changes.modified)} modified, {len(changes.unchanged)} unchanged, "
            f"{len(changes.removed)} removed"
        )
        if changes.skipped_removals:
            logger.info(
                f"{changes.skipped_removals} catalog files missing from disk were kept "
                "(partial scan or unreadable directory)"
            )
        return changes


def _is_covered(key: str, prefixes: list[str]) -> bool:
    return any(
        key == prefix or key.startswith(prefix.rstrip(os.sep) + os.sep)
        for prefix in prefixes
    )
