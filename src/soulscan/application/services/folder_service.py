"""Library folder registration and removal."""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from soulscan.application.services.library_cleanup_service import (
    CleanupReport,
    LibraryCleanupService,
)
from soulscan.domain.exceptions import (
    ConfigurationError,
    EntityNotFoundException,
    FolderNotEmptyError,
)
from soulscan.domain.value_objects import path_key
from soulscan.infrastructure.cache import LocalFileCache
from soulscan.infrastructure.persistence import Database
from soulscan.infrastructure.persistence.models import FolderModel, SongModel

logger = logging.getLogger(__name__)


@dataclass
class FolderInfo:
    """A registered library folder with its song count."""

    id: str
    path: str
    name: str
    song_count: int
    created_at: datetime
    last_scanned_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the HTTP API."""
        return {
            "id": self.id,
            "path": self.path,
            "name": self.name,
            "song_count": self.song_count,
            "created_at": self.created_at.isoformat(),
            "last_scanned_at": self.last_scanned_at.isoformat() if self.last_scanned_at else None,
        }


def _overlaps(a: str, b: str) -> bool:
    """True if one path_key equals or contains the other."""
    a_dir = a.rstrip(os.sep) + os.sep
    b_dir = b.rstrip(os.sep) + os.sep
    return a == b or a.startswith(b_dir) or b.startswith(a_dir)


class FolderService:
    """Registers library roots and removes them (optionally with their songs)."""

    def __init__(self, db: Database, cache: LocalFileCache | None = None) -> None:
        self._db = db
        self._cache = cache

    async def add_folder(self, path: str | Path, name: str | None = None) -> FolderInfo:
        """Register a library root.

        Adding the same folder twice returns the existing registration.

        Args:
            path: Directory on disk
            name: Display name (default: directory name)

        Returns:
            The registered folder

        Raises:
            ConfigurationError: Path is not a directory, or it is nested
                inside / contains an already registered folder
        """
        absolute = os.path.abspath(os.fspath(path))
        if not os.path.isdir(absolute):
            raise ConfigurationError(f"Library folder does not exist: {absolute}")
        key = path_key(absolute)

        async with self._db.session_scope() as session:
            folders = (await session.execute(select(FolderModel))).scalars().all()
            for folder in folders:
                if folder.path_key == key:
                    return await self._info(session, folder)
                # Hey future me - nested roots would make one file belong to
                # two folders, and a full scan of the outer one would "remove"
                # the inner one's songs. Refuse them up front.
                if _overlaps(folder.path_key, key):
                    raise ConfigurationError(
                        f"{absolute} overlaps already registered folder {folder.path}"
                    )

            folder = FolderModel(
                path=absolute,
                path_key=key,
                name=name or os.path.basename(absolute.rstrip(os.sep)) or absolute,
            )
            session.add(folder)
            await session.flush()
            logger.info(f"Registered library folder {absolute}")
            return await self._info(session, folder)

    async def list_folders(self) -> list[FolderInfo]:
        """All registered folders, ordered by path."""
        async with self._db.session_scope() as session:
            counts = (
                select(SongModel.folder_id, func.count(SongModel.id).label("songs"))
                .group_by(SongModel.folder_id)
                .subquery()
            )
            rows = await session.execute(
                select(FolderModel, func.coalesce(counts.c.songs, 0))
                .outerjoin(counts, counts.c.folder_id == FolderModel.id)
                .order_by(FolderModel.path_key)
            )
            return [_to_info(folder, song_count) for folder, song_count in rows]

    async def get_folder(self, folder_id: str) -> FolderInfo:
        """Get one folder.

        Raises:
            EntityNotFoundException: Unknown folder id
        """
        async with self._db.session_scope() as session:
            folder = await session.get(FolderModel, folder_id)
            if folder is None:
                raise EntityNotFoundException("Folder", folder_id)
            return await self._info(session, folder)

    async def find_by_path(self, path: str | Path) -> FolderInfo | None:
        """Registered folder whose root is path, or that contains path."""
        key = path_key(os.fspath(path))
        for folder in await self.list_folders():
            folder_key = path_key(folder.path)
            if key == folder_key or key.startswith(folder_key.rstrip(os.sep) + os.sep):
                return folder
        return None

    async def remove_folder(self, folder_id: str, *, cascade: bool = False) -> CleanupReport:
        """Unregister a folder.

        Args:
            folder_id: Folder to remove
            cascade: Also delete its songs (and whatever becomes orphaned)

        Returns:
            CleanupReport of the cascading delete (empty if it had no songs)

        Raises:
            EntityNotFoundException: Unknown folder id
            FolderNotEmptyError: Folder owns songs and cascade is False
        """
        report = CleanupReport()
        async with self._db.session_scope() as session:
            folder = await session.get(FolderModel, folder_id)
            if folder is None:
                raise EntityNotFoundException("Folder", folder_id)
            folder_path = folder.path

            song_ids = list(
                (
                    await session.execute(
                        select(SongModel.id).where(SongModel.folder_id == folder_id)
                    )
                ).scalars()
            )
            if song_ids and not cascade:
                raise FolderNotEmptyError(folder_path, len(song_ids))

        if song_ids:
            async with self._db.session_scope() as session:
                report = await LibraryCleanupService(session, self._cache).run(song_ids)

        async with self._db.session_scope() as session:
            folder = await session.get(FolderModel, folder_id)
            if folder is not None:
                await session.delete(folder)

        logger.info(f"Removed library folder {folder_path} ({report.deleted_songs} songs deleted)")
        return report

    async def reset_library(self) -> CleanupReport:
        """Delete every song, album, artist and genre. Folders stay registered."""
        async with self._db.session_scope() as session:
            return await LibraryCleanupService(session, self._cache).reset_library()

    async def _info(self, session: AsyncSession, folder: FolderModel) -> FolderInfo:
        song_count = (
            await session.execute(
                select(func.count(SongModel.id)).where(SongModel.folder_id == folder.id)
            )
        ).scalar_one()
        return _to_info(folder, song_count)


def _to_info(folder: FolderModel, song_count: int) -> FolderInfo:
    return FolderInfo(
        id=folder.id,
        path=folder.path,
        name=folder.name,
        song_count=int(song_count),
        created_at=folder.created_at,
        last_scanned_at=folder.last_scanned_at,
    )
