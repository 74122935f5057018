"""Cleanup pass: removed songs and orphaned artists/albums/genres.

Hey future me - this service handles DESTRUCTIVE operations!

It runs strictly AFTER every persistence batch of a scan has committed, in
its OWN transaction. If cleanup crashes halfway, the rollback only undoes
the cleanup - the songs the scan just added are already safe.

Reference counting is done by the database, not in Python:
- Album is orphaned when no song points at it
- Artist is orphaned when no song (primary OR credit) and no album points
  at it
- Genre is orphaned when no song_genres row points at it
Order matters: albums first, because deleting an album can orphan its
artist.

Cached files (cover art, lyrics, artist images) are deleted AFTER the
commit. A failed unlink just leaves a stray file; deleting files first and
then rolling back would leave rows pointing at files that are gone.
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from sqlalchemy import delete, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from soulscan.domain.exceptions import CleanupError
from soulscan.infrastructure.cache import LocalFileCache
from soulscan.infrastructure.persistence.models import (
    AlbumModel,
    ArtistModel,
    GenreModel,
    SongModel,
    song_artists,
    song_genres,
)

logger = logging.getLogger(__name__)

DELETE_CHUNK_SIZE = 500


@dataclass
class CleanupReport:
    """Counts of what a cleanup pass removed."""

    deleted_songs: int = 0
    deleted_albums: int = 0
    deleted_artists: int = 0
    deleted_genres: int = 0
    deleted_files: int = 0
    stale_files: list[str] = field(default_factory=list, repr=False)

    def to_dict(self) -> dict[str, int]:
        """Serialize counts for the HTTP API."""
        return {
            "deleted_songs": self.deleted_songs,
            "deleted_albums": self.deleted_albums,
            "deleted_artists": self.deleted_artists,
            "deleted_genres": self.deleted_genres,
            "deleted_files": self.deleted_files,
        }


class LibraryCleanupService:
    """Deletes removed songs and zero-reference entities."""

    def __init__(self, session: AsyncSession, cache: LocalFileCache | None = None) -> None:
        """Initialize cleanup service.

        Args:
            session: Database session (this service commits it)
            cache: File cache whose entries belong to deleted rows
        """
        self._session = session
        self._cache = cache

    async def run(self, removed_song_ids: Sequence[str] = ()) -> CleanupReport:
        """Delete removed songs, then every orphaned album/artist/genre.

        Args:
            removed_song_ids: Songs confirmed missing by a FULL scan

        Returns:
            CleanupReport with counts

        Raises:
            CleanupError: Cleanup failed; its transaction was rolled back
        """
        report = CleanupReport()
        try:
            await self._delete_songs(list(removed_song_ids), report)
            await self._delete_orphans(report)
            await self._session.commit()
        except Exception as e:
            await self._session.rollback()
            logger.error(f"Cleanup failed and was rolled back: {e}", exc_info=True)
            raise CleanupError(f"Cleanup failed: {e}") from e

        if report.deleted_songs or report.deleted_albums or report.deleted_artists:
            logger.info(
                f"Cleanup complete: {report.deleted_songs} songs, "
                f"{report.deleted_albums} albums, {report.deleted_artists} artists, "
                f"{report.deleted_genres} genres removed"
            )

        await self._delete_stale_files(report)
        return report

    async def reset_library(self) -> CleanupReport:
        """Delete every song and every entity (explicit cascading reset).

        Hey future me - MANUAL reset only! Folders are kept so the next scan
        rebuilds everything from disk.
        """
        song_ids = list((await self._session.execute(select(SongModel.id))).scalars())
        logger.warning(f"Library reset requested: deleting {len(song_ids)} songs")
        return await self.run(song_ids)

    # =========================================================================
    # Steps
    # =========================================================================

    async def _delete_songs(self, song_ids: list[str], report: CleanupReport) -> None:
        for start in range(0, len(song_ids), DELETE_CHUNK_SIZE):
            chunk = song_ids[start : start + DELETE_CHUNK_SIZE]

            paths = await self._session.execute(
                select(SongModel.cover_art_path, SongModel.lyrics_path).where(
                    SongModel.id.in_(chunk)
                )
            )
            for cover_path, lyrics_path in paths:
                # Cover art is content-addressed and may be shared - checked below
                if cover_path:
                    report.stale_files.append(cover_path)
                if lyrics_path:
                    report.stale_files.append(lyrics_path)

            await self._session.execute(delete(song_genres).where(song_genres.c.song_id.in_(chunk)))
            await self._session.execute(delete(song_artists).where(song_artists.c.song_id.in_(chunk)))
            result = await self._session.execute(delete(SongModel).where(SongModel.id.in_(chunk)))
            report.deleted_songs += result.rowcount or 0

            # Yield so API requests aren't starved during a huge cleanup
            await asyncio.sleep(0)

    async def _delete_orphans(self, report: CleanupReport) -> None:
        orphan_albums = (
            await self._session.execute(
                select(AlbumModel.id, AlbumModel.cover_path).where(
                    ~exists().where(SongModel.album_id == AlbumModel.id)
                )
            )
        ).all()
        if orphan_albums:
            album_ids = [row.id for row in orphan_albums]
            await self._session.execute(delete(AlbumModel).where(AlbumModel.id.in_(album_ids)))
            report.deleted_albums = len(album_ids)
            report.stale_files.extend(row.cover_path for row in orphan_albums if row.cover_path)

        orphan_artists = (
            await self._session.execute(
                select(ArtistModel.id, ArtistModel.image_path).where(
                    ~exists().where(SongModel.artist_id == ArtistModel.id),
                    ~exists().where(song_artists.c.artist_id == ArtistModel.id),
                    ~exists().where(AlbumModel.artist_id == ArtistModel.id),
                )
            )
        ).all()
        if orphan_artists:
            artist_ids = [row.id for row in orphan_artists]
            await self._session.execute(delete(ArtistModel).where(ArtistModel.id.in_(artist_ids)))
            report.deleted_artists = len(artist_ids)
            report.stale_files.extend(row.image_path for row in orphan_artists if row.image_path)

        result = await self._session.execute(
            delete(GenreModel).where(~exists().where(song_genres.c.genre_id == GenreModel.id))
        )
        report.deleted_genres = result.rowcount or 0

    async def _delete_stale_files(self, report: CleanupReport) -> None:
        if self._cache is None or not report.stale_files:
            return

        # Shared cover art and lyrics: keep files that surviving songs still point at
        candidates = sorted(set(report.stale_files))
        rows = (
            await self._session.execute(
                select(SongModel.cover_art_path, SongModel.lyrics_path).where(
                    or_(
                        SongModel.cover_art_path.in_(candidates),
                        SongModel.lyrics_path.in_(candidates),
                    )
                )
            )
        ).all()
        still_used = {path for row in rows for path in row if path}
        # End the read transaction the query above opened
        await self._session.commit()

        to_delete = [path for path in candidates if path not in still_used]
        report.deleted_files = await self._cache.delete_many(to_delete)
        if report.deleted_files:
            logger.debug(f"Deleted {report.deleted_files} cached files")
