"""Batch persistence of song upserts.

Hey future me - this is THE ONLY place a scan writes songs. Why batches:

SQLite locks the whole database during a write transaction. One transaction
for 50k songs would block enrichment and the API for minutes; one
transaction per song makes a scan take forever. A few hundred songs per
commit is the sweet spot (default 250, SCAN_BATCH_SIZE).

Guarantees:
- Each batch is ONE transaction: all of its songs, their new
  artists/albums/genres and their genre/credit links commit together or
  not at all.
- Batches commit in submission order.
- A failed batch rolls back ONLY itself. Earlier batches stay committed.
  By default we log it, remember it and carry on with the next batch.
- Cancellation is checked before every commit. A cancelled scan never
  commits the batch it was building.
- close() always flushes the final partial batch, even if it's empty.
"""

import logging
from asyncio import Event
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from soulscan.domain.entities import (
    BatchFailure,
    DiscoveredFile,
    ScanPhase,
    ScanProgress,
    SongMetadata,
)
from soulscan.domain.exceptions import PersistenceBatchError, ScanCancelledError
from soulscan.domain.ports import ProgressSink
from soulscan.domain.value_objects import path_key
from soulscan.infrastructure.persistence.models import (
    SongModel,
    new_id,
    song_artists,
    song_genres,
)

if TYPE_CHECKING:
    from soulscan.application.services.entity_resolver import (
        EntityResolver,
        ResolvedEntities,
    )

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 250


@dataclass
class SongUpsert:
    """One extracted file waiting to be written."""

    file: DiscoveredFile
    metadata: SongMetadata
    folder_id: str
    cover_art_path: str | None = None
    lyrics_path: str | None = None
    # Set for Modified files: the row to update in place
    existing_song_id: str | None = None


@dataclass
class BatchReport:
    """What the coordinator did over a whole scan."""

    batches_committed: int = 0
    songs_added: int = 0
    songs_updated: int = 0
    failures: list[BatchFailure] = field(default_factory=list)

    @property
    def songs_failed(self) -> int:
        """Songs lost to rolled back batches."""
        return sum(len(f.paths) for f in self.failures)


class BatchPersistenceCoordinator:
    """Buffers SongUpserts and commits them in bounded transactions."""

    def __init__(
        self,
        session: AsyncSession,
        resolver: "EntityResolver",
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        total: int = 0,
        progress: ProgressSink | None = None,
        cancel_event: Event | None = None,
        continue_on_failure: bool = True,
    ) -> None:
        """Initialize coordinator.

        Args:
            session: The scan's session (this class owns its transactions)
            resolver: The scan's EntityResolver
            batch_size: Songs per transaction
            total: Expected number of upserts (for progress reports)
            progress: Sink receiving a report after every batch
            cancel_event: Cooperative cancellation flag
            continue_on_failure: False = raise PersistenceBatchError on the
                first failed batch so later batches are never attempted
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._session = session
        self._resolver = resolver
        self.batch_size = batch_size
        self.total = total
        self._progress = progress
        self._cancel_event = cancel_event
        self.continue_on_failure = continue_on_failure

        self._buffer: list[SongUpsert] = []
        self._batch_number = 0
        self._processed = 0
        self.report = BatchReport()

    @property
    def pending(self) -> int:
        """Upserts buffered but not yet committed."""
        return len(self._buffer)

    async def submit(self, upsert: SongUpsert) -> None:
        """Buffer one upsert; commits when the batch is full."""
        self._buffer.append(upsert)
        if len(self._buffer) >= self.batch_size:
            await self.flush()

    async def close(self) -> BatchReport:
        """Flush the final (possibly empty) batch and return the report."""
        await self.flush()
        logger.info(
            f"Persistence finished: {self.report.batches_committed} batches committed, "
            f"{self.report.songs_added} added, {self.report.songs_updated} updated, "
            f"{len(self.report.failures)} batches failed"
        )
        return self.report

    async def flush(self) -> None:
        """Commit the buffered upserts as one transaction.

        Raises:
            ScanCancelledError: Cancellation requested (buffer discarded)
            PersistenceBatchError: Batch failed and continue_on_failure is False
        """
        if self._cancel_event is not None and self._cancel_event.is_set():
            dropped = len(self._buffer)
            self._buffer.clear()
            await self._session.rollback()
            self._resolver.discard_pending()
            raise ScanCancelledError(
                f"Scan cancelled after {self.report.batches_committed} committed batches "
                f"({dropped} buffered files not written)"
            )

        batch, self._buffer = self._buffer, []
        if not batch:
            # Nothing buffered - still end the transaction cleanly
            await self._session.commit()
            return

        self._batch_number += 1
        number = self._batch_number
        try:
            added, updated = await self._write_batch(batch)
            await self._session.commit()
        except Exception as e:
            # Broad on purpose: ANY error inside the batch must roll back the
            # whole batch and nothing else.
            await self._session.rollback()
            self._resolver.discard_pending()
            failure = BatchFailure(
                batch_number=number,
                paths=tuple(u.file.path for u in batch),
                reason=f"{e.__class__.__name__}: {e}",
            )
            self.report.failures.append(failure)
            self._processed += len(batch)
            logger.error(
                f"Batch {number} rolled back ({len(batch)} files): {failure.reason}",
                exc_info=True,
            )
            await self._emit(f"Batch {number} failed")
            if not self.continue_on_failure:
                raise PersistenceBatchError(number, failure.reason) from e
            return

        self._resolver.commit_pending()
        # Committed rows are never touched again by this scan - keep the
        # identity map from growing with the library
        self._session.expunge_all()
        self.report.batches_committed += 1
        self.report.songs_added += added
        self.report.songs_updated += updated
        self._processed += len(batch)
        logger.debug(f"Batch {number} committed: {added} added, {updated} updated")
        await self._emit(f"Committed batch {number}")

    # =========================================================================
    # Internals
    # =========================================================================

    async def _write_batch(self, batch: list[SongUpsert]) -> tuple[int, int]:
        """Stage one batch in the session (no commit). Returns (added, updated)."""
        # Resolve first: the resolver's SAVEPOINTs must not flush half-built songs
        resolved = [await self._resolver.resolve(u.metadata) for u in batch]

        existing_ids = [u.existing_song_id for u in batch if u.existing_song_id]
        existing: dict[str, SongModel] = {}
        if existing_ids:
            result = await self._session.execute(
                select(SongModel).where(SongModel.id.in_(existing_ids))
            )
            existing = {song.id: song for song in result.scalars()}

        added = updated = 0
        written: list[tuple[SongModel, "ResolvedEntities"]] = []
        for upsert, entities in zip(batch, resolved, strict=True):
            song = existing.get(upsert.existing_song_id) if upsert.existing_song_id else None
            if song is None:
                song = SongModel(
                    id=new_id(),
                    path=upsert.file.path,
                    path_key=path_key(upsert.file.path),
                    folder_id=upsert.folder_id,
                )
                self._session.add(song)
                added += 1
            else:
                updated += 1
            _apply_metadata(song, upsert, entities)
            written.append((song, entities))

        await self._session.flush()

        song_ids = [song.id for song, _ in written]
        await self._session.execute(delete(song_genres).where(song_genres.c.song_id.in_(song_ids)))
        await self._session.execute(delete(song_artists).where(song_artists.c.song_id.in_(song_ids)))

        genre_rows = [
            {"song_id": song.id, "genre_id": genre_id}
            for song, entities in written
            for genre_id in entities.genre_ids
        ]
        if genre_rows:
            await self._session.execute(insert(song_genres), genre_rows)

        credit_rows = [
            {"song_id": song.id, "artist_id": artist_id, "position": position}
            for song, entities in written
            for position, artist_id in enumerate(entities.credit_ids, start=1)
        ]
        if credit_rows:
            await self._session.execute(insert(song_artists), credit_rows)

        return added, updated

    async def _emit(self, message: str) -> None:
        if self._progress is None:
            return
        await self._progress(
            ScanProgress(
                phase=ScanPhase.PERSISTING,
                current=self._processed,
                total=self.total,
                message=message,
            )
        )


def _apply_metadata(song: SongModel, upsert: SongUpsert, entities: "ResolvedEntities") -> None:
    """Copy tag + stat data onto a song row (play stats are left alone)."""
    meta = upsert.metadata
    song.title = meta.title
    song.artist_id = entities.artist_id
    song.album_id = entities.album_id
    song.duration_ms = meta.duration_ms
    song.track_number = meta.track_number
    song.track_count = meta.track_count
    song.disc_number = meta.disc_number
    song.disc_count = meta.disc_count
    song.year = meta.year
    song.bitrate = meta.bitrate
    song.sample_rate = meta.sample_rate
    song.channels = meta.channels
    song.replaygain_track_gain = meta.replaygain_track_gain
    song.replaygain_track_peak = meta.replaygain_track_peak
    song.file_size = upsert.file.size
    song.file_mtime_ns = upsert.file.mtime_ns
    song.cover_art_path = upsert.cover_art_path
    # Lyrics found by enrichment stay when the file carries none of its own
    if upsert.lyrics_path is not None:
        song.lyrics_path = upsert.lyrics_path
