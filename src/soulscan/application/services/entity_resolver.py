"""Map raw tag strings to Artist/Album/Genre rows without creating duplicates.

Hey future me - this is the dedup heart of the scanner. Rules:

1. Keys are normalize_key(name): trimmed, casefolded, whitespace collapsed.
   "The Beatles" and "the  beatles" are ONE artist. The first spelling we
   see becomes the display name.
2. The maps are seeded ONCE per scan from the catalog (one query per entity
   type), then every lookup is a dict hit. No per-file SELECTs.
3. One resolver per running scan, never shared. The scanner creates it and
   throws it away at scan end. Resolution happens in the single persistence
   task, so there's no locking here.
4. Inserts run in a SAVEPOINT. If another folder's scan inserted the same
   key after we seeded (UNIQUE violation on name_key), we roll back the
   savepoint and reuse their row instead of failing the batch.
5. Entities created since the last commit are "pending". If the batch rolls
   back, discard_pending() forgets them so the next batch doesn't point
   songs at rows that no longer exist.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from sqlalchemy import Select, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from soulscan.domain.entities import SongMetadata
from soulscan.domain.value_objects import (
    UNKNOWN_ARTIST,
    clean_display_name,
    normalize_key,
    split_artist_names,
)
from soulscan.infrastructure.persistence.models import (
    AlbumModel,
    ArtistModel,
    GenreModel,
    new_id,
)

logger = logging.getLogger(__name__)


@dataclass
class ResolvedEntities:
    """Catalog ids for one song's tags."""

    artist_id: str
    credit_ids: list[str] = field(default_factory=list)
    album_id: str | None = None
    genre_ids: list[str] = field(default_factory=list)


class EntityResolver:
    """Per-scan cache of normalized name -> entity id."""

    def __init__(self, session: AsyncSession, *, separators: Sequence[str]) -> None:
        """Initialize resolver.

        Args:
            session: The scan's database session
            separators: Multi-artist separators (required; empty = never split)
        """
        self._session = session
        self.separators = list(separators)

        self._artists: dict[str, str] = {}
        # Key: f"{title_key}|{artist_id}"
        self._albums: dict[str, str] = {}
        self._album_years: dict[str, int | None] = {}
        self._genres: dict[str, str] = {}

        self._pending_artists: list[str] = []
        self._pending_albums: list[str] = []
        self._pending_genres: list[str] = []
        self._pending_year_fills: list[str] = []

        self._loaded = False

    async def load(self) -> None:
        """Seed the maps from the catalog (once per scan)."""
        if self._loaded:
            return

        for row in await self._session.execute(select(ArtistModel.id, ArtistModel.name_key)):
            self._artists[row.name_key] = row.id

        album_stmt = select(
            AlbumModel.id, AlbumModel.title_key, AlbumModel.artist_id, AlbumModel.year
        )
        for row in await self._session.execute(album_stmt):
            self._albums[f"{row.title_key}|{row.artist_id}"] = row.id
            self._album_years[row.id] = row.year

        for row in await self._session.execute(select(GenreModel.id, GenreModel.name_key)):
            self._genres[row.name_key] = row.id

        self._loaded = True
        logger.debug(
            f"Resolver seeded: {len(self._artists)} artists, "
            f"{len(self._albums)} albums, {len(self._genres)} genres"
        )

    # =========================================================================
    # Public API
    # =========================================================================

    def split_artists(self, raw_values: Sequence[str]) -> tuple[str, list[str]]:
        """Split artist tag values into (primary, secondary credits).

        Args:
            raw_values: Raw artist tag values (each may hold several names)

        Returns:
            Primary artist name and the remaining names in tag order
        """
        names: list[str] = []
        seen: set[str] = set()
        for raw in raw_values:
            for name in split_artist_names(raw, self.separators):
                key = normalize_key(name)
                if key not in seen:
                    seen.add(key)
                    names.append(name)
        if not names:
            return UNKNOWN_ARTIST, []
        return names[0], names[1:]

    async def resolve(self, metadata: SongMetadata) -> ResolvedEntities:
        """Resolve every entity reference of one song.

        The album-artist tag wins over the track artist for the album link,
        so a compilation's tracks land on one album instead of twenty.
        """
        primary, secondaries = self.split_artists(metadata.artists)
        artist_id = await self.resolve_artist(primary)

        credit_ids: list[str] = []
        for name in secondaries:
            credit_id = await self.resolve_artist(name)
            if credit_id != artist_id and credit_id not in credit_ids:
                credit_ids.append(credit_id)

        album_id = None
        album_title = clean_display_name(metadata.album)
        if album_title:
            album_artist = clean_display_name(metadata.album_artist)
            album_artist_id = (
                await self.resolve_artist(album_artist) if album_artist else artist_id
            )
            album_id = await self.resolve_album(album_title, album_artist_id, metadata.year)

        genre_ids = await self.resolve_genres(metadata.genres)
        return ResolvedEntities(
            artist_id=artist_id,
            credit_ids=credit_ids,
            album_id=album_id,
            genre_ids=genre_ids,
        )

    async def resolve_artist(self, name: str) -> str:
        """Get or create an artist id for a display name."""
        display = clean_display_name(name) or UNKNOWN_ARTIST
        key = normalize_key(display)
        artist_id = self._artists.get(key)
        if artist_id is not None:
            return artist_id

        artist_id = await self._insert_or_fetch(
            ArtistModel(id=new_id(), name=display, name_key=key),
            select(ArtistModel.id).where(ArtistModel.name_key == key),
        )
        self._artists[key] = artist_id
        self._pending_artists.append(key)
        return artist_id

    async def resolve_album(self, title: str, artist_id: str, year: int | None = None) -> str:
        """Get or create an album id for (title, artist)."""
        display = clean_display_name(title)
        title_key = normalize_key(display)
        cache_key = f"{title_key}|{artist_id}"

        album_id = self._albums.get(cache_key)
        if album_id is not None:
            await self._fill_album_year(album_id, year)
            return album_id

        album_id = await self._insert_or_fetch(
            AlbumModel(
                id=new_id(), title=display, title_key=title_key, artist_id=artist_id, year=year
            ),
            select(AlbumModel.id).where(
                AlbumModel.title_key == title_key, AlbumModel.artist_id == artist_id
            ),
        )
        self._albums[cache_key] = album_id
        self._album_years.setdefault(album_id, year)
        self._pending_albums.append(cache_key)
        return album_id

    async def resolve_genres(self, names: Sequence[str]) -> list[str]:
        """Get or create genre ids (deduplicated, tag order kept)."""
        genre_ids: list[str] = []
        for name in names:
            display = clean_display_name(name)
            key = normalize_key(display)
            if not key:
                continue
            genre_id = self._genres.get(key)
            if genre_id is None:
                genre_id = await self._insert_or_fetch(
                    GenreModel(id=new_id(), name=display, name_key=key),
                    select(GenreModel.id).where(GenreModel.name_key == key),
                )
                self._genres[key] = genre_id
                self._pending_genres.append(key)
            if genre_id not in genre_ids:
                genre_ids.append(genre_id)
        return genre_ids

    # =========================================================================
    # Batch bookkeeping (called by BatchPersistenceCoordinator)
    # =========================================================================

    def commit_pending(self) -> None:
        """The batch committed - pending entities are now real."""
        self._pending_artists.clear()
        self._pending_albums.clear()
        self._pending_genres.clear()
        self._pending_year_fills.clear()

    def discard_pending(self) -> None:
        """The batch rolled back - forget entities created inside it."""
        for key in self._pending_artists:
            self._artists.pop(key, None)
        for key in self._pending_albums:
            album_id = self._albums.pop(key, None)
            if album_id is not None:
                self._album_years.pop(album_id, None)
        for key in self._pending_genres:
            self._genres.pop(key, None)
        for album_id in self._pending_year_fills:
            if album_id in self._album_years:
                self._album_years[album_id] = None

        dropped = (
            len(self._pending_artists) + len(self._pending_albums) + len(self._pending_genres)
        )
        if dropped:
            logger.debug(f"Discarded {dropped} entities from rolled back batch")
        self.commit_pending()

    # =========================================================================
    # Internals
    # =========================================================================

    async def _fill_album_year(self, album_id: str, year: int | None) -> None:
        # Existing album without a year takes the first track year we see
        if year is None or self._album_years.get(album_id) is not None:
            return
        await self._session.execute(
            update(AlbumModel)
            .where(AlbumModel.id == album_id, AlbumModel.year.is_(None))
            .values(year=year)
        )
        self._album_years[album_id] = year
        self._pending_year_fills.append(album_id)

    async def _insert_or_fetch(
        self, model: ArtistModel | AlbumModel | GenreModel, lookup: Select[tuple[str]]
    ) -> str:
        """Insert in a savepoint; on a unique clash reuse the existing row."""
        try:
            async with self._session.begin_nested():
                self._session.add(model)
        except IntegrityError:
            existing_id = (await self._session.execute(lookup)).scalar_one_or_none()
            if existing_id is None:
                # Not a key clash (e.g. FK violation) - let the batch fail
                raise
            logger.debug(
                f"{type(model).__name__} inserted concurrently by another scan, reusing {existing_id}"
            )
            return existing_id

        return model.id
