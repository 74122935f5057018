"""External Enrichment Pipeline - fill in missing art, biographies and lyrics.

Hey future me - this is the LOW PRIORITY part of the system. It runs after a
scan (or when the API asks), never blocks a scan, and every piece of it is
best effort:

1. Artists missing a biography or picture -> artist providers in priority
   order (default Last.fm, then Deezer). Each provider is only asked for
   what is STILL missing, so "Last.fm had the bio, Deezer had the picture"
   ends up with both.
2. Albums missing a cover (and without embedded art on any of their songs)
   -> album providers, cover downloaded to albums/<album_id>.
3. Songs missing lyrics (none embedded, no sidecar .lrc) -> lyrics providers
   (LRCLIB, then NetEase), stored as lyrics/<song_id>.lrc.

Every provider call and every image download goes through the shared
RetryPolicy. Whatever happens (found, not found, failed) the entity's
checked timestamp is set, and entities checked within cooldown_hours are
skipped. Without that a library of 5k obscure artists would hammer Last.fm
on every scan.

Each entity is written in its own short transaction so a running scan only
ever waits for one tiny UPDATE.
"""

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import httpx
from sqlalchemy import exists, or_, select, update

from soulscan.config import Settings
from soulscan.domain.exceptions import ConfigurationError
from soulscan.domain.ports import (
    IAlbumArtProvider,
    IArtistInfoProvider,
    IImageFetcher,
    ILyricsProvider,
    LyricsQuery,
)
from soulscan.domain.value_objects import UNKNOWN_ARTIST, normalize_key
from soulscan.infrastructure.cache import (
    ALBUMS,
    ARTISTS,
    LYRICS,
    LYRICS_EXTENSION,
    LocalFileCache,
)
from soulscan.infrastructure.integrations import (
    DeezerClient,
    HttpImageFetcher,
    LastfmClient,
    LrclibClient,
    NeteaseClient,
    RetryPolicy,
)
from soulscan.infrastructure.persistence import Database
from soulscan.infrastructure.persistence.models import (
    AlbumModel,
    ArtistModel,
    SongModel,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentReport:
    """What one enrichment run did."""

    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    skipped_disabled: bool = False
    already_running: bool = False
    cancelled: bool = False
    artists_processed: int = 0
    artists_enriched: int = 0
    albums_processed: int = 0
    albums_enriched: int = 0
    songs_processed: int = 0
    lyrics_found: int = 0
    images_downloaded: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logs and the HTTP API."""
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "skipped_disabled": self.skipped_disabled,
            "already_running": self.already_running,
            "cancelled": self.cancelled,
            "artists_processed": self.artists_processed,
            "artists_enriched": self.artists_enriched,
            "albums_processed": self.albums_processed,
            "albums_enriched": self.albums_enriched,
            "songs_processed": self.songs_processed,
            "lyrics_found": self.lyrics_found,
            "images_downloaded": self.images_downloaded,
            "errors": self.errors,
        }


class EnrichmentService:
    """Fetches missing metadata from external providers."""

    def __init__(
        self,
        db: Database,
        cache: LocalFileCache,
        settings: Settings,
        *,
        artist_providers: Sequence[IArtistInfoProvider] = (),
        album_providers: Sequence[IAlbumArtProvider] = (),
        lyrics_providers: Sequence[ILyricsProvider] = (),
        image_fetcher: IImageFetcher | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize enrichment service.

        Args:
            db: Database (one short transaction per entity)
            cache: Local file cache for images and lyrics
            settings: Application settings (enrichment section)
            artist_providers: Artist providers in priority order
            album_providers: Album cover providers in priority order
            lyrics_providers: Lyrics providers in priority order
            image_fetcher: Downloads image URLs found by providers
            retry_policy: Shared retry policy for every outbound call
            sleep: Awaitable sleep for the per-entity request delay
        """
        self._db = db
        self._cache = cache
        self._settings = settings.enrichment
        self._artist_providers = list(artist_providers)
        self._album_providers = list(album_providers)
        self._lyrics_providers = list(lyrics_providers)
        self._image_fetcher = image_fetcher
        self._retry = retry_policy or RetryPolicy(
            max_attempts=self._settings.max_attempts,
            base_delay=self._settings.base_delay,
        )
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._closeables: list[Any] = []
        self.last_report: EnrichmentReport | None = None

    @classmethod
    def from_settings(
        cls,
        db: Database,
        cache: LocalFileCache,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> "EnrichmentService":
        """Build the service with real provider clients in configured order.

        Raises:
            ConfigurationError: A configured provider name is unknown
        """
        enrichment = settings.enrichment
        delay = enrichment.rate_limit_delay

        built: dict[str, Any] = {}

        def provider(name: str) -> Any:
            if name not in built:
                if name == "lastfm":
                    if not settings.lastfm.is_configured():
                        logger.info("Last.fm API key not set - skipping Last.fm provider")
                        built[name] = None
                    else:
                        built[name] = LastfmClient(
                            settings.lastfm, settings.http, client=client, rate_limit_delay=delay
                        )
                elif name == "deezer":
                    built[name] = DeezerClient(settings.http, client=client, rate_limit_delay=delay)
                elif name == "lrclib":
                    built[name] = LrclibClient(settings.http, client=client, rate_limit_delay=delay)
                elif name == "netease":
                    built[name] = NeteaseClient(settings.http, client=client, rate_limit_delay=delay)
                else:
                    raise ConfigurationError(f"Unknown enrichment provider: {name}")
            return built[name]

        def chain(names: list[str], port: type) -> list[Any]:
            providers = []
            for name in names:
                instance = provider(name.strip().lower())
                if instance is None:
                    continue
                if not isinstance(instance, port):
                    raise ConfigurationError(
                        f"Provider '{name}' cannot be used as {port.__name__}"
                    )
                providers.append(instance)
            return providers

        image_fetcher = HttpImageFetcher(settings.http, client=client, rate_limit_delay=delay)
        service = cls(
            db,
            cache,
            settings,
            artist_providers=chain(enrichment.artist_providers, IArtistInfoProvider),
            album_providers=chain(enrichment.album_providers, IAlbumArtProvider),
            lyrics_providers=chain(enrichment.lyrics_providers, ILyricsProvider),
            image_fetcher=image_fetcher,
        )
        service._closeables = [p for p in built.values() if p is not None] + [image_fetcher]
        return service

    @property
    def retry_policy(self) -> RetryPolicy:
        """The shared retry policy (its stats feed the health endpoint)."""
        return self._retry

    @property
    def is_running(self) -> bool:
        """Check if an enrichment run is in progress."""
        return self._lock.locked()

    async def close(self) -> None:
        """Close provider HTTP clients."""
        for closeable in self._closeables:
            await closeable.close()
        self._closeables = []

    # =========================================================================
    # Entry point
    # =========================================================================

    async def enrich_library(self, cancel_event: asyncio.Event | None = None) -> EnrichmentReport:
        """Run artists, albums and lyrics enrichment in that order.

        Args:
            cancel_event: Checked between entities (a scan's event or our own)

        Returns:
            EnrichmentReport (never raises for provider trouble)
        """
        report = EnrichmentReport()
        if not self._settings.enabled:
            report.skipped_disabled = True
            report.completed_at = utc_now()
            logger.debug("Enrichment disabled - nothing to do")
            return report

        if self._lock.locked():
            logger.info("Enrichment already running - skipping this request")
            report.already_running = True
            report.completed_at = utc_now()
            return report

        async with self._lock:
            logger.info("Starting library enrichment")
            for step in (self.enrich_artists, self.enrich_albums, self.enrich_lyrics):
                await step(report, cancel_event)
                if report.cancelled:
                    logger.info("Enrichment cancelled")
                    break

            report.completed_at = utc_now()
            self.last_report = report
            logger.info(
                f"Enrichment finished: {report.artists_enriched}/{report.artists_processed} artists, "
                f"{report.albums_enriched}/{report.albums_processed} albums, "
                f"{report.lyrics_found}/{report.songs_processed} lyrics, "
                f"{len(report.errors)} errors"
            )
            return report

    # =========================================================================
    # Artists
    # =========================================================================

    async def enrich_artists(
        self, report: EnrichmentReport, cancel_event: asyncio.Event | None = None
    ) -> None:
        """Fill missing artist biographies and pictures."""
        if not self._artist_providers:
            return

        cutoff = self._cooldown_cutoff()
        async with self._db.session_scope() as session:
            rows = (
                await session.execute(
                    select(
                        ArtistModel.id,
                        ArtistModel.name,
                        ArtistModel.biography,
                        ArtistModel.image_path,
                    )
                    .where(
                        or_(ArtistModel.biography.is_(None), ArtistModel.image_path.is_(None)),
                        or_(
                            ArtistModel.metadata_checked_at.is_(None),
                            ArtistModel.metadata_checked_at < cutoff,
                        ),
                        ArtistModel.name_key != normalize_key(UNKNOWN_ARTIST),
                    )
                    .order_by(ArtistModel.metadata_checked_at, ArtistModel.name_key)
                    .limit(self._settings.batch_limit)
                )
            ).all()

        for row in rows:
            if _cancelled(cancel_event):
                report.cancelled = True
                return
            report.artists_processed += 1
            try:
                if await self._enrich_artist(row.id, row.name, row.biography, row.image_path, report):
                    report.artists_enriched += 1
            except Exception as e:
                logger.error(f"Enrichment failed for artist '{row.name}': {e}", exc_info=True)
                report.errors.append({"type": "artist", "name": row.name, "error": str(e)})
            await self._sleep(self._settings.request_delay)

    async def _enrich_artist(
        self,
        artist_id: str,
        name: str,
        biography: str | None,
        image_path: str | None,
        report: EnrichmentReport,
    ) -> bool:
        new_bio: str | None = None
        new_image_url: str | None = None
        new_image_path: str | None = None

        # Hey future me - fields are saved independently. A provider that blows
        # up after an earlier one found the bio must not lose that bio, and the
        # checked timestamp must land either way or this artist heads every
        # batch forever (NULLs sort first).
        try:
            for provider in self._artist_providers:
                need_bio = biography is None and new_bio is None
                need_image = image_path is None and new_image_path is None
                if not need_bio and not need_image:
                    break

                info = await self._retry.execute(
                    functools.partial(provider.fetch_artist_info, name),
                    name=f"{provider.name} artist '{name}'",
                )
                if info is None:
                    continue
                if need_bio and info.biography:
                    new_bio = info.biography
                if need_image and info.image_url:
                    downloaded = await self._download_image(ARTISTS, artist_id, info.image_url)
                    if downloaded is not None:
                        new_image_url, new_image_path = info.image_url, downloaded
                        report.images_downloaded += 1
        except Exception:
            await self._save_artist(artist_id, new_bio, new_image_url, new_image_path)
            raise
        await self._save_artist(artist_id, new_bio, new_image_url, new_image_path)

        found = new_bio is not None or new_image_path is not None
        logger.debug(
            f"Artist '{name}': bio={'yes' if new_bio else 'no'}, "
            f"image={'yes' if new_image_path else 'no'}"
        )
        return found

    async def _save_artist(
        self,
        artist_id: str,
        biography: str | None,
        image_url: str | None,
        image_path: str | None,
    ) -> None:
        values: dict[str, Any] = {"metadata_checked_at": utc_now()}
        if biography is not None:
            values["biography"] = biography
        if image_path is not None:
            values["image_url"] = image_url
            values["image_path"] = image_path
        async with self._db.session_scope() as session:
            await session.execute(
                update(ArtistModel).where(ArtistModel.id == artist_id).values(**values)
            )

    # =========================================================================
    # Albums
    # =========================================================================

    async def enrich_albums(
        self, report: EnrichmentReport, cancel_event: asyncio.Event | None = None
    ) -> None:
        """Fetch covers for albums without a cover and without embedded art."""
        if not self._album_providers:
            return

        cutoff = self._cooldown_cutoff()
        async with self._db.session_scope() as session:
            rows = (
                await session.execute(
                    select(AlbumModel.id, AlbumModel.title, ArtistModel.name.label("artist_name"))
                    .join(ArtistModel, AlbumModel.artist_id == ArtistModel.id)
                    .where(
                        AlbumModel.cover_path.is_(None),
                        or_(
                            AlbumModel.metadata_checked_at.is_(None),
                            AlbumModel.metadata_checked_at < cutoff,
                        ),
                        ~exists().where(
                            SongModel.album_id == AlbumModel.id,
                            SongModel.cover_art_path.is_not(None),
                        ),
                    )
                    .order_by(AlbumModel.metadata_checked_at, AlbumModel.title_key)
                    .limit(self._settings.batch_limit)
                )
            ).all()

        for row in rows:
            if _cancelled(cancel_event):
                report.cancelled = True
                return
            report.albums_processed += 1
            try:
                if await self._enrich_album(row.id, row.title, row.artist_name):
                    report.albums_enriched += 1
                    report.images_downloaded += 1
            except Exception as e:
                logger.error(f"Enrichment failed for album '{row.title}': {e}", exc_info=True)
                report.errors.append({"type": "album", "name": row.title, "error": str(e)})
            await self._sleep(self._settings.request_delay)

    async def _enrich_album(self, album_id: str, title: str, artist_name: str) -> bool:
        cover_url: str | None = None
        cover_path: str | None = None

        try:
            for provider in self._album_providers:
                url = await self._retry.execute(
                    functools.partial(provider.fetch_album_art_url, artist_name, title),
                    name=f"{provider.name} album '{artist_name} - {title}'",
                )
                if not url:
                    continue
                cover_path = await self._download_image(ALBUMS, album_id, url)
                if cover_path is not None:
                    cover_url = url
                    break
        except Exception:
            await self._save_album(album_id, cover_url, cover_path)
            raise
        await self._save_album(album_id, cover_url, cover_path)
        return cover_path is not None

    async def _save_album(
        self, album_id: str, cover_url: str | None, cover_path: str | None
    ) -> None:
        values: dict[str, Any] = {"metadata_checked_at": utc_now()}
        if cover_path is not None:
            values["cover_url"] = cover_url
            values["cover_path"] = cover_path
        async with self._db.session_scope() as session:
            await session.execute(
                update(AlbumModel).where(AlbumModel.id == album_id).values(**values)
            )

    # =========================================================================
    # Lyrics
    # =========================================================================

    async def enrich_lyrics(
        self, report: EnrichmentReport, cancel_event: asyncio.Event | None = None
    ) -> None:
        """Fetch lyrics for songs without a cached lyrics file."""
        if not self._lyrics_providers:
            return

        cutoff = self._cooldown_cutoff()
        async with self._db.session_scope() as session:
            rows = (
                await session.execute(
                    select(
                        SongModel.id,
                        SongModel.title,
                        SongModel.duration_ms,
                        ArtistModel.name.label("artist_name"),
                        AlbumModel.title.label("album_title"),
                    )
                    .join(ArtistModel, SongModel.artist_id == ArtistModel.id)
                    .outerjoin(AlbumModel, SongModel.album_id == AlbumModel.id)
                    .where(
                        SongModel.lyrics_path.is_(None),
                        or_(
                            SongModel.lyrics_checked_at.is_(None),
                            SongModel.lyrics_checked_at < cutoff,
                        ),
                    )
                    .order_by(SongModel.lyrics_checked_at, SongModel.path_key)
                    .limit(self._settings.batch_limit)
                )
            ).all()

        for row in rows:
            if _cancelled(cancel_event):
                report.cancelled = True
                return
            report.songs_processed += 1
            query = LyricsQuery(
                title=row.title,
                artist=row.artist_name,
                album=row.album_title,
                duration_seconds=round(row.duration_ms / 1000) if row.duration_ms else None,
            )
            try:
                if await self._enrich_song_lyrics(row.id, query):
                    report.lyrics_found += 1
            except Exception as e:
                logger.error(f"Lyrics lookup failed for '{row.title}': {e}", exc_info=True)
                report.errors.append({"type": "lyrics", "name": row.title, "error": str(e)})
            await self._sleep(self._settings.request_delay)

    async def _enrich_song_lyrics(self, song_id: str, query: LyricsQuery) -> bool:
        lyrics_path: str | None = None
        for provider in self._lyrics_providers:
            text = await self._retry.execute(
                functools.partial(provider.fetch_lyrics, query),
                name=f"{provider.name} lyrics '{query.artist} - {query.title}'",
            )
            if text and text.strip():
                try:
                    lyrics_path = await self._cache.write_text(
                        LYRICS, song_id, text, LYRICS_EXTENSION
                    )
                except OSError as e:
                    logger.error(f"Could not cache lyrics for song {song_id}: {e}")
                break

        values: dict[str, Any] = {"lyrics_checked_at": utc_now()}
        if lyrics_path is not None:
            values["lyrics_path"] = lyrics_path

        async with self._db.session_scope() as session:
            await session.execute(update(SongModel).where(SongModel.id == song_id).values(**values))
        return lyrics_path is not None

    # =========================================================================
    # Helpers
    # =========================================================================

    def _cooldown_cutoff(self) -> datetime:
        return utc_now() - timedelta(hours=self._settings.cooldown_hours)

    async def _download_image(self, namespace: str, key: str, url: str) -> str | None:
        """Download url into the cache. Returns the relative cache path or None."""
        if self._image_fetcher is None:
            return None
        fetched = await self._retry.execute(
            functools.partial(self._image_fetcher.fetch_image, url),
            name=f"download {url}",
        )
        if fetched is None:
            return None
        data, extension = fetched
        try:
            return await self._cache.write_bytes(namespace, key, data, extension)
        except OSError as e:
            # Full disk or read-only cache: treat like "no image", keep going
            logger.error(f"Could not cache image {namespace}/{key}: {e}")
            return None


def _cancelled(cancel_event: asyncio.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()
