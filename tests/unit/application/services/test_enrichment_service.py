"""Tests for EnrichmentService with fake providers."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from soulscan.application.services import EnrichmentService
from soulscan.config import EnrichmentSettings, Settings
from soulscan.config.settings import LastfmSettings
from soulscan.domain.exceptions import ConfigurationError
from soulscan.domain.ports import (
    ArtistInfo,
    IAlbumArtProvider,
    IArtistInfoProvider,
    IImageFetcher,
    ILyricsProvider,
    LyricsQuery,
)
from soulscan.domain.value_objects.outcomes import RetryableFailure, Success
from soulscan.infrastructure.cache import LocalFileCache
from soulscan.infrastructure.integrations import DeezerClient, RetryPolicy
from soulscan.infrastructure.persistence import (
    AlbumModel,
    ArtistModel,
    Database,
    FolderModel,
    SongModel,
)

# =============================================================================
# Fakes
# =============================================================================


class FakeArtistProvider(IArtistInfoProvider):
    def __init__(self, name: str, *outcomes) -> None:
        self.name = name
        self.outcomes = list(outcomes)
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()

    async def fetch_artist_info(self, artist_name: str):
        self.calls.append(artist_name)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        return self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]


class FakeAlbumProvider(IAlbumArtProvider):
    name = "fake-albums"

    def __init__(self, url: str | None) -> None:
        self.url = url
        self.calls: list[tuple[str, str]] = []

    async def fetch_album_art_url(self, artist_name: str, album_title: str):
        self.calls.append((artist_name, album_title))
        return Success(self.url)


class FakeLyricsProvider(ILyricsProvider):
    name = "fake-lyrics"

    def __init__(self, text: str | None) -> None:
        self.text = text
        self.queries: list[LyricsQuery] = []

    async def fetch_lyrics(self, query: LyricsQuery):
        self.queries.append(query)
        return Success(self.text)


class FakeImageFetcher(IImageFetcher):
    def __init__(self) -> None:
        self.urls: list[str] = []

    async def fetch_image(self, url: str):
        self.urls.append(url)
        return Success((b"image:" + url.encode(), ".jpg"))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def enabled_settings(settings: Settings) -> Settings:
    return settings.model_copy(
        update={"enrichment": EnrichmentSettings(enabled=True, request_delay=0)}
    )


@pytest.fixture
async def catalog(db: Database) -> None:
    """Air with two albums; Premiers Symptomes already has embedded art."""
    async with db.session_scope() as session:
        session.add(FolderModel(id="f1", path="/music", path_key="/music", name="music"))
        session.add(ArtistModel(id="air", name="Air", name_key="air"))
        session.add(AlbumModel(id="moon", title="Moon Safari", title_key="moon safari", artist_id="air"))
        session.add(
            AlbumModel(id="premiers", title="Premiers Symptomes", title_key="premiers symptomes", artist_id="air")
        )
        await session.flush()
        session.add(
            SongModel(
                id="s1", path="/music/s1.mp3", path_key="/music/s1.mp3", folder_id="f1",
                title="La femme d'argent", artist_id="air", album_id="moon",
                duration_ms=429_600, file_size=1, file_mtime_ns=1,
            )
        )
        session.add(
            SongModel(
                id="s2", path="/music/s2.mp3", path_key="/music/s2.mp3", folder_id="f1",
                title="Casanova 70", artist_id="air", album_id="premiers",
                file_size=1, file_mtime_ns=1, cover_art_path="covers/ab/abc.jpg",
                lyrics_path="lyrics/s2/s2.lrc",
            )
        )


def _service(db, cache, settings, **kwargs) -> EnrichmentService:
    kwargs.setdefault("retry_policy", RetryPolicy(max_attempts=2, base_delay=1.0, sleep=AsyncMock()))
    return EnrichmentService(db, cache, settings, sleep=AsyncMock(), **kwargs)


async def _artist(db: Database) -> ArtistModel:
    async with db.session_scope() as session:
        return (await session.execute(select(ArtistModel).where(ArtistModel.id == "air"))).scalar_one()


# =============================================================================
# Tests
# =============================================================================


async def test_providers_fill_in_what_the_previous_one_missed(
    db: Database, cache: LocalFileCache, enabled_settings: Settings, catalog: None
) -> None:
    first = FakeArtistProvider("first", Success(ArtistInfo(biography="French duo.")))
    second = FakeArtistProvider(
        "second", Success(ArtistInfo(biography="Ignored bio", image_url="https://img/air.jpg"))
    )
    fetcher = FakeImageFetcher()
    service = _service(db, cache, enabled_settings, artist_providers=[first, second], image_fetcher=fetcher)

    report = await service.enrich_library()

    assert report.artists_processed == 1
    assert report.artists_enriched == 1
    assert report.images_downloaded == 1
    assert fetcher.urls == ["https://img/air.jpg"]
    artist = await _artist(db)
    assert artist.biography == "French duo."
    assert artist.image_url == "https://img/air.jpg"
    assert cache.exists(artist.image_path)
    assert artist.metadata_checked_at is not None
    assert service.last_report is report


async def test_first_provider_complete_skips_the_rest(
    db: Database, cache: LocalFileCache, enabled_settings: Settings, catalog: None
) -> None:
    first = FakeArtistProvider(
        "first", Success(ArtistInfo(biography="Bio", image_url="https://img/a.jpg"))
    )
    second = FakeArtistProvider("second", Success(None))
    service = _service(
        db, cache, enabled_settings, artist_providers=[first, second], image_fetcher=FakeImageFetcher()
    )

    await service.enrich_library()

    assert second.calls == []


async def test_failed_lookup_still_sets_checked_and_respects_cooldown(
    db: Database, cache: LocalFileCache, enabled_settings: Settings, catalog: None
) -> None:
    provider = FakeArtistProvider("flaky", RetryableFailure("HTTP 503", 503))
    sleep = AsyncMock()
    policy = RetryPolicy(max_attempts=2, base_delay=1.0, sleep=sleep)
    service = _service(db, cache, enabled_settings, artist_providers=[provider], retry_policy=policy)

    report = await service.enrich_library()

    assert report.artists_processed == 1
    assert report.artists_enriched == 0
    assert report.errors == []
    assert len(provider.calls) == 2
    sleep.assert_awaited_once_with(1.0)
    artist = await _artist(db)
    assert artist.biography is None
    assert artist.metadata_checked_at is not None

    # Within the cooldown window: not asked again
    report = await service.enrich_library()
    assert report.artists_processed == 0
    assert len(provider.calls) == 2


async def test_full_disk_keeps_biography_and_checked_timestamp(
    db: Database, cache: LocalFileCache, enabled_settings: Settings, catalog: None, mocker
) -> None:
    provider = FakeArtistProvider(
        "p", Success(ArtistInfo(biography="French duo.", image_url="https://img/air.jpg"))
    )
    mocker.patch.object(
        cache, "write_bytes", AsyncMock(side_effect=OSError(28, "No space left on device"))
    )
    service = _service(
        db, cache, enabled_settings, artist_providers=[provider], image_fetcher=FakeImageFetcher()
    )

    report = await service.enrich_library()

    assert report.errors == []
    assert report.artists_enriched == 1
    assert report.images_downloaded == 0
    artist = await _artist(db)
    assert artist.biography == "French duo."
    assert artist.image_path is None
    assert artist.metadata_checked_at is not None


async def test_unexpected_error_still_saves_what_was_found(
    db: Database, cache: LocalFileCache, enabled_settings: Settings, catalog: None, mocker
) -> None:
    provider = FakeArtistProvider(
        "p", Success(ArtistInfo(biography="French duo.", image_url="https://img/air.jpg"))
    )
    mocker.patch.object(cache, "write_bytes", AsyncMock(side_effect=RuntimeError("cache bug")))
    service = _service(
        db, cache, enabled_settings, artist_providers=[provider], image_fetcher=FakeImageFetcher()
    )

    report = await service.enrich_library()

    assert report.errors == [{"type": "artist", "name": "Air", "error": "cache bug"}]
    artist = await _artist(db)
    assert artist.biography == "French duo."
    assert artist.metadata_checked_at is not None


async def test_lyrics_cache_failure_marks_song_checked(
    db: Database, cache: LocalFileCache, enabled_settings: Settings, catalog: None, mocker
) -> None:
    mocker.patch.object(cache, "write_text", AsyncMock(side_effect=OSError(30, "Read-only file system")))
    service = _service(db, cache, enabled_settings, lyrics_providers=[FakeLyricsProvider("la la")])

    report = await service.enrich_library()

    assert report.lyrics_found == 0
    assert report.errors == []
    async with db.session_scope() as session:
        song = await session.get(SongModel, "s1")
    assert song is not None
    assert song.lyrics_path is None
    assert song.lyrics_checked_at is not None


async def test_zero_cooldown_retries_on_every_run(
    db: Database, cache: LocalFileCache, settings: Settings, catalog: None
) -> None:
    settings = settings.model_copy(
        update={"enrichment": EnrichmentSettings(enabled=True, cooldown_hours=0, request_delay=0)}
    )
    provider = FakeArtistProvider("nothing", Success(None))
    service = _service(db, cache, settings, artist_providers=[provider])

    await service.enrich_library()
    await service.enrich_library()

    assert provider.calls == ["Air", "Air"]


async def test_disabled_does_nothing(
    db: Database, cache: LocalFileCache, settings: Settings, catalog: None
) -> None:
    provider = FakeArtistProvider("p", Success(None))
    service = _service(db, cache, settings, artist_providers=[provider])

    report = await service.enrich_library()

    assert report.skipped_disabled is True
    assert provider.calls == []


async def test_concurrent_run_reports_already_running(
    db: Database, cache: LocalFileCache, enabled_settings: Settings, catalog: None
) -> None:
    provider = FakeArtistProvider("slow", Success(None))
    provider.gate = asyncio.Event()
    service = _service(db, cache, enabled_settings, artist_providers=[provider])

    first = asyncio.create_task(service.enrich_library())
    await asyncio.wait_for(provider.started.wait(), timeout=5)
    assert service.is_running

    second = await service.enrich_library()
    assert second.already_running is True

    provider.gate.set()
    report = await first
    assert report.already_running is False
    assert not service.is_running


async def test_cancel_event_stops_before_next_entity(
    db: Database, cache: LocalFileCache, enabled_settings: Settings, catalog: None
) -> None:
    provider = FakeArtistProvider("p", Success(None))
    service = _service(db, cache, enabled_settings, artist_providers=[provider])
    cancel = asyncio.Event()
    cancel.set()

    report = await service.enrich_library(cancel)

    assert report.cancelled is True
    assert provider.calls == []


async def test_album_with_embedded_art_is_skipped(
    db: Database, cache: LocalFileCache, enabled_settings: Settings, catalog: None
) -> None:
    provider = FakeAlbumProvider("https://img/moon.jpg")
    service = _service(
        db, cache, enabled_settings, album_providers=[provider], image_fetcher=FakeImageFetcher()
    )

    report = await service.enrich_library()

    assert provider.calls == [("Air", "Moon Safari")]
    assert report.albums_enriched == 1
    async with db.session_scope() as session:
        moon = await session.get(AlbumModel, "moon")
        premiers = await session.get(AlbumModel, "premiers")
    assert moon is not None and premiers is not None
    assert moon.cover_url == "https://img/moon.jpg"
    assert cache.exists(moon.cover_path)
    assert premiers.cover_path is None
    assert premiers.metadata_checked_at is None


async def test_album_not_found_is_marked_checked(
    db: Database, cache: LocalFileCache, enabled_settings: Settings, catalog: None
) -> None:
    service = _service(
        db, cache, enabled_settings, album_providers=[FakeAlbumProvider(None)], image_fetcher=FakeImageFetcher()
    )

    report = await service.enrich_library()

    assert report.albums_processed == 1
    assert report.albums_enriched == 0
    async with db.session_scope() as session:
        moon = await session.get(AlbumModel, "moon")
    assert moon is not None
    assert moon.cover_path is None
    assert moon.metadata_checked_at is not None


async def test_lyrics_are_cached_as_lrc(
    db: Database, cache: LocalFileCache, enabled_settings: Settings, catalog: None
) -> None:
    provider = FakeLyricsProvider("[00:12.00]Elle est partie")
    service = _service(db, cache, enabled_settings, lyrics_providers=[provider])

    report = await service.enrich_library()

    # s2 already has lyrics
    assert report.songs_processed == 1
    assert report.lyrics_found == 1
    assert provider.queries == [
        LyricsQuery(title="La femme d'argent", artist="Air", album="Moon Safari", duration_seconds=430)
    ]
    async with db.session_scope() as session:
        song = await session.get(SongModel, "s1")
    assert song is not None
    assert song.lyrics_path is not None and song.lyrics_path.endswith(".lrc")
    assert cache.resolve(song.lyrics_path).read_text(encoding="utf-8") == "[00:12.00]Elle est partie"
    assert song.lyrics_checked_at is not None


async def test_second_lyrics_provider_fills_the_gap(
    db: Database, cache: LocalFileCache, enabled_settings: Settings, catalog: None
) -> None:
    first = FakeLyricsProvider(None)
    second = FakeLyricsProvider("[00:03.00]From the second source")
    service = _service(db, cache, enabled_settings, lyrics_providers=[first, second])

    report = await service.enrich_library()

    assert report.lyrics_found == 1
    assert len(first.queries) == len(second.queries) == 1
    async with db.session_scope() as session:
        song = await session.get(SongModel, "s1")
    assert song is not None and song.lyrics_path is not None
    assert cache.resolve(song.lyrics_path).read_text(encoding="utf-8") == "[00:03.00]From the second source"


class TestFromSettings:
    async def test_unknown_provider_is_a_configuration_error(
        self, db: Database, cache: LocalFileCache, settings: Settings
    ) -> None:
        settings = settings.model_copy(
            update={"enrichment": EnrichmentSettings(artist_providers=["spotify"])}
        )

        with pytest.raises(ConfigurationError, match="spotify"):
            EnrichmentService.from_settings(db, cache, settings)

    async def test_lastfm_without_key_is_left_out(
        self, db: Database, cache: LocalFileCache, settings: Settings
    ) -> None:
        settings = settings.model_copy(update={"lastfm": LastfmSettings(api_key="")})

        service = EnrichmentService.from_settings(db, cache, settings)
        try:
            assert [type(p) for p in service._artist_providers] == [DeezerClient]
            assert [type(p) for p in service._album_providers] == [DeezerClient]
            assert [p.name for p in service._lyrics_providers] == ["lrclib", "netease"]
        finally:
            await service.close()

    async def test_lyrics_provider_in_artist_chain_is_rejected(
        self, db: Database, cache: LocalFileCache, settings: Settings
    ) -> None:
        settings = settings.model_copy(
            update={"enrichment": EnrichmentSettings(artist_providers=["lrclib"])}
        )

        with pytest.raises(ConfigurationError, match="lrclib"):
            EnrichmentService.from_settings(db, cache, settings)
