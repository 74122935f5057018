"""Tests for the Last.fm client (one attempt per call, tagged outcomes)."""

import re
from collections.abc import AsyncGenerator

import httpx
import pytest
from pytest_httpx import HTTPXMock

from soulscan.config.settings import HttpSettings, LastfmSettings
from soulscan.domain.ports import ArtistInfo
from soulscan.domain.value_objects.outcomes import (
    PermanentFailure,
    RetryableFailure,
    Success,
)
from soulscan.infrastructure.integrations.lastfm_client import (
    PLACEHOLDER_IMAGE_ID,
    LastfmClient,
    clean_biography,
    select_image_url,
)

LASTFM_URL = re.compile(r"https://ws\.audioscrobbler\.com/2\.0/.*")


@pytest.fixture
async def lastfm_client() -> AsyncGenerator[LastfmClient, None]:
    client = LastfmClient(LastfmSettings(api_key="test-key"), HttpSettings(), rate_limit_delay=3.0)
    yield client
    await client.close()


class TestHelpers:
    def test_clean_biography_cuts_read_more_link(self) -> None:
        raw = 'French duo. <a href="https://www.last.fm/music/Air">Read more on Last.fm</a>'
        assert clean_biography(raw) == "French duo."

    def test_clean_biography_empty(self) -> None:
        assert clean_biography("") is None
        assert clean_biography('<a href="https://www.last.fm/music/X">Read more</a>') is None

    def test_select_image_prefers_extralarge(self) -> None:
        images = [
            {"#text": "https://img/s.png", "size": "small"},
            {"#text": "https://img/xl.png", "size": "extralarge"},
            {"#text": "https://img/l.png", "size": "large"},
        ]
        assert select_image_url(images) == "https://img/xl.png"

    def test_select_image_skips_placeholder(self) -> None:
        images = [
            {"#text": "https://img/m.png", "size": "medium"},
            {"#text": f"https://img/{PLACEHOLDER_IMAGE_ID}.png", "size": "extralarge"},
        ]
        assert select_image_url(images) == "https://img/m.png"

    def test_select_image_nothing_usable(self) -> None:
        assert select_image_url([{"#text": "", "size": "large"}]) is None
        assert select_image_url(None) is None


class TestArtistInfo:
    async def test_found(self, lastfm_client: LastfmClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=LASTFM_URL,
            json={
                "artist": {
                    "name": "Air",
                    "bio": {"summary": 'Duo. <a href="https://www.last.fm/music/Air">Read more</a>'},
                    "image": [{"#text": "https://img/air.png", "size": "large"}],
                }
            },
        )

        outcome = await lastfm_client.fetch_artist_info("Air")

        assert outcome == Success(ArtistInfo(biography="Duo.", image_url="https://img/air.png"))
        request = httpx_mock.get_requests()[0]
        assert request.url.params["method"] == "artist.getinfo"
        assert request.url.params["artist"] == "Air"
        assert request.url.params["api_key"] == "test-key"

    async def test_not_found_error_code_is_conclusive(
        self, lastfm_client: LastfmClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            url=LASTFM_URL,
            json={"error": 6, "message": "The artist you supplied could not be found"},
        )

        assert await lastfm_client.fetch_artist_info("Nobody") == Success(None)

    async def test_rate_limit_is_retryable(
        self, lastfm_client: LastfmClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            url=LASTFM_URL, status_code=429, json={"error": 29, "message": "Rate limit exceeded"}
        )

        outcome = await lastfm_client.fetch_artist_info("Air")

        assert isinstance(outcome, RetryableFailure)
        assert outcome.delay_override == 3.0

    async def test_invalid_key_is_permanent(
        self, lastfm_client: LastfmClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=LASTFM_URL, status_code=403, json={"error": 10, "message": "Invalid API key"})

        assert isinstance(await lastfm_client.fetch_artist_info("Air"), PermanentFailure)

    async def test_server_error_without_json(
        self, lastfm_client: LastfmClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=LASTFM_URL, status_code=502, text="Bad Gateway")

        outcome = await lastfm_client.fetch_artist_info("Air")

        assert isinstance(outcome, RetryableFailure)
        assert outcome.status_code == 502

    async def test_timeout_is_retryable(
        self, lastfm_client: LastfmClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_exception(httpx.ReadTimeout("too slow"), url=LASTFM_URL)

        assert isinstance(await lastfm_client.fetch_artist_info("Air"), RetryableFailure)

    async def test_empty_artist_data_is_not_found(
        self, lastfm_client: LastfmClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=LASTFM_URL, json={"artist": {"name": "Air", "image": []}})

        assert await lastfm_client.fetch_artist_info("Air") == Success(None)

    async def test_missing_api_key_never_calls_out(self) -> None:
        client = LastfmClient(LastfmSettings(api_key=""), HttpSettings())

        outcome = await client.fetch_artist_info("Air")

        assert isinstance(outcome, PermanentFailure)
        assert "not configured" in outcome.reason


class TestAlbumArt:
    async def test_found(self, lastfm_client: LastfmClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=LASTFM_URL,
            json={"album": {"image": [{"#text": "https://img/moon.png", "size": "extralarge"}]}},
        )

        outcome = await lastfm_client.fetch_album_art_url("Air", "Moon Safari")

        assert outcome == Success("https://img/moon.png")
        params = httpx_mock.get_requests()[0].url.params
        assert params["method"] == "album.getinfo"
        assert params["album"] == "Moon Safari"
