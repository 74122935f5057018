"""Deezer public API client (artist pictures, album covers).

Hey future me - Deezer's public search needs NO authentication and is the
fallback when Last.fm has nothing (or no API key is configured). Rate limit
is 50 requests per 5 seconds; going over it returns HTTP 200 with
{"error": {"code": 4}} in the body, which we map to RetryableFailure.
"""

import logging
from typing import Any

import httpx

from soulscan.config.settings import HttpSettings
from soulscan.domain.ports import ArtistInfo, IAlbumArtProvider, IArtistInfoProvider
from soulscan.domain.value_objects import normalize_key
from soulscan.domain.value_objects.outcomes import (
    AttemptOutcome,
    PermanentFailure,
    RetryableFailure,
    Success,
)
from soulscan.infrastructure.integrations.base_client import BaseProviderClient
from soulscan.infrastructure.integrations.retry import DEFAULT_RATE_LIMIT_DELAY

logger = logging.getLogger(__name__)

ERROR_QUOTA = 4
ERROR_NO_DATA = 800

# Searching "Various Artists" by artist matches nothing useful
VARIOUS_ARTISTS = frozenset({"various artists", "various", "va", "v.a.", "compilation"})


def _best_match(items: list[dict[str, Any]], field: str, wanted: str) -> dict[str, Any]:
    """First item whose name matches by normalized key, else the top hit."""
    key = normalize_key(wanted)
    for item in items:
        if normalize_key(str(item.get(field) or "")) == key:
            return item
    return items[0]


def _is_placeholder(url: str) -> bool:
    # Artists without a picture get ".../images/artist//1000x1000-..." (empty hash)
    return "/images/artist//" in url or "/images/cover//" in url


def _first_image(item: dict[str, Any], prefix: str) -> str | None:
    for size in ("xl", "big", "medium", "small"):
        url = item.get(f"{prefix}_{size}")
        if url and not _is_placeholder(url):
            return str(url)
    return None


class DeezerClient(BaseProviderClient, IArtistInfoProvider, IAlbumArtProvider):
    """HTTP client for Deezer search."""

    API_BASE_URL = "https://api.deezer.com"
    name = "deezer"

    def __init__(
        self,
        http_settings: HttpSettings,
        *,
        client: httpx.AsyncClient | None = None,
        rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
    ) -> None:
        """Initialize Deezer client."""
        super().__init__(http_settings, client=client, rate_limit_delay=rate_limit_delay)

    async def _search(self, endpoint: str, query: str) -> AttemptOutcome[list[dict[str, Any]]]:
        outcome = await self._get_json(endpoint, {"q": query, "limit": 5})
        if not isinstance(outcome, Success):
            return outcome
        data = outcome.value
        if data is None:
            return Success([])
        if not isinstance(data, dict):
            return PermanentFailure(reason="Deezer returned an unexpected body")

        error = data.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = f"Deezer error {code}: {error}"
            if code == ERROR_QUOTA:
                return RetryableFailure(reason=message, delay_override=self.rate_limit_delay)
            if code == ERROR_NO_DATA:
                return Success([])
            return PermanentFailure(reason=message)

        items = data.get("data") or []
        return Success([item for item in items if isinstance(item, dict)])

    async def fetch_artist_info(self, artist_name: str) -> AttemptOutcome[ArtistInfo | None]:
        """Search an artist picture (Deezer has no biographies)."""
        outcome = await self._search("/search/artist", artist_name)
        if not isinstance(outcome, Success):
            return outcome
        if not outcome.value:
            return Success(None)

        image_url = _first_image(_best_match(outcome.value, "name", artist_name), "picture")
        return Success(ArtistInfo(image_url=image_url) if image_url else None)

    async def fetch_album_art_url(
        self, artist_name: str, album_title: str
    ) -> AttemptOutcome[str | None]:
        """Search an album cover (cover_xl = 1000x1000 preferred)."""
        if artist_name and artist_name.strip().lower() not in VARIOUS_ARTISTS:
            query = f'artist:"{artist_name}" album:"{album_title}"'
        else:
            query = f'album:"{album_title}"'

        outcome = await self._search("/search/album", query)
        if not isinstance(outcome, Success):
            return outcome
        if not outcome.value:
            return Success(None)
        return Success(_first_image(_best_match(outcome.value, "title", album_title), "cover"))
