"""Last.fm HTTP client implementation."""

import logging
from typing import Any

import httpx

from soulscan.config.settings import HttpSettings, LastfmSettings
from soulscan.domain.ports import ArtistInfo, IAlbumArtProvider, IArtistInfoProvider
from soulscan.domain.value_objects.outcomes import (
    AttemptOutcome,
    PermanentFailure,
    RetryableFailure,
    Success,
)
from soulscan.infrastructure.integrations.base_client import BaseProviderClient
from soulscan.infrastructure.integrations.retry import DEFAULT_RATE_LIMIT_DELAY

logger = logging.getLogger(__name__)

# Hey future me - Last.fm reports errors in the JSON body ({"error": 6,
# "message": "The artist you supplied could not be found"}), sometimes with
# HTTP 200, sometimes with 4xx. The body code is the truth.
ERROR_NOT_FOUND = 6
ERROR_INVALID_API_KEY = 10
ERROR_SUSPENDED_API_KEY = 26
RETRYABLE_ERROR_CODES = frozenset({8, 11, 16, 29})  # op failed, offline, temp, rate limit
ERROR_RATE_LIMITED = 29

# Link Last.fm appends to every bio summary ("Read more on Last.fm")
READ_MORE_MARKER = '<a href="https://www.last.fm'

# Grey star placeholder Last.fm returns for artists without a picture
PLACEHOLDER_IMAGE_ID = "2a96cbd8b46e442fc41c2b86b821562f"


def clean_biography(raw: str | None) -> str | None:
    """Cut the summary at the 'read more' link and trim it."""
    if not raw:
        return None
    index = raw.find(READ_MORE_MARKER)
    bio = (raw[:index] if index >= 0 else raw).strip()
    return bio or None


def select_image_url(images: list[dict[str, Any]] | None) -> str | None:
    """Pick the best image: extralarge, then large, then the last non-empty one."""
    if not images:
        return None
    candidates = [
        img
        for img in images
        if isinstance(img, dict)
        and img.get("#text")
        and PLACEHOLDER_IMAGE_ID not in img["#text"]
    ]
    for size in ("extralarge", "large"):
        for img in candidates:
            if img.get("size") == size:
                return str(img["#text"])
    return str(candidates[-1]["#text"]) if candidates else None


class LastfmClient(BaseProviderClient, IArtistInfoProvider, IAlbumArtProvider):
    """HTTP client for Last.fm artist/album metadata."""

    API_BASE_URL = "https://ws.audioscrobbler.com/2.0/"
    name = "lastfm"

    def __init__(
        self,
        settings: LastfmSettings,
        http_settings: HttpSettings,
        *,
        client: httpx.AsyncClient | None = None,
        rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
    ) -> None:
        """
        Initialize Last.fm client.

        Args:
            settings: Last.fm configuration settings
            http_settings: Timeout and User-Agent
            client: Optional pre-built httpx client
            rate_limit_delay: Backoff multiplier when rate limited
        """
        super().__init__(http_settings, client=client, rate_limit_delay=rate_limit_delay)
        self.settings = settings

    async def _make_request(self, method: str, params: dict[str, Any]) -> AttemptOutcome[Any]:
        """
        Make ONE request to the Last.fm API.

        Args:
            method: API method name
            params: Request parameters

        Returns:
            Success(data), Success(None) if not found, or a failure outcome
        """
        if not self.settings.is_configured():
            return PermanentFailure(reason="Last.fm API key not configured")

        request_params = {
            "method": method,
            "api_key": self.settings.api_key,
            "format": "json",
            "autocorrect": "1",
            **params,
        }
        sent = await self._get("", request_params)
        if not isinstance(sent, Success):
            return sent
        response = sent.value

        try:
            data = response.json()
        except ValueError:
            data = None

        if isinstance(data, dict) and "error" in data:
            return self._api_error(data, response.status_code)
        if response.is_error:
            return self._status_outcome(response)
        if not isinstance(data, dict):
            return PermanentFailure(reason="Last.fm returned a non-JSON body")
        return Success(data)

    def _api_error(
        self, data: dict[str, Any], status_code: int
    ) -> Success[None] | RetryableFailure | PermanentFailure:
        code = data.get("error")
        message = f"Last.fm error {code}: {data.get('message', 'unknown')}"
        if code == ERROR_NOT_FOUND:
            return Success(None)
        if code in (ERROR_INVALID_API_KEY, ERROR_SUSPENDED_API_KEY):
            logger.error(message)
            return PermanentFailure(reason=message, status_code=status_code)
        if code in RETRYABLE_ERROR_CODES:
            delay = self.rate_limit_delay if code == ERROR_RATE_LIMITED else None
            return RetryableFailure(reason=message, status_code=status_code, delay_override=delay)
        return PermanentFailure(reason=message, status_code=status_code)

    async def fetch_artist_info(self, artist_name: str) -> AttemptOutcome[ArtistInfo | None]:
        """
        Get artist biography and picture.

        Args:
            artist_name: Artist display name

        Returns:
            Success(ArtistInfo) or Success(None) if Last.fm has nothing useful
        """
        outcome = await self._make_request("artist.getinfo", {"artist": artist_name})
        if not isinstance(outcome, Success) or outcome.value is None:
            return outcome

        artist = outcome.value.get("artist") or {}
        bio = clean_biography((artist.get("bio") or {}).get("summary"))
        image_url = select_image_url(artist.get("image"))
        if bio is None and image_url is None:
            return Success(None)
        return Success(ArtistInfo(biography=bio, image_url=image_url))

    async def fetch_album_art_url(
        self, artist_name: str, album_title: str
    ) -> AttemptOutcome[str | None]:
        """
        Get album cover URL.

        Args:
            artist_name: Album artist
            album_title: Album title

        Returns:
            Success(url) or Success(None) if not found
        """
        outcome = await self._make_request(
            "album.getinfo", {"artist": artist_name, "album": album_title}
        )
        if not isinstance(outcome, Success) or outcome.value is None:
            return outcome

        album = outcome.value.get("album") or {}
        return Success(select_image_url(album.get("image")))
