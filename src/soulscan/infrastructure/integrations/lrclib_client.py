"""LRCLIB lyrics client.

Hey future me - two-step lookup:

1. /api/get is LRCLIB's strict match (track + artist + album + duration).
   Only worth asking when we actually know artist and album, otherwise it
   can only 404.
2. /api/search is fuzzy. From its results we take synced lyrics whose
   duration is within +-30s of ours, preferring an album match, then the
   closest duration.

Synced (LRC) lyrics win. Plain lyrics are only returned when nothing synced
exists anywhere.
"""

import logging
from typing import Any

import httpx

from soulscan.config.settings import HttpSettings
from soulscan.domain.ports import ILyricsProvider, LyricsQuery
from soulscan.domain.value_objects import UNKNOWN_ALBUM, UNKNOWN_ARTIST
from soulscan.domain.value_objects.outcomes import AttemptOutcome, RetryableFailure, Success
from soulscan.infrastructure.integrations.base_client import BaseProviderClient
from soulscan.infrastructure.integrations.retry import DEFAULT_RATE_LIMIT_DELAY

logger = logging.getLogger(__name__)

DURATION_TOLERANCE_SECONDS = 30


def _known(value: str | None, placeholder: str) -> bool:
    return bool(value and value.strip() and value.strip().casefold() != placeholder.casefold())


def _duration(item: dict[str, Any]) -> float | None:
    try:
        return float(item["duration"])
    except (KeyError, TypeError, ValueError):
        return None


def _within_tolerance(item: dict[str, Any], target: int | None) -> bool:
    if target is None:
        return True
    duration = _duration(item)
    return duration is not None and abs(duration - target) <= DURATION_TOLERANCE_SECONDS


def pick_best_result(results: list[dict[str, Any]], query: LyricsQuery) -> dict[str, Any] | None:
    """Best synced search hit: within tolerance, album match first, then closest duration."""
    target = query.duration_seconds

    def sort_key(item: dict[str, Any]) -> tuple[int, float]:
        album = item.get("albumName")
        album_match = bool(
            query.album and album and str(album).casefold() == query.album.casefold()
        )
        duration = _duration(item)
        distance = abs(duration - target) if target is not None and duration is not None else 0.0
        return (0 if album_match else 1, distance)

    candidates = [
        item for item in results if item.get("syncedLyrics") and _within_tolerance(item, target)
    ]
    if not candidates:
        return None
    return min(candidates, key=sort_key)


class LrclibClient(BaseProviderClient, ILyricsProvider):
    """HTTP client for lrclib.net."""

    API_BASE_URL = "https://lrclib.net"
    name = "lrclib"

    def __init__(
        self,
        http_settings: HttpSettings,
        *,
        client: httpx.AsyncClient | None = None,
        rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
    ) -> None:
        """Initialize LRCLIB client."""
        super().__init__(http_settings, client=client, rate_limit_delay=rate_limit_delay)

    async def fetch_lyrics(self, query: LyricsQuery) -> AttemptOutcome[str | None]:
        """Look up lyrics for one song.

        Args:
            query: Title, artist, album and duration of the song

        Returns:
            Success(lrc_or_plain_text), Success(None) if nothing found, or a
            failure outcome for the RetryPolicy
        """
        if not query.title.strip():
            return Success(None)

        plain_fallback: str | None = None

        if (
            _known(query.artist, UNKNOWN_ARTIST)
            and _known(query.album, UNKNOWN_ALBUM)
            and query.duration_seconds is not None
        ):
            strict = await self._get_json(
                "/api/get",
                {
                    "track_name": query.title,
                    "artist_name": query.artist,
                    "album_name": query.album,
                    "duration": query.duration_seconds,
                },
            )
            if isinstance(strict, Success):
                record = strict.value if isinstance(strict.value, dict) else None
                if record is not None:
                    if record.get("instrumental"):
                        return Success(None)
                    if record.get("syncedLyrics"):
                        return Success(str(record["syncedLyrics"]))
                    plain_fallback = record.get("plainLyrics") or None
            elif isinstance(strict, RetryableFailure):
                # Server or network trouble - search would hit the same wall
                return strict
            else:
                logger.debug(f"LRCLIB strict lookup failed ({strict.reason}), trying search")

        params: dict[str, Any] = {"track_name": query.title}
        if _known(query.artist, UNKNOWN_ARTIST):
            params["artist_name"] = query.artist
        searched = await self._get_json("/api/search", params)
        if not isinstance(searched, Success):
            return searched

        results = [item for item in (searched.value or []) if isinstance(item, dict)]
        best = pick_best_result(results, query)
        if best is not None:
            logger.debug(
                f"LRCLIB search match for '{query.title}': {best.get('trackName')} "
                f"({best.get('albumName')})"
            )
            return Success(str(best["syncedLyrics"]))

        if plain_fallback:
            return Success(str(plain_fallback))
        for item in results:
            if (
                item.get("plainLyrics")
                and not item.get("instrumental")
                and _within_tolerance(item, query.duration_seconds)
            ):
                return Success(str(item["plainLyrics"]))
        return Success(None)
