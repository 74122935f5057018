"""NetEase Cloud Music lyrics client.

Hey future me - these are the unofficial endpoints open-source players use,
not a documented API. Search for "<title> <artist>" and take the first song,
then fetch its LRC. Anything without [mm:ss timestamps is thrown away (NetEase
fills lrc.lyric with "pure music" notices for instrumentals).

NetEase answers 403/429 when it decides we're a bot. Retrying only digs the
hole deeper, so the client switches itself off until the process restarts.
"""

import logging
import re
from typing import Any

import httpx

from soulscan.config.settings import HttpSettings
from soulscan.domain.ports import ILyricsProvider, LyricsQuery
from soulscan.domain.value_objects import UNKNOWN_ARTIST
from soulscan.domain.value_objects.outcomes import AttemptOutcome, PermanentFailure, Success
from soulscan.infrastructure.integrations.base_client import BaseProviderClient
from soulscan.infrastructure.integrations.retry import DEFAULT_RATE_LIMIT_DELAY

logger = logging.getLogger(__name__)

BLOCKED_STATUS_CODES = frozenset({403, 429})
SONG_SEARCH_TYPE = 1

_LRC_TIMESTAMP = re.compile(r"\[\d{2}:\d{2}")


def first_song_id(payload: Any) -> int | None:
    """Pull result.songs[0].id out of a search response."""
    if not isinstance(payload, dict):
        return None
    result = payload.get("result")
    songs = result.get("songs") if isinstance(result, dict) else None
    if not songs or not isinstance(songs[0], dict):
        return None
    song_id = songs[0].get("id")
    return song_id if isinstance(song_id, int) else None


class NeteaseClient(BaseProviderClient, ILyricsProvider):
    """HTTP client for music.163.com lyrics."""

    API_BASE_URL = "https://music.163.com"
    REQUEST_HEADERS = {"Referer": "https://music.163.com/"}
    name = "netease"

    def __init__(
        self,
        http_settings: HttpSettings,
        *,
        client: httpx.AsyncClient | None = None,
        rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
    ) -> None:
        """Initialize NetEase client."""
        super().__init__(http_settings, client=client, rate_limit_delay=rate_limit_delay)
        self.disabled = False

    async def fetch_lyrics(self, query: LyricsQuery) -> AttemptOutcome[str | None]:
        """Look up synced lyrics for one song.

        Returns:
            Success(lrc), Success(None) if nothing found, or a failure outcome
        """
        if not query.title.strip():
            return Success(None)
        if self.disabled:
            return PermanentFailure(reason="netease: disabled for this session")

        terms = query.title.strip()
        if query.artist and query.artist.strip().casefold() != UNKNOWN_ARTIST.casefold():
            terms = f"{terms} {query.artist.strip()}"

        searched = await self._call(
            "POST",
            "/api/search/get",
            data={"s": terms, "type": SONG_SEARCH_TYPE, "limit": 1, "offset": 0},
        )
        if not isinstance(searched, Success):
            return searched
        song_id = first_song_id(searched.value)
        if song_id is None:
            logger.debug(f"No NetEase match for '{terms}'")
            return Success(None)

        fetched = await self._call("GET", "/api/song/lyric", params={"id": song_id, "lv": 1})
        if not isinstance(fetched, Success):
            return fetched
        payload = fetched.value if isinstance(fetched.value, dict) else {}
        lrc = payload.get("lrc")
        lyric = lrc.get("lyric") if isinstance(lrc, dict) else None
        if not isinstance(lyric, str) or not _LRC_TIMESTAMP.search(lyric):
            return Success(None)
        logger.debug(f"NetEase lyrics for '{query.title}' (song {song_id})")
        return Success(lyric)

    async def _call(self, method: str, url: str, **kwargs: Any) -> AttemptOutcome[Any]:
        sent = await self._send(method, url, **kwargs)
        if isinstance(sent, Success) and sent.value.status_code in BLOCKED_STATUS_CODES:
            self.disabled = True
            logger.warning(
                f"NetEase answered {sent.value.status_code}, disabling it for this session"
            )
            return PermanentFailure(
                reason="netease: blocked", status_code=sent.value.status_code
            )
        return self._decode_json(sent)
