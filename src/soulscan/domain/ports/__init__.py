"""Ports (interfaces) the scan engine depends on.

Hey future me - services only talk to these interfaces. The mutagen tag
reader and the Last.fm / Deezer / LRCLIB clients in infrastructure/ implement
them, and tests swap in fakes without patching module internals.

Provider methods are ONE attempt each and return an AttemptOutcome - the
RetryPolicy in infrastructure/integrations/retry.py decides whether to call
them again.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from soulscan.domain.entities import ScanProgress, SongMetadata
from soulscan.domain.value_objects.outcomes import AttemptOutcome

# Progress sink: anything awaitable that takes a ScanProgress snapshot.
ProgressSink = Callable[[ScanProgress], Awaitable[None]]


class IMetadataExtractor(ABC):
    """Reads embedded tags from an audio file."""

    @abstractmethod
    def extract(self, path: str) -> SongMetadata:
        """Read tags from a file.

        Blocking call - the scanner runs it on a worker thread.

        Raises:
            ExtractionFailedError: If the file cannot be parsed
        """


# =============================================================================
# Enrichment providers
# =============================================================================


@dataclass(frozen=True, slots=True)
class ArtistInfo:
    """Artist data returned by a metadata provider (any field may be missing)."""

    biography: str | None = None
    image_url: str | None = None


@dataclass(frozen=True, slots=True)
class LyricsQuery:
    """Lookup key for lyrics providers."""

    title: str
    artist: str
    album: str | None = None
    duration_seconds: int | None = None


class IArtistInfoProvider(ABC):
    """Fetches artist biography and/or picture."""

    name: str

    @abstractmethod
    async def fetch_artist_info(self, artist_name: str) -> AttemptOutcome[ArtistInfo | None]:
        """One lookup attempt. Success(None) means "artist unknown here"."""


class IAlbumArtProvider(ABC):
    """Fetches album cover URLs."""

    name: str

    @abstractmethod
    async def fetch_album_art_url(
        self, artist_name: str, album_title: str
    ) -> AttemptOutcome[str | None]:
        """One lookup attempt. Success(None) means "no cover known"."""


class ILyricsProvider(ABC):
    """Fetches lyrics text (LRC preferred)."""

    name: str

    @abstractmethod
    async def fetch_lyrics(self, query: LyricsQuery) -> AttemptOutcome[str | None]:
        """One lookup attempt. Success(None) means "no lyrics known"."""


class IImageFetcher(ABC):
    """Downloads image bytes for a URL found by a provider."""

    @abstractmethod
    async def fetch_image(self, url: str) -> AttemptOutcome[tuple[bytes, str] | None]:
        """One download attempt returning (bytes, file extension)."""


__all__ = [
    "ArtistInfo",
    "IAlbumArtProvider",
    "IArtistInfoProvider",
    "IImageFetcher",
    "ILyricsProvider",
    "IMetadataExtractor",
    "LyricsQuery",
    "ProgressSink",
]
