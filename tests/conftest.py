"""Shared fixtures.

Hey future me - scanner tests don't need real audio. The fake extractor
reads tiny text files with one `key=value` tag per line:

    title=Song A
    artist=Artist X          (repeatable)
    album=Album 1
    genre=Rock               (repeatable)

Special keys: `fail=<reason>` makes extraction fail for that file,
`no_title=1` produces a song without a title (its batch then fails the NOT
NULL constraint), `cover=<text>` yields embedded cover art bytes. Changing a
file's content changes its size, so the change detector sees it as modified.
"""

import threading
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest

from soulscan.config import (
    DatabaseSettings,
    EnrichmentSettings,
    ScanSettings,
    Settings,
    StorageSettings,
)
from soulscan.domain.entities import SongMetadata
from soulscan.domain.exceptions import ExtractionFailedError
from soulscan.domain.ports import IMetadataExtractor
from soulscan.infrastructure.cache import LocalFileCache
from soulscan.infrastructure.persistence import Database


class FakeExtractor(IMetadataExtractor):
    """Parses key=value text files instead of audio tags."""

    def __init__(self, gate: threading.Event | None = None) -> None:
        self.gate = gate
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def extract(self, path: str) -> SongMetadata:
        if self.gate is not None:
            self.gate.wait(timeout=10)
        with self._lock:
            self.calls.append(path)

        tags: dict[str, list[str]] = {}
        for line in Path(path).read_text(encoding="utf-8").splitlines():
            key, sep, value = line.partition("=")
            if sep:
                tags.setdefault(key.strip(), []).append(value.strip())

        if "fail" in tags:
            raise ExtractionFailedError(path, tags["fail"][0])

        def first(key: str) -> str | None:
            return tags[key][0] if key in tags else None

        year = first("year")
        duration = first("duration_ms")
        cover = first("cover")
        gain = first("replaygain_track_gain")
        return SongMetadata(
            path=path,
            title=None if "no_title" in tags else (first("title") or Path(path).stem),  # type: ignore[arg-type]
            artists=tags.get("artist", []),
            album=first("album"),
            album_artist=first("album_artist"),
            genres=tags.get("genre", []),
            year=int(year) if year else None,
            duration_ms=int(duration) if duration else None,
            cover_art=cover.encode("utf-8") if cover else None,
            cover_art_mime="image/png" if cover else None,
            lyrics=first("lyrics"),
            replaygain_track_gain=float(gain) if gain else None,
        )


@pytest.fixture
def write_track() -> Callable[..., Path]:
    """Write a fake track file: write_track(path, title=..., artist=[...], ...)."""

    def _write(path: Path, **tags: str | list[str]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = []
        for key, value in tags.items():
            for item in value if isinstance(value, list) else [value]:
                lines.append(f"{key}={item}")
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def library_dir(tmp_path: Path) -> Path:
    """Empty library root."""
    root = tmp_path / "music"
    root.mkdir()
    return root


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a temporary database and cache."""
    return Settings(
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}"),
        storage=StorageSettings(cache_path=tmp_path / "cache"),
        scan=ScanSettings(artist_separators=["; ", " feat. "], batch_size=2, max_workers=2),
        enrichment=EnrichmentSettings(enabled=False),
    )


@pytest.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    """Fresh catalog database with all tables created."""
    database = Database(settings)
    await database.create_tables()
    yield database
    await database.close()


@pytest.fixture
def cache(settings: Settings) -> LocalFileCache:
    """File cache under the temporary directory."""
    return LocalFileCache(settings.storage.cache_path)


@pytest.fixture
def extractor() -> FakeExtractor:
    """Fake tag reader for key=value files."""
    return FakeExtractor()
