"""Local file cache."""

from soulscan.infrastructure.cache.file_cache import (
    ALBUMS,
    ARTISTS,
    COVERS,
    LYRICS,
    LYRICS_EXTENSION,
    LocalFileCache,
    content_key,
    extension_for_mime,
)

__all__ = [
    "ALBUMS",
    "ARTISTS",
    "COVERS",
    "LYRICS",
    "LYRICS_EXTENSION",
    "LocalFileCache",
    "content_key",
    "extension_for_mime",
]
