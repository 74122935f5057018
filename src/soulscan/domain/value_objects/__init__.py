"""Domain value objects."""

from soulscan.domain.value_objects.names import (
    UNKNOWN_ALBUM,
    UNKNOWN_ARTIST,
    clean_display_name,
    normalize_key,
    path_key,
    split_artist_names,
)

__all__ = [
    "UNKNOWN_ALBUM",
    "UNKNOWN_ARTIST",
    "clean_display_name",
    "normalize_key",
    "path_key",
    "split_artist_names",
]
