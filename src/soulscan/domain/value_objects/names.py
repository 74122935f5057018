"""Name normalization and multi-artist splitting.

Hey future me - normalize_key() is THE dedup key for artists, albums and
genres. "The Beatles", "the beatles" and "  THE  Beatles " all map to
"the beatles". We do NOT strip articles or DJ prefixes here - "The The" and
"The" are different bands and silently merging them would be worse than a
duplicate row. The same key goes into the *_key unique columns, so the
database enforces what the in-memory maps assume.

Examples:
    >>> normalize_key("  The  BEATLES ")
    'the beatles'
    >>> split_artist_names("A feat. B; C", [" feat. ", "; "])
    ['A', 'B', 'C']
"""

import os
import re
import unicodedata
from collections.abc import Sequence

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"

_WHITESPACE = re.compile(r"\s+")


def normalize_key(name: str) -> str:
    """Build the case-insensitive comparison key for a display name.

    NFKC folds compatibility characters (full-width letters, ligatures),
    casefold() handles German ß and friends, whitespace runs collapse.

    Args:
        name: Raw display name from a tag

    Returns:
        Normalized key (may be empty for blank input)
    """
    folded = unicodedata.normalize("NFKC", name).casefold()
    return _WHITESPACE.sub(" ", folded).strip()


def clean_display_name(name: str | None) -> str:
    """Trim a tag value for display, collapsing inner whitespace runs."""
    if not name:
        return ""
    return _WHITESPACE.sub(" ", name).strip()


def path_key(path: str) -> str:
    """Comparison key for a filesystem path.

    Hey future me - os.path.normcase lowercases on Windows and is a no-op on
    POSIX. That matches how each OS actually compares paths, so two files
    differing only in case stay two songs on Linux.
    """
    return os.path.normcase(os.path.abspath(path))


def split_artist_names(raw: str | None, separators: Sequence[str]) -> list[str]:
    """Split a multi-artist tag string into individual names.

    Separators are matched literally and case-insensitively (" feat. " also
    splits " FEAT. "). Empty pieces are dropped and duplicates (by key) are
    removed, keeping the first spelling.

    Args:
        raw: Tag value, e.g. "Artist A; Artist B"
        separators: Configured separator strings

    Returns:
        Names in tag order; empty list when nothing usable remains
    """
    text = clean_display_name(raw)
    if not text:
        return []

    if separators:
        # Longest first so " feat. " wins over " f" style prefixes of it
        ordered = sorted(separators, key=len, reverse=True)
        pattern = re.compile("|".join(re.escape(sep) for sep in ordered), re.IGNORECASE)
        pieces = pattern.split(text)
    else:
        pieces = [text]

    names: list[str] = []
    seen: set[str] = set()
    for piece in pieces:
        name = clean_display_name(piece)
        key = normalize_key(name)
        if not key or key in seen:
            continue
        seen.add(key)
        names.append(name)
    return names
