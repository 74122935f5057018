"""Filesystem access: library walking."""

from soulscan.infrastructure.filesystem.walker import (
    AUDIO_EXTENSIONS,
    LibraryWalker,
    is_audio_file,
)

__all__ = ["AUDIO_EXTENSIONS", "LibraryWalker", "is_audio_file"]
