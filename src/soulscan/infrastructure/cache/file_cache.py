"""Local file cache for cover art, artist images and lyrics.

Hey future me - every cached file is addressed by a deterministic key:
- embedded cover art: sha1 of the image bytes (identical art across an
  album's 12 tracks is stored ONCE)
- artist images / album covers: the entity id
- lyrics: the song id

Paths are {namespace}/{key[:2]}/{key}{ext}, sharded by the first two key
characters so no directory ends up with 50k files. The DB stores the path
RELATIVE to the cache root, so moving the cache dir only needs a config
change.

Writes are idempotent: writing the same bytes under the same key again is a
no-op, and every write goes to a temp file first and is os.replace()d into
place, so readers never see half-written images.
"""

import asyncio
import hashlib
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

COVERS = "covers"
ARTISTS = "artists"
ALBUMS = "albums"
LYRICS = "lyrics"

# Synced and plain lyrics alike; plain text is a valid (untimed) .lrc
LYRICS_EXTENSION = ".lrc"

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


def content_key(data: bytes) -> str:
    """Stable key for a blob (sha1 hex)."""
    return hashlib.sha1(data, usedforsecurity=False).hexdigest()


def extension_for_mime(mime: str | None, default: str = ".jpg") -> str:
    """Map an image MIME type to a file extension."""
    if not mime:
        return default
    return MIME_EXTENSIONS.get(mime.split(";")[0].strip().lower(), default)


class LocalFileCache:
    """Deterministically addressed file cache rooted at one directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def relative_path(self, namespace: str, key: str, extension: str) -> str:
        """Relative path for a cache entry (what gets stored in the DB)."""
        shard = key[:2] if len(key) >= 2 else "00"
        return f"{namespace}/{shard}/{key}{extension}"

    def resolve(self, relative_path: str) -> Path:
        """Absolute path for a stored relative path.

        Raises:
            ValueError: If the path escapes the cache root
        """
        full = (self.root / relative_path).resolve()
        if not full.is_relative_to(self.root.resolve()):
            raise ValueError(f"Cache path escapes cache root: {relative_path}")
        return full

    def exists(self, relative_path: str | None) -> bool:
        """Check if a cached file is present on disk."""
        if not relative_path:
            return False
        try:
            return self.resolve(relative_path).is_file()
        except ValueError:
            return False

    # =========================================================================
    # Sync API (safe to call from worker threads)
    # =========================================================================

    def write_bytes_sync(
        self, namespace: str, key: str, data: bytes, extension: str
    ) -> str:
        """Write data under (namespace, key) unless identical bytes are already there.

        Returns:
            Relative path of the cache entry
        """
        relative = self.relative_path(namespace, key, extension)
        target = self.resolve(relative)

        if target.is_file():
            try:
                if target.stat().st_size == len(data) and target.read_bytes() == data:
                    return relative
            except OSError as e:
                logger.debug(f"Could not compare existing cache file {relative}: {e}")

        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-", suffix=extension)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            # Don't leave .tmp- files behind on disk-full or cancellation
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug(f"Cached {relative} ({len(data)} bytes)")
        return relative

    def delete_sync(self, relative_path: str | None) -> bool:
        """Delete a cached file; missing files are not an error."""
        if not relative_path:
            return False
        try:
            path = self.resolve(relative_path)
        except ValueError as e:
            logger.warning(f"Refusing to delete {relative_path}: {e}")
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    # =========================================================================
    # Async API
    # =========================================================================

    async def write_bytes(
        self, namespace: str, key: str, data: bytes, extension: str
    ) -> str:
        """Async wrapper around write_bytes_sync (runs on a thread)."""
        return await asyncio.to_thread(self.write_bytes_sync, namespace, key, data, extension)

    async def write_text(self, namespace: str, key: str, text: str, extension: str) -> str:
        """Write UTF-8 text (lyrics) under (namespace, key)."""
        return await self.write_bytes(namespace, key, text.encode("utf-8"), extension)

    async def delete_many(self, relative_paths: list[str]) -> int:
        """Delete several cached files, logging (not raising) OS errors.

        Returns:
            Number of files actually removed
        """

        def _delete_all() -> int:
            removed = 0
            for relative in relative_paths:
                try:
                    if self.delete_sync(relative):
                        removed += 1
                except OSError as e:
                    logger.warning(f"Could not delete cached file {relative}: {e}")
            return removed

        if not relative_paths:
            return 0
        return await asyncio.to_thread(_delete_all)
