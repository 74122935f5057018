"""Lazy, restartable enumeration of audio files under library roots.

Hey future me - the walker NEVER opens files. DirEntry.stat() gives us
mtime and size straight from the directory listing (cached on Windows, one
stat() on POSIX), which is all the ChangeDetector needs to skip unchanged
files. Tag reading happens later and only for Added/Modified files.

Iterating a LibraryWalker twice walks the disk twice - each iter() builds a
fresh generator. Every os.scandir() sits in a `with` block, so closing the
generator early (cancel, break, exception) closes the directory handle.
"""

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from itertools import islice
from pathlib import Path

from soulscan.domain.entities import DiscoveredFile, WalkWarning

logger = logging.getLogger(__name__)

# Lowercase, with leading dot. Matching is case-insensitive.
AUDIO_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".aa",
        ".aax",
        ".aac",
        ".aif",
        ".aiff",
        ".alac",
        ".ape",
        ".asf",
        ".dff",
        ".dsf",
        ".flac",
        ".m4a",
        ".m4b",
        ".m4p",
        ".m4v",
        ".mka",
        ".mp3",
        ".mp4",
        ".mpc",
        ".mpp",
        ".oga",
        ".ogg",
        ".opus",
        ".wav",
        ".webm",
        ".wma",
        ".wv",
    }
)


def is_audio_file(name: str, extensions: frozenset[str] = AUDIO_EXTENSIONS) -> bool:
    """Check the file extension against the supported set."""
    return os.path.splitext(name)[1].lower() in extensions


class LibraryWalker:
    """Restartable iterable of DiscoveredFile under one or more roots.

    Roots may be directories or single files (targeted rescans pass both).
    Unreadable directories are skipped and recorded in ``warnings``.
    """

    def __init__(
        self,
        roots: Iterable[str | Path],
        extensions: frozenset[str] = AUDIO_EXTENSIONS,
        follow_symlinks: bool = False,
    ) -> None:
        self.roots = [os.path.abspath(os.fspath(root)) for root in roots]
        self.extensions = extensions
        self.follow_symlinks = follow_symlinks
        self.warnings: list[WalkWarning] = []

    def __iter__(self) -> Iterator[DiscoveredFile]:
        return self.walk()

    def walk(self) -> Iterator[DiscoveredFile]:
        """Start a fresh walk over all roots (resets warnings)."""
        self.warnings = []
        seen_dirs: set[tuple[int, int]] = set()
        for root in self.roots:
            if os.path.isfile(root):
                discovered = self._stat_file(root)
                if discovered is not None:
                    yield discovered
                continue
            if not os.path.isdir(root):
                self._warn(root, "root does not exist or is not a directory")
                continue
            yield from self._walk_tree(root, seen_dirs)

    def _walk_tree(
        self, root: str, seen_dirs: set[tuple[int, int]]
    ) -> Iterator[DiscoveredFile]:
        # Explicit stack instead of recursion - deep trees don't hit the
        # recursion limit, and only one scandir handle is open at a time.
        pending = [root]
        while pending:
            directory = pending.pop()
            subdirs: list[str] = []
            try:
                with os.scandir(directory) as entries:
                    for entry in entries:
                        try:
                            if entry.is_dir(follow_symlinks=self.follow_symlinks):
                                subdirs.append(entry.path)
                            elif entry.is_file(
                                follow_symlinks=self.follow_symlinks
                            ) and is_audio_file(entry.name, self.extensions):
                                stat = entry.stat(follow_symlinks=self.follow_symlinks)
                                yield DiscoveredFile(
                                    path=entry.path,
                                    mtime_ns=stat.st_mtime_ns,
                                    size=stat.st_size,
                                )
                        except OSError as e:
                            # Broken symlink or file vanished mid-walk
                            self._warn(entry.path, str(e))
            except OSError as e:
                self._warn(directory, str(e))
                continue

            if self.follow_symlinks:
                subdirs = self._drop_visited(subdirs, seen_dirs)
            # Reverse so pop() visits subdirectories in listing order
            pending.extend(reversed(sorted(subdirs)))

    def _drop_visited(
        self, subdirs: list[str], seen_dirs: set[tuple[int, int]]
    ) -> list[str]:
        """Skip directories already walked (symlink loops)."""
        fresh = []
        for path in subdirs:
            try:
                stat = os.stat(path)
            except OSError as e:
                self._warn(path, str(e))
                continue
            key = (stat.st_dev, stat.st_ino)
            if key in seen_dirs:
                continue
            seen_dirs.add(key)
            fresh.append(path)
        return fresh

    def _stat_file(self, path: str) -> DiscoveredFile | None:
        if not is_audio_file(path, self.extensions):
            return None
        try:
            stat = os.stat(path)
        except OSError as e:
            self._warn(path, str(e))
            return None
        return DiscoveredFile(path=path, mtime_ns=stat.st_mtime_ns, size=stat.st_size)

    def _warn(self, path: str, reason: str) -> None:
        self.warnings.append(WalkWarning(path=path, reason=reason))
        logger.warning(f"Skipping unreadable path {path}: {reason}")

    async def aiter_files(self, chunk_size: int = 256) -> AsyncIterator[DiscoveredFile]:
        """Walk on a worker thread, yielding to the event loop per chunk.

        Hey future me - directory listing is blocking I/O (slow on NAS
        mounts). We pull chunk_size entries per executor hop so the loop
        stays responsive without paying a thread switch per file. If the
        consumer stops early, the finally closes the sync generator, which
        closes any open scandir handle. A generator can't be closed while a
        worker thread is still inside it, so a cancelled in-flight chunk
        closes it from its done-callback instead.
        """
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="library-walker")
        files = self.walk()
        job: Future[list[DiscoveredFile]] | None = None
        try:
            while True:
                job = executor.submit(_take, files, chunk_size)
                chunk = await asyncio.wrap_future(job)
                if not chunk:
                    return
                for discovered in chunk:
                    yield discovered
        finally:
            if job is None or job.done():
                files.close()
            else:
                job.add_done_callback(lambda _job: files.close())
            executor.shutdown(wait=False)


def _take(files: Iterator[DiscoveredFile], count: int) -> list[DiscoveredFile]:
    return list(islice(files, count))
