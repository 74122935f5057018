# Hey future me - this service ORCHESTRATES a library scan. It owns nothing
# clever itself, it wires the pieces together in the right order:
#
#   walk (LibraryWalker)  ->  classify (ChangeDetector)  ->  read tags on a
#   thread pool (IMetadataExtractor)  ->  resolve + write in bounded batches
#   (EntityResolver + BatchPersistenceCoordinator)  ->  cleanup
#   (LibraryCleanupService)  ->  kick off enrichment in the background
#
# Rules that live HERE (and only here):
# 1. ONE scan per folder at a time. A second request for the same folder is
#    rejected (ScanAlreadyRunningError) or, with coalesce=True, handed the
#    running scan's handle. Never queued.
# 2. Config is validated BEFORE anything is written (separators set, folder
#    exists). A ConfigurationError means the catalog was not touched.
# 3. Cleanup only runs after the last batch closed, and song REMOVAL only
#    after a full walk of the folder (the ChangeDetector enforces that).
# 4. Cancelling keeps the batches that already committed. Status is
#    CANCELLED, never FAILED.
# 5. A broken progress sink is logged and ignored - UI trouble must never
#    abort a scan.
"""Library scan orchestration."""

import asyncio
import logging
import os
import uuid
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sqlalchemy import update

from soulscan.application.services.change_detector import (
    CatalogEntry,
    ChangeDetector,
    FileChangeSet,
)
from soulscan.application.services.enrichment_service import EnrichmentService
from soulscan.application.services.entity_resolver import EntityResolver
from soulscan.application.services.folder_service import FolderInfo, FolderService
from soulscan.application.services.library_cleanup_service import LibraryCleanupService
from soulscan.config import Settings
from soulscan.domain.entities import (
    DiscoveredFile,
    FileFailure,
    ScanPhase,
    ScanProgress,
    ScanResult,
    ScanStatus,
    SongMetadata,
)
from soulscan.domain.exceptions import (
    ConfigurationError,
    ExtractionFailedError,
    PersistenceBatchError,
    ScanAlreadyRunningError,
    ScanCancelledError,
)
from soulscan.domain.ports import IMetadataExtractor, ProgressSink
from soulscan.domain.value_objects import path_key
from soulscan.infrastructure.cache import (
    COVERS,
    LYRICS,
    LYRICS_EXTENSION,
    LocalFileCache,
    content_key,
    extension_for_mime,
)
from soulscan.infrastructure.filesystem import LibraryWalker
from soulscan.infrastructure.metadata import MutagenMetadataExtractor
from soulscan.infrastructure.observability import set_correlation_id
from soulscan.infrastructure.persistence import Database
from soulscan.infrastructure.persistence.batch_writer import (
    BatchPersistenceCoordinator,
    SongUpsert,
)
from soulscan.infrastructure.persistence.models import FolderModel, utc_now

logger = logging.getLogger(__name__)

# Emit a discovery progress report every N files found
DISCOVERY_REPORT_INTERVAL = 500


@dataclass
class ScanHandle:
    """A running (or finished) scan of one folder."""

    scan_id: str
    folder_path: str
    full_scan: bool
    result: ScanResult
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: "asyncio.Task[ScanResult] | None" = None
    progress: ScanProgress | None = None

    def cancel(self) -> None:
        """Request cooperative cancellation (committed batches are kept)."""
        self.cancel_event.set()

    @property
    def done(self) -> bool:
        """Check if the scan task has finished."""
        return self.task is not None and self.task.done()

    async def wait(self) -> ScanResult:
        """Wait for the scan to finish and return its result."""
        if self.task is None:
            return self.result
        try:
            return await asyncio.shield(self.task)
        except asyncio.CancelledError:
            # The scan task itself was cancelled - its result says CANCELLED.
            # If WE are the one being cancelled, propagate.
            if self.task.cancelled():
                return self.result
            raise


@dataclass
class _Extracted:
    metadata: SongMetadata
    cover_art_path: str | None
    lyrics_path: str | None = None


class LibraryScannerService:
    """Runs library scans and keeps track of the active ones."""

    def __init__(
        self,
        db: Database,
        settings: Settings,
        *,
        extractor: IMetadataExtractor | None = None,
        cache: LocalFileCache | None = None,
        folders: FolderService | None = None,
        enrichment: EnrichmentService | None = None,
        progress: ProgressSink | None = None,
    ) -> None:
        """Initialize scanner service.

        Args:
            db: Database
            settings: Application settings (scan + enrichment sections)
            extractor: Tag reader (default: mutagen)
            cache: Cache for embedded cover art
            folders: Folder registry (default: built from db + cache)
            enrichment: Enrichment service started after successful scans
            progress: Default progress sink for every scan
        """
        self._db = db
        self.settings = settings
        self._extractor = extractor or MutagenMetadataExtractor()
        self._cache = cache
        self.folders = folders or FolderService(db, cache)
        self._enrichment = enrichment
        self._default_sink = progress

        self._active: dict[str, ScanHandle] = {}
        self._registry_lock = asyncio.Lock()
        self._last_results: dict[str, ScanResult] = {}
        self._background: set[asyncio.Task[Any]] = set()

    # =========================================================================
    # Public API
    # =========================================================================

    async def start_scan(
        self,
        path: str | Path,
        *,
        subpaths: Sequence[str | Path] | None = None,
        coalesce: bool = False,
        progress: ProgressSink | None = None,
    ) -> ScanHandle:
        """Start a scan in the background.

        Args:
            path: Library folder (registered on first scan). A path INSIDE a
                registered folder becomes a partial scan of that folder.
            subpaths: Restrict the walk to these paths inside the folder
                (partial scan - never removes songs)
            coalesce: If a scan of this folder is running, return its handle
                instead of raising
            progress: Extra progress sink for this scan

        Returns:
            ScanHandle (await handle.wait() for the ScanResult)

        Raises:
            ConfigurationError: Invalid configuration (nothing was written)
            ScanAlreadyRunningError: Folder already scanning and coalesce is False
        """
        sinks = [s for s in (self._default_sink, progress) if s is not None]
        try:
            separators = self._require_separators()
            folder, roots = await self._resolve_target(path, subpaths)
        except ConfigurationError as e:
            logger.error(f"Scan of {path} not started: {e.message}")
            await self._notify(
                sinks,
                ScanProgress(
                    phase=ScanPhase.FINISHED,
                    status=ScanStatus.FAILED,
                    message=e.message,
                ),
            )
            raise

        full_scan = roots is None
        key = path_key(folder.path)
        async with self._registry_lock:
            running = self._active.get(key)
            if running is not None and not running.done:
                if coalesce:
                    logger.info(f"Scan of {folder.path} already running - joining {running.scan_id}")
                    return running
                raise ScanAlreadyRunningError(folder.path)

            scan_id = uuid.uuid4().hex
            handle = ScanHandle(
                scan_id=scan_id,
                folder_path=folder.path,
                full_scan=full_scan,
                result=ScanResult(scan_id=scan_id, folder_path=folder.path, full_scan=full_scan),
            )
            handle.task = asyncio.create_task(
                self._run_scan(handle, folder, roots, separators, sinks),
                name=f"scan-{scan_id}",
            )
            self._active[key] = handle
            handle.task.add_done_callback(lambda _t: self._unregister(key, handle))
            return handle

    async def scan_folder(
        self,
        path: str | Path,
        *,
        subpaths: Sequence[str | Path] | None = None,
        progress: ProgressSink | None = None,
    ) -> ScanResult:
        """Scan a folder and wait for the result."""
        handle = await self.start_scan(path, subpaths=subpaths, progress=progress)
        return await handle.wait()

    async def scan_all(self) -> list[ScanResult]:
        """Scan every registered folder, one after another."""
        results = []
        for folder in await self.folders.list_folders():
            handle = await self.start_scan(folder.path, coalesce=True)
            results.append(await handle.wait())
        return results

    def get_active_scan(self, path: str | Path) -> ScanHandle | None:
        """Running scan of the folder at path, if any."""
        handle = self._active.get(path_key(os.fspath(path)))
        return handle if handle is not None and not handle.done else None

    def is_scanning(self, path: str | Path | None = None) -> bool:
        """Check if a folder (or, with no path, any folder) is being scanned."""
        if path is None:
            return any(not h.done for h in self._active.values())
        return self.get_active_scan(path) is not None

    def cancel_scan(self, path: str | Path) -> bool:
        """Request cancellation of a folder's running scan.

        Returns:
            False if no scan was running
        """
        handle = self.get_active_scan(path)
        if handle is None:
            return False
        logger.info(f"Cancellation requested for scan {handle.scan_id} ({handle.folder_path})")
        handle.cancel()
        return True

    def get_status(self, path: str | Path) -> dict[str, Any] | None:
        """Latest progress of a running scan, or the last finished result."""
        key = path_key(os.fspath(path))
        handle = self._active.get(key)
        if handle is not None and not handle.done:
            return {
                "scan_id": handle.scan_id,
                "running": True,
                "progress": handle.progress,
                "result": None,
            }
        last = self._last_results.get(key)
        if last is None:
            return None
        return {"scan_id": last.scan_id, "running": False, "progress": None, "result": last}

    async def remove_folder(self, folder_id: str, *, cascade: bool = False) -> Any:
        """Remove a folder unless it is being scanned (see FolderService.remove_folder)."""
        folder = await self.folders.get_folder(folder_id)
        if self.is_scanning(folder.path):
            raise ScanAlreadyRunningError(folder.path)
        return await self.folders.remove_folder(folder_id, cascade=cascade)

    async def reset_library(self) -> Any:
        """Delete every song and entity, refusing while any scan runs."""
        if self.is_scanning():
            raise ScanAlreadyRunningError("the library")
        return await self.folders.reset_library()

    async def shutdown(self) -> None:
        """Cancel running scans and background enrichment, then wait for them."""
        tasks: list[asyncio.Task[Any]] = []
        for handle in list(self._active.values()):
            if handle.task is not None and not handle.task.done():
                handle.cancel()
                tasks.append(handle.task)
        for task in list(self._background):
            task.cancel()
            tasks.append(task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # =========================================================================
    # Validation
    # =========================================================================

    def _require_separators(self) -> list[str]:
        separators = self.settings.scan.artist_separators
        if separators is None:
            raise ConfigurationError(
                "Artist separators are not configured (set SCAN_ARTIST_SEPARATORS, "
                'e.g. ["; ", " feat. "], or [] to never split)'
            )
        return list(separators)

    async def _resolve_target(
        self, path: str | Path, subpaths: Sequence[str | Path] | None
    ) -> tuple[FolderInfo, list[str] | None]:
        """Find (or register) the folder and the walk roots (None = full walk)."""
        absolute = os.path.abspath(os.fspath(path))
        if not os.path.isdir(absolute):
            raise ConfigurationError(f"Library folder does not exist: {absolute}")

        folder = await self.folders.find_by_path(absolute)
        if folder is None:
            folder = await self.folders.add_folder(absolute)

        folder_key = path_key(folder.path)
        roots = [os.path.abspath(os.fspath(p)) for p in (subpaths or ())]
        if not roots and path_key(absolute) != folder_key:
            # A sub-directory of a registered folder: partial scan of it
            roots = [absolute]

        for root in roots:
            root_key = path_key(root)
            if root_key != folder_key and not root_key.startswith(folder_key.rstrip(os.sep) + os.sep):
                raise ConfigurationError(f"{root} is not inside library folder {folder.path}")

        if roots and any(path_key(r) == folder_key for r in roots):
            return folder, None
        return folder, roots or None

    # =========================================================================
    # The scan
    # =========================================================================

    async def _run_scan(
        self,
        handle: ScanHandle,
        folder: FolderInfo,
        roots: list[str] | None,
        separators: list[str],
        sinks: list[ProgressSink],
    ) -> ScanResult:
        result = handle.result
        set_correlation_id(handle.scan_id)
        scan_kind = "full" if handle.full_scan else f"partial ({len(roots or [])} paths)"
        logger.info(f"Starting {scan_kind} scan of {folder.path}")

        cpu_count = os.cpu_count() or 1
        workers = min(self.settings.scan.max_workers or cpu_count, cpu_count)
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="soulscan-tags")

        async def emit(progress: ScanProgress) -> None:
            progress.added = result.added
            progress.modified = result.modified
            progress.removed = result.removed
            progress.unchanged = result.unchanged
            progress.failed = result.failed
            handle.progress = progress
            await self._notify(sinks, progress)

        try:
            await emit(ScanProgress(phase=ScanPhase.STARTING, message=f"Scanning {folder.path}"))
            async with self._db.session() as session:
                detector = ChangeDetector()
                snapshot = await detector.load_snapshot(session, folder.id)
                await session.commit()

                walker = LibraryWalker(
                    roots or [folder.path], follow_symlinks=self.settings.scan.follow_symlinks
                )
                discovered = await self._discover(walker, handle, emit)
                result.walk_warnings = list(walker.warnings)

                changes = detector.classify(
                    discovered,
                    snapshot,
                    full_scan=handle.full_scan,
                    coverage=roots,
                    unreadable=[warning.path for warning in result.walk_warnings],
                )
                result.unchanged = len(changes.unchanged)

                resolver = EntityResolver(session, separators=separators)
                await resolver.load()
                await session.commit()

                coordinator = BatchPersistenceCoordinator(
                    session,
                    resolver,
                    batch_size=self.settings.scan.batch_size,
                    total=len(changes.to_extract),
                    progress=emit,
                    cancel_event=handle.cancel_event,
                    continue_on_failure=not self.settings.scan.stop_on_batch_failure,
                )
                stopped_early = False
                try:
                    await self._extract_and_persist(
                        changes, snapshot, folder.id, coordinator, executor, workers, handle, emit
                    )
                    await coordinator.close()
                except PersistenceBatchError as e:
                    logger.error(f"Scan of {folder.path} stopped after failed batch: {e.message}")
                    stopped_early = True
                finally:
                    report = coordinator.report
                    result.added = report.songs_added
                    result.modified = report.songs_updated
                    result.batch_failures = list(report.failures)
                    result.batches_committed = report.batches_committed

                if not stopped_early and not changes.is_empty:
                    await emit(ScanProgress(phase=ScanPhase.CLEANING, message="Cleaning up"))
                    cleanup = await LibraryCleanupService(session, self._cache).run(
                        [entry.song_id for entry in changes.removed]
                    )
                    result.removed = cleanup.deleted_songs
                    result.deleted_albums = cleanup.deleted_albums
                    result.deleted_artists = cleanup.deleted_artists
                    result.deleted_genres = cleanup.deleted_genres

                await session.execute(
                    update(FolderModel)
                    .where(FolderModel.id == folder.id)
                    .values(last_scanned_at=utc_now())
                )
                await session.commit()

            result.status = (
                ScanStatus.COMPLETE_WITH_ERRORS if result.has_errors else ScanStatus.COMPLETE
            )
        except ScanCancelledError as e:
            result.status = ScanStatus.CANCELLED
            result.error = e.message
            logger.info(f"Scan of {folder.path} cancelled ({result.batches_committed} batches kept)")
        except asyncio.CancelledError:
            result.status = ScanStatus.CANCELLED
            result.error = "Scan task cancelled"
            logger.info(f"Scan task for {folder.path} cancelled")
            raise
        except Exception as e:
            result.status = ScanStatus.FAILED
            result.error = f"{e.__class__.__name__}: {e}"
            logger.exception(f"Scan of {folder.path} failed")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            result.completed_at = utc_now()
            self._last_results[path_key(folder.path)] = result
            await self._finish(handle, result, emit)

        return result

    async def _discover(
        self, walker: LibraryWalker, handle: ScanHandle, emit: ProgressSink
    ) -> list[DiscoveredFile]:
        await emit(ScanProgress(phase=ScanPhase.DISCOVERING, message="Discovering files"))
        discovered: list[DiscoveredFile] = []
        async for file in walker.aiter_files():
            if handle.cancel_event.is_set():
                raise ScanCancelledError("Scan cancelled during discovery")
            discovered.append(file)
            if len(discovered) % DISCOVERY_REPORT_INTERVAL == 0:
                await emit(
                    ScanProgress(
                        phase=ScanPhase.DISCOVERING,
                        current=len(discovered),
                        message=f"Found {len(discovered)} files",
                    )
                )
        logger.info(f"Discovered {len(discovered)} audio files")
        return discovered

    async def _extract_and_persist(
        self,
        changes: FileChangeSet,
        snapshot: dict[str, CatalogEntry],
        folder_id: str,
        coordinator: BatchPersistenceCoordinator,
        executor: ThreadPoolExecutor,
        workers: int,
        handle: ScanHandle,
        emit: ProgressSink,
    ) -> None:
        """Read tags chunk by chunk; chunk N+1 is read while chunk N is written."""
        files = changes.to_extract
        if not files:
            return

        loop = asyncio.get_running_loop()
        semaphore = asyncio.Semaphore(workers * 2)
        chunk_size = self.settings.scan.batch_size
        chunks = [files[i : i + chunk_size] for i in range(0, len(files), chunk_size)]
        result = handle.result

        async def read(file: DiscoveredFile) -> _Extracted | FileFailure:
            async with semaphore:
                return await loop.run_in_executor(executor, self._extract_file, file.path)

        def start(chunk: list[DiscoveredFile]) -> "asyncio.Future[list[Any]]":
            return asyncio.gather(*(read(file) for file in chunk))

        processed = 0
        pending = start(chunks[0])
        try:
            for index, chunk in enumerate(chunks):
                extracted = await pending
                pending = start(chunks[index + 1]) if index + 1 < len(chunks) else None

                for file, outcome in zip(chunk, extracted, strict=True):
                    if handle.cancel_event.is_set():
                        raise ScanCancelledError(
                            f"Scan cancelled after {coordinator.report.batches_committed} "
                            "committed batches"
                        )
                    if isinstance(outcome, FileFailure):
                        result.file_failures.append(outcome)
                        continue
                    existing = snapshot.get(path_key(file.path))
                    await coordinator.submit(
                        SongUpsert(
                            file=file,
                            metadata=outcome.metadata,
                            folder_id=folder_id,
                            cover_art_path=outcome.cover_art_path,
                            lyrics_path=outcome.lyrics_path,
                            existing_song_id=existing.song_id if existing else None,
                        )
                    )

                processed += len(chunk)
                await emit(
                    ScanProgress(
                        phase=ScanPhase.ANALYZING,
                        current=processed,
                        total=len(files),
                        message=f"Read tags of {processed}/{len(files)} files",
                        current_path=chunk[-1].path,
                    )
                )
        finally:
            if pending is not None and not pending.done():
                pending.cancel()
                await asyncio.gather(pending, return_exceptions=True)

    def _extract_file(self, path: str) -> _Extracted | FileFailure:
        """Worker thread: read tags and store embedded art in the cache."""
        try:
            metadata = self._extractor.extract(path)
        except ExtractionFailedError as e:
            logger.warning(f"Skipping {path}: {e.reason}")
            return FileFailure(path=path, reason=e.reason)
        except Exception as e:
            # Tag parsers can fail in creative ways on corrupt files
            logger.warning(f"Skipping {path}: unexpected {e.__class__.__name__}: {e}")
            return FileFailure(path=path, reason=f"{e.__class__.__name__}: {e}")

        cover_art_path = None
        if metadata.cover_art and self._cache is not None:
            try:
                cover_art_path = self._cache.write_bytes_sync(
                    COVERS,
                    content_key(metadata.cover_art),
                    metadata.cover_art,
                    extension_for_mime(metadata.cover_art_mime),
                )
            except OSError as e:
                logger.warning(f"Could not cache cover art of {path}: {e}")
        # Lyrics shipped with the file: content-addressed like covers, so
        # enrichment never asks LRCLIB for songs that already have them
        lyrics_path = None
        if metadata.lyrics and self._cache is not None:
            data = metadata.lyrics.encode("utf-8")
            try:
                lyrics_path = self._cache.write_bytes_sync(
                    LYRICS, content_key(data), data, LYRICS_EXTENSION
                )
            except OSError as e:
                logger.warning(f"Could not cache lyrics of {path}: {e}")

        # The bytes live in the cache now - don't hold them until the batch commits
        metadata.cover_art = None
        metadata.lyrics = None
        return _Extracted(
            metadata=metadata, cover_art_path=cover_art_path, lyrics_path=lyrics_path
        )

    # =========================================================================
    # Finish / bookkeeping
    # =========================================================================

    async def _finish(self, handle: ScanHandle, result: ScanResult, emit: ProgressSink) -> None:
        logger.info(
            f"Scan of {result.folder_path} finished: {result.status.value} "
            f"({result.added} added, {result.modified} modified, {result.removed} removed, "
            f"{result.unchanged} unchanged, {result.failed} failed)"
        )
        await emit(
            ScanProgress(
                phase=ScanPhase.FINISHED,
                current=result.added + result.modified,
                total=result.added + result.modified,
                status=result.status,
                message=result.error or result.status.value,
            )
        )
        if result.status in (ScanStatus.COMPLETE, ScanStatus.COMPLETE_WITH_ERRORS):
            self._schedule_enrichment()

    def _schedule_enrichment(self) -> None:
        enrichment = self.settings.enrichment
        if self._enrichment is None or not enrichment.enabled or not enrichment.enrich_after_scan:
            return
        task = asyncio.create_task(self._enrichment.enrich_library(), name="enrichment")
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: "asyncio.Task[Any]") -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background enrichment failed", exc_info=task.exception())

    def _unregister(self, key: str, handle: ScanHandle) -> None:
        if self._active.get(key) is handle:
            del self._active[key]

    @staticmethod
    async def _notify(sinks: list[ProgressSink], progress: ScanProgress) -> None:
        for sink in sinks:
            try:
                await sink(progress)
            except Exception as e:
                logger.warning(f"Progress sink raised {e.__class__.__name__}: {e} - ignored")
