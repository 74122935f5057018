"""Application lifecycle management for startup and shutdown tasks.

Startup order: logging -> cache dir -> database + tables -> shared HTTP
client -> enrichment -> scanner -> register configured library folders.
Shutdown runs in reverse: running scans and background enrichment are
cancelled first, then the HTTP client and the engine are closed.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import httpx
from fastapi import FastAPI

from soulscan.application.services import (
    EnrichmentService,
    FolderService,
    LibraryScannerService,
)
from soulscan.config import Settings, get_settings
from soulscan.domain.exceptions import ConfigurationError
from soulscan.infrastructure.cache import LocalFileCache
from soulscan.infrastructure.observability import configure_logging
from soulscan.infrastructure.persistence import Database

logger = logging.getLogger(__name__)


def _ensure_sqlite_directory(settings: Settings) -> None:
    """Create the parent directory of a file-based SQLite database."""
    url = settings.database.url
    if not url.startswith("sqlite") or ":memory:" in url:
        return
    _, _, db_path = url.partition(":///")
    if not db_path:
        return
    parent = Path(db_path).parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to create SQLite database directory '{parent}': {exc}. "
            "Update DATABASE_URL or adjust directory permissions."
        ) from exc


async def _register_library_paths(folders: FolderService, settings: Settings) -> None:
    for path in settings.storage.library_paths:
        try:
            folder = await folders.add_folder(path)
            logger.info("Library folder ready: %s (%d songs)", folder.path, folder.song_count)
        except ConfigurationError as e:
            # A missing mount should not keep the API from starting
            logger.error("Skipping configured library folder %s: %s", path, e.message)


# Listen future me, everything before `yield` runs at STARTUP, everything
# after it at SHUTDOWN. Services go on app.state so dependencies.py can hand
# them to the routers. The try/finally makes sure whatever got created is
# closed even if startup crashes halfway.
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings: Settings = getattr(app.state, "settings", None) or get_settings()
    app.state.settings = settings

    configure_logging(
        log_level=settings.observability.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info("Starting application: %s", settings.app_name)

    db: Database | None = None
    http_client: httpx.AsyncClient | None = None
    enrichment: EnrichmentService | None = None
    scanner: LibraryScannerService | None = None
    try:
        settings.storage.cache_path.mkdir(parents=True, exist_ok=True)
        cache = LocalFileCache(settings.storage.cache_path)
        app.state.cache = cache

        _ensure_sqlite_directory(settings)
        db = Database(settings)
        await db.create_tables()
        app.state.db = db
        logger.info("Database initialized: %s", settings.database.url)

        # Hey future me - ONE connection pool for every provider. The clients
        # build absolute URLs, and they never close a client they were given,
        # so closing it is our job (see finally below).
        http_client = httpx.AsyncClient(
            headers={"User-Agent": settings.http.user_agent, "Accept": "application/json"},
            timeout=settings.http.timeout,
            follow_redirects=True,
        )
        enrichment = EnrichmentService.from_settings(db, cache, settings, client=http_client)
        app.state.enrichment = enrichment

        folders = FolderService(db, cache)
        scanner = LibraryScannerService(
            db, settings, cache=cache, folders=folders, enrichment=enrichment
        )
        app.state.scanner = scanner

        await _register_library_paths(folders, settings)

        yield
    finally:
        logger.info("Shutting down application")
        background: set[asyncio.Task[Any]] = getattr(app.state, "background_tasks", set())
        for task in list(background):
            task.cancel()
        if background:
            await asyncio.gather(*background, return_exceptions=True)
        if scanner is not None:
            await scanner.shutdown()
        if enrichment is not None:
            await enrichment.close()
        if http_client is not None:
            await http_client.aclose()
        if db is not None:
            await db.close()
        logger.info("Shutdown complete")
