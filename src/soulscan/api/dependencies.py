"""FastAPI dependencies.

Hey future me - the lifespan builds every long-lived service once and parks
it on app.state. These helpers fetch them so routers can use Depends() and
tests can override them with app.dependency_overrides.
"""

from typing import cast

from fastapi import HTTPException, Request, status

from soulscan.application.services import (
    EnrichmentService,
    FolderService,
    LibraryScannerService,
)
from soulscan.config import Settings
from soulscan.infrastructure.persistence import Database


def _state(request: Request, name: str) -> object:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not initialized",
        )
    return value


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with."""
    return cast(Settings, _state(request, "settings"))


def get_database(request: Request) -> Database:
    """Database from app state."""
    return cast(Database, _state(request, "db"))


def get_scanner(request: Request) -> LibraryScannerService:
    """Library scanner from app state."""
    return cast(LibraryScannerService, _state(request, "scanner"))


def get_folder_service(request: Request) -> FolderService:
    """Folder registry (shared with the scanner)."""
    return get_scanner(request).folders


def get_enrichment_service(request: Request) -> EnrichmentService:
    """Enrichment service from app state."""
    return cast(EnrichmentService, _state(request, "enrichment"))
