"""Application services - scanning, cleanup, folders and enrichment."""

from soulscan.application.services.change_detector import (
    CatalogEntry,
    ChangeDetector,
    FileChangeSet,
)
from soulscan.application.services.enrichment_service import (
    EnrichmentReport,
    EnrichmentService,
)
from soulscan.application.services.entity_resolver import EntityResolver, ResolvedEntities
from soulscan.application.services.folder_service import FolderInfo, FolderService
from soulscan.application.services.library_cleanup_service import (
    CleanupReport,
    LibraryCleanupService,
)

# Hey future me - LibraryScannerService is the entry point for everything
# scan-related. The API layer should not touch the detector/resolver directly.
from soulscan.application.services.library_scanner_service import (
    LibraryScannerService,
    ScanHandle,
)

__all__ = [
    "CatalogEntry",
    "ChangeDetector",
    "CleanupReport",
    "EnrichmentReport",
    "EnrichmentService",
    "EntityResolver",
    "FileChangeSet",
    "FolderInfo",
    "FolderService",
    "LibraryCleanupService",
    "LibraryScannerService",
    "ResolvedEntities",
    "ScanHandle",
]
