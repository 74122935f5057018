"""Library folder and scan endpoints - LOCAL ONLY, NO EXTERNAL APIS!

Hey future me - a scan is started here and runs in the background on the
scanner service. POST /scan answers 202 right away; clients poll
GET /scan/status with the folder path. One scan per folder: a second POST
for the same folder gets 409 from the ScanAlreadyRunningError handler.

External enrichment happens AFTER a scan, see routers/enrichment.py.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from soulscan.api.dependencies import get_folder_service, get_scanner
from soulscan.application.services import FolderService, LibraryScannerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/library", tags=["library"])


# =============================================================================
# Request / Response Models
# =============================================================================


class AddFolderRequest(BaseModel):
    """Register a library folder."""

    path: str = Field(min_length=1)
    name: str | None = None


class ScanRequest(BaseModel):
    """Start a scan of a folder (optionally only some paths inside it)."""

    path: str = Field(min_length=1)
    subpaths: list[str] | None = None


class CancelScanRequest(BaseModel):
    """Cancel the running scan of a folder."""

    path: str = Field(min_length=1)


class ScanStartedResponse(BaseModel):
    """Response from POST /scan."""

    scan_id: str
    folder_path: str
    full_scan: bool
    status: str = "in_progress"


# =============================================================================
# Folders
# =============================================================================


@router.get("/folders")
async def list_folders(
    folders: FolderService = Depends(get_folder_service),
) -> list[dict[str, Any]]:
    """List registered library folders with their song counts."""
    return [folder.to_dict() for folder in await folders.list_folders()]


@router.post("/folders", status_code=status.HTTP_201_CREATED)
async def add_folder(
    request: AddFolderRequest,
    folders: FolderService = Depends(get_folder_service),
) -> dict[str, Any]:
    """Register a library folder (idempotent for the same path)."""
    folder = await folders.add_folder(request.path, request.name)
    return folder.to_dict()


@router.delete("/folders/{folder_id}")
async def remove_folder(
    folder_id: str,
    cascade: bool = Query(default=False, description="Also delete the folder's songs"),
    scanner: LibraryScannerService = Depends(get_scanner),
) -> dict[str, Any]:
    """Unregister a folder.

    Without cascade a folder that still owns songs is refused (409).
    """
    report = await scanner.remove_folder(folder_id, cascade=cascade)
    return {"removed": folder_id, **report.to_dict()}


# =============================================================================
# Scans
# =============================================================================


@router.post("/scan", status_code=status.HTTP_202_ACCEPTED)
async def start_scan(
    request: ScanRequest,
    scanner: LibraryScannerService = Depends(get_scanner),
) -> ScanStartedResponse:
    """Start a scan in the background.

    Returns:
        202 with the scan id; 400 on configuration problems; 409 if a scan
        of the folder is already running
    """
    handle = await scanner.start_scan(request.path, subpaths=request.subpaths)
    logger.info(f"Scan {handle.scan_id} started via API for {handle.folder_path}")
    return ScanStartedResponse(
        scan_id=handle.scan_id,
        folder_path=handle.folder_path,
        full_scan=handle.full_scan,
    )


@router.get("/scan/status")
async def get_scan_status(
    path: str = Query(..., min_length=1, description="Library folder path (or a path inside it)"),
    scanner: LibraryScannerService = Depends(get_scanner),
    folders: FolderService = Depends(get_folder_service),
) -> dict[str, Any]:
    """Progress of the running scan, or the result of the last finished one."""
    scan_status = scanner.get_status(path)
    if scan_status is None:
        # Partial scans are tracked under their folder root
        folder = await folders.find_by_path(path)
        if folder is not None:
            scan_status = scanner.get_status(folder.path)
    if scan_status is None:
        raise HTTPException(status_code=404, detail=f"No scan known for {path}")

    progress = scan_status["progress"]
    result = scan_status["result"]
    return {
        "scan_id": scan_status["scan_id"],
        "running": scan_status["running"],
        "progress": progress.to_dict() if progress is not None else None,
        "result": result.to_dict() if result is not None else None,
    }


@router.post("/scan/cancel")
async def cancel_scan(
    request: CancelScanRequest,
    scanner: LibraryScannerService = Depends(get_scanner),
    folders: FolderService = Depends(get_folder_service),
) -> dict[str, Any]:
    """Request cancellation; batches already committed are kept."""
    cancelled = scanner.cancel_scan(request.path)
    if not cancelled:
        folder = await folders.find_by_path(request.path)
        cancelled = folder is not None and scanner.cancel_scan(folder.path)
    if not cancelled:
        raise HTTPException(status_code=404, detail=f"No running scan for {request.path}")
    return {"cancelled": True, "path": request.path}


@router.post("/reset")
async def reset_library(
    scanner: LibraryScannerService = Depends(get_scanner),
) -> dict[str, Any]:
    """Delete every song, album, artist and genre. Folders stay registered."""
    report = await scanner.reset_library()
    return report.to_dict()
