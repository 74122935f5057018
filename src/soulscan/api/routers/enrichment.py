"""Library enrichment endpoints - USES EXTERNAL APIS!

Hey future me - enrichment talks to Last.fm, Deezer and LRCLIB, so it lives
in its own router. The run is started as a background task and the request
returns 202 immediately; a second run while one is active is reported
(already_running) instead of started twice.
"""

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, status

from soulscan.api.dependencies import get_enrichment_service
from soulscan.application.services import EnrichmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/enrichment", tags=["enrichment"])


def _log_failure(task: "asyncio.Task[Any]") -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Enrichment run failed", exc_info=task.exception())


@router.post("/run", status_code=status.HTTP_202_ACCEPTED)
async def run_enrichment(
    request: Request,
    enrichment: EnrichmentService = Depends(get_enrichment_service),
) -> dict[str, Any]:
    """Start enrichment of artists, albums and lyrics in the background."""
    if enrichment.is_running:
        return {"started": False, "already_running": True}

    task = asyncio.create_task(enrichment.enrich_library(), name="enrichment-api")
    # Keep a reference so the task is not garbage collected mid-run
    tasks: set[asyncio.Task[Any]] = request.app.state.background_tasks
    tasks.add(task)
    task.add_done_callback(tasks.discard)
    task.add_done_callback(_log_failure)
    return {"started": True, "already_running": False}


@router.get("/status")
async def get_enrichment_status(
    enrichment: EnrichmentService = Depends(get_enrichment_service),
) -> dict[str, Any]:
    """Whether a run is active, plus the report of the last finished run."""
    report = enrichment.last_report
    return {
        "running": enrichment.is_running,
        "last_report": report.to_dict() if report is not None else None,
        "retry_stats": enrichment.retry_policy.stats.as_dict(),
    }
