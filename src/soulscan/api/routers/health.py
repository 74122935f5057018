"""Health check endpoint for Docker probes and monitoring."""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from soulscan import __version__

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """Database reachability, running scans and enrichment retry counters.

    Returns 503 when the database cannot be queried.
    """
    checks: dict[str, Any] = {}

    db_ok = False
    db = getattr(request.app.state, "db", None)
    if db is not None:
        try:
            async with db.session_scope() as session:
                await session.execute(text("SELECT 1"))
            db_ok = True
        except Exception as e:
            logger.warning(f"Health check: database not reachable: {e}")
    checks["database"] = db_ok

    scanner = getattr(request.app.state, "scanner", None)
    checks["scanning"] = scanner.is_scanning() if scanner is not None else False

    enrichment = getattr(request.app.state, "enrichment", None)
    if enrichment is not None:
        checks["enrichment"] = {
            "running": enrichment.is_running,
            "retry_stats": enrichment.retry_policy.stats.as_dict(),
        }

    body = {
        "status": "healthy" if db_ok else "unhealthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "version": __version__,
        "checks": checks,
    }
    status_code = status.HTTP_200_OK if db_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(content=body, status_code=status_code)
