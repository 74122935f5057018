"""API router initialization."""

# Hey future me, this aggregates the sub-routers. main.py mounts api_router
# under /api, and each router carries its own prefix (/library, /enrichment).

from fastapi import APIRouter

from soulscan.api.routers import enrichment, health, library

api_router = APIRouter()

api_router.include_router(library.router)
api_router.include_router(enrichment.router)
api_router.include_router(health.router, tags=["Health"])

__all__ = ["api_router"]
