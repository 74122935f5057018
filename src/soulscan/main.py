"""FastAPI application factory.

Run with:  uvicorn soulscan.main:create_app --factory
"""

from fastapi import FastAPI

from soulscan import __version__
from soulscan.api.exception_handlers import register_exception_handlers
from soulscan.api.routers import api_router
from soulscan.config import Settings, get_settings
from soulscan.infrastructure.lifecycle import lifespan


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Settings to use (default: environment via get_settings())

    Returns:
        Configured application; services are created by the lifespan
    """
    settings = settings or get_settings()
    app = FastAPI(
        title="SoulScan",
        description="Music library scanner and metadata enrichment",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.background_tasks = set()

    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    return app


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("soulscan.main:create_app", factory=True, host="0.0.0.0", port=8000)
