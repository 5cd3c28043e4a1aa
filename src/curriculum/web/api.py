"""FastAPI application factory.

Main entry point for the Curriculum admin Web API.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from curriculum import __version__
from curriculum.core.services import Services, build_services
from curriculum.db.database import StoreUnavailableError
from curriculum.web.routes import (
    health_router,
    levels_router,
    progress_router,
    reports_router,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup/shutdown events."""
    # Startup
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()

    services: Services = app.state.services
    pending = services.catalog.pending_tombstones()
    logger.info(
        "api_startup",
        db_path=str(services.db.db_path),
        levels=services.catalog.count(),
        students=services.progress.count(),
        pending_repairs=len(pending),
    )
    if pending:
        logger.warning(
            "api_startup_pending_repairs",
            unit_ids=[t.unit_id for t in pending],
        )
    yield
    # Shutdown (connections are per-operation, nothing to close)


async def _store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.error("api_store_unavailable", path=request.url.path, operation=exc.operation)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Data store temporarily unavailable, please retry"},
    )


def create_app(services: Services | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Store handles to use; built from config when omitted

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="Curriculum Admin API",
        description="Level catalog and student progress administration",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services

    # CORS middleware for the admin web client
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StoreUnavailableError, _store_unavailable_handler)

    # Include routers
    app.include_router(health_router)
    app.include_router(levels_router)
    app.include_router(progress_router)
    app.include_router(reports_router)

    return app


# Default app instance for uvicorn
app = create_app()
