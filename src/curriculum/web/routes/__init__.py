"""Route handlers for Web API."""

from curriculum.web.routes.health import router as health_router
from curriculum.web.routes.levels import router as levels_router
from curriculum.web.routes.progress import router as progress_router
from curriculum.web.routes.reports import router as reports_router

__all__ = [
    "health_router",
    "levels_router",
    "progress_router",
    "reports_router",
]
