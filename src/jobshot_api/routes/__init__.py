"""API route modules."""

from jobshot_api.routes.health import router as health_router
from jobshot_api.routes.jobs import router as jobs_router
from jobshot_api.routes.ui import router as ui_router

__all__ = [
    "health_router",
    "jobs_router",
    "ui_router",
]
