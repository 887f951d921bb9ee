"""Main FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobshot_api.core.config import get_settings
from jobshot_api.core.telemetry import setup_telemetry
from jobshot_api.routes import health_router, jobs_router, ui_router
from jobshot_api.services.credentials import CredentialConfigError, resolve_credential

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager for startup and shutdown events."""
    settings = get_settings()

    logger.info(f"Starting {settings.app_name} in {settings.environment} mode")
    logger.info(f"Job catalog: {settings.jobs_config_path}")

    # Informational only; the credential is resolved again for every request
    try:
        credential = resolve_credential(settings)
        logger.info(
            "Cluster access mode: %s, endpoints: %s",
            credential.mode.value,
            ", ".join(credential.endpoints()) or "none",
        )
    except CredentialConfigError as e:
        logger.warning("Cluster access is misconfigured: %s", e)

    yield

    logger.info("Shutting down...")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Run predefined one-shot Kubernetes Jobs from a web UI",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # CORS for the Vite dev server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_telemetry(app, settings)

    app.include_router(health_router)
    app.include_router(jobs_router)
    # Catch-all, must come last
    app.include_router(ui_router)

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "jobshot_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
