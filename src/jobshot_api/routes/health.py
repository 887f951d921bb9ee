"""Health check endpoints for Kubernetes probes and monitoring."""

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from jobshot_api.core.config import Settings, get_settings
from jobshot_api.services.credentials import CredentialConfigError, resolve_credential

SettingsDep = Annotated[Settings, Depends(get_settings)]

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    version: str
    environment: str


class ReadinessResponse(BaseModel):
    """Readiness check response with component status."""

    status: str
    timestamp: datetime
    checks: dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: SettingsDep) -> HealthResponse:
    """Basic health check for liveness probe."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        version="0.1.0",
        environment=settings.environment,
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(settings: SettingsDep) -> ReadinessResponse:
    """Readiness check for Kubernetes readiness probe.

    Verifies the job catalog is present and a cluster credential can be
    resolved. Cluster reachability is left to the per-submission preflight.
    """
    checks: dict[str, Any] = {}

    catalog_ok = settings.jobs_config_path.is_file()
    checks["job_catalog"] = {
        "status": "ok" if catalog_ok else "error",
        "path": str(settings.jobs_config_path),
    }

    try:
        credential = resolve_credential(settings)
        checks["cluster_credential"] = {
            "status": "ok" if credential.endpoints() else "error",
            "mode": credential.mode.value,
            "endpoints": list(credential.endpoints()),
        }
    except CredentialConfigError as e:
        checks["cluster_credential"] = {"status": "error", "detail": str(e)}

    all_ok = all(
        check.get("status") == "ok" for check in checks.values() if isinstance(check, dict)
    )

    return ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        timestamp=datetime.utcnow(),
        checks=checks,
    )


@router.get("/startup")
async def startup_check() -> dict[str, str]:
    """Startup check for Kubernetes startup probe."""
    return {"status": "started"}
