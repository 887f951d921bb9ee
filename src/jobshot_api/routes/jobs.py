"""Job catalog, submission, and status routes used by the UI."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from jobshot_api.models.job import (
    JobCatalog,
    JobStatusBatchRequest,
    JobStatusBatchResponse,
    JobStatusInfo,
    RunJobResponse,
)
from jobshot_api.services.catalog import CatalogError, JobCatalogService, get_catalog_service
from jobshot_api.services.credentials import CredentialConfigError
from jobshot_api.services.job_submitter import JobSubmissionError
from jobshot_api.services.jobs import JobRunService, JobValidationError, get_job_run_service
from jobshot_api.services.preflight import PreflightError

logger = logging.getLogger(__name__)

JobRunServiceDep = Annotated[JobRunService, Depends(get_job_run_service)]
CatalogServiceDep = Annotated[JobCatalogService, Depends(get_catalog_service)]

router = APIRouter(prefix="/api", tags=["jobs"])


@router.get("/jobs", response_model=JobCatalog, response_model_exclude_none=True)
async def list_jobs(catalog_service: CatalogServiceDep) -> Any:
    """Return the predefined job catalog."""
    try:
        return catalog_service.listing()
    except CatalogError as e:
        logger.error("Failed to load job catalog: %s", e)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to load jobs.yaml", "details": str(e)},
        )


@router.post("/run-job", response_model=RunJobResponse)
async def run_job(request: Request, job_service: JobRunServiceDep) -> Any:
    """Start a job on the cluster.

    The body is a job definition. Errors are returned as plain text:
    400 for malformed input, 503 when the connectivity or permission
    preflight fails, 500 when the cluster rejects the Job.
    """
    try:
        payload = await request.json()
    except ValueError:
        return PlainTextResponse(
            "Request body must be a JSON job definition.",
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    try:
        result = await job_service.run_job(payload)
    except (JobValidationError, CredentialConfigError) as e:
        return PlainTextResponse(str(e), status_code=status.HTTP_400_BAD_REQUEST)
    except PreflightError as e:
        return PlainTextResponse(str(e), status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    except (JobSubmissionError, CatalogError) as e:
        return PlainTextResponse(
            f"Failed to start job: {e}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    logger.info(
        "Job %s started in namespace %s (preflight via %s at %s)",
        result.job_name,
        result.namespace,
        result.preflight.method.value,
        result.preflight.endpoint,
    )
    return RunJobResponse(
        message="Job started",
        jobName=result.job_name,
        namespace=result.namespace,
    )


@router.get(
    "/job-status/{name}",
    response_model=JobStatusInfo,
    response_model_exclude_none=True,
)
async def get_job_status(
    name: str,
    job_service: JobRunServiceDep,
    namespace: Annotated[str | None, Query()] = None,
) -> Any:
    """Get the status of a job by name.

    Cluster failures are reported in the ``error`` field of a 200 response;
    a missing job is ``exists: false``.
    """
    try:
        return await job_service.job_status(name, namespace)
    except JobValidationError as e:
        return PlainTextResponse(str(e), status_code=status.HTTP_400_BAD_REQUEST)


@router.post(
    "/job-statuses",
    response_model=JobStatusBatchResponse,
    response_model_exclude_none=True,
)
async def get_job_statuses(
    request: JobStatusBatchRequest,
    job_service: JobRunServiceDep,
) -> Any:
    """Get the statuses of several jobs, fetched concurrently."""
    try:
        statuses = await job_service.job_statuses(request.jobs, request.namespace)
    except JobValidationError as e:
        return PlainTextResponse(str(e), status_code=status.HTTP_400_BAD_REQUEST)
    return JobStatusBatchResponse(statuses=statuses)
