"""Service layer for business logic."""

from jobshot_api.services.call_convention import (
    CallConvention,
    CallConventionAdapter,
    is_signature_mismatch,
)
from jobshot_api.services.catalog import CatalogError, JobCatalogService, get_catalog_service
from jobshot_api.services.credentials import CredentialConfigError, resolve_credential
from jobshot_api.services.job_builder import RenderedJobManifest, build_job_manifest, slugify
from jobshot_api.services.job_status import JobStatusFetcher, determine_job_status
from jobshot_api.services.job_submitter import JobConflictError, JobSubmissionError, JobSubmitter
from jobshot_api.services.jobs import (
    JobRunResult,
    JobRunService,
    JobValidationError,
    get_job_run_service,
)
from jobshot_api.services.k8s_client import KubernetesClientFactory, get_client_factory
from jobshot_api.services.preflight import ConnectivityProber, PreflightError

__all__ = [
    "CallConvention",
    "CallConventionAdapter",
    "CatalogError",
    "ConnectivityProber",
    "CredentialConfigError",
    "JobCatalogService",
    "JobConflictError",
    "JobRunResult",
    "JobRunService",
    "JobStatusFetcher",
    "JobSubmissionError",
    "JobSubmitter",
    "JobValidationError",
    "KubernetesClientFactory",
    "PreflightError",
    "RenderedJobManifest",
    "build_job_manifest",
    "determine_job_status",
    "get_catalog_service",
    "get_client_factory",
    "get_job_run_service",
    "is_signature_mismatch",
    "resolve_credential",
    "slugify",
]
