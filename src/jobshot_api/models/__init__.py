"""Data models for Jobshot."""

from jobshot_api.models.cluster import (
    ClusterCredential,
    CredentialMode,
    FailureKind,
    PermissionVerdict,
    PreflightResult,
    ProbeAttempt,
    ProbeMethod,
)
from jobshot_api.models.job import (
    DEFAULT_RESOURCES,
    JobCatalog,
    JobDefinition,
    JobPhase,
    JobStatusBatchRequest,
    JobStatusBatchResponse,
    JobStatusDetails,
    JobStatusInfo,
    ResourceQuantities,
    ResourceRequirements,
    RunJobResponse,
)

__all__ = [
    "DEFAULT_RESOURCES",
    "ClusterCredential",
    "CredentialMode",
    "FailureKind",
    "JobCatalog",
    "JobDefinition",
    "JobPhase",
    "JobStatusBatchRequest",
    "JobStatusBatchResponse",
    "JobStatusDetails",
    "JobStatusInfo",
    "PermissionVerdict",
    "PreflightResult",
    "ProbeAttempt",
    "ProbeMethod",
    "ResourceQuantities",
    "ResourceRequirements",
    "RunJobResponse",
]
