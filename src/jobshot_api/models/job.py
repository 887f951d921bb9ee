"""Job catalog, run request, and job status models."""

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class ResourceQuantities(BaseModel):
    """CPU and memory quantities, passed to the cluster verbatim (e.g. "250m", "64Mi")."""

    cpu: str
    memory: str

    @field_validator("cpu", "memory", mode="before")
    @classmethod
    def _numbers_as_quantities(cls, value: object) -> object:
        # YAML reads `cpu: 1` as an int
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(value)
        return value


class ResourceRequirements(BaseModel):
    """Requests/limits pair for a job container."""

    requests: ResourceQuantities
    limits: ResourceQuantities


# Values the run dialog starts from when a catalog entry has no resources
DEFAULT_RESOURCES = ResourceRequirements(
    requests=ResourceQuantities(cpu="250m", memory="64Mi"),
    limits=ResourceQuantities(cpu="500m", memory="128Mi"),
)


class JobDefinition(BaseModel):
    """A one-shot job as defined in the catalog or submitted from the UI.

    Attributes:
        name: Display name; the cluster object name is derived from it
        container: Container image reference
        entrypoint: Command executed in the container (catalog-owned)
        parameters: Arguments passed to the entrypoint (editable per run)
        namespace: Target namespace, subject to the namespace policy when absent
        description: Free-form catalog description
        resources: Optional CPU/memory requests and limits
    """

    name: str
    container: str
    entrypoint: list[str] | None = None
    parameters: list[str]
    namespace: str | None = None
    description: str | None = None
    resources: ResourceRequirements | None = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Job name is required and must be a non-empty string.")
        return value

    @field_validator("container")
    @classmethod
    def _container_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Job container image is required and must be a non-empty string.")
        return value.strip()

    @field_validator("namespace")
    @classmethod
    def _blank_namespace_is_missing(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


class JobCatalog(BaseModel):
    """The predefined jobs offered in the UI."""

    jobs: list[JobDefinition] = Field(default_factory=list)


class RunJobResponse(BaseModel):
    """Response body of a successful job submission."""

    message: str
    job_name: str = Field(alias="jobName")
    namespace: str

    class Config:
        populate_by_name = True


class JobPhase(str, Enum):
    """Coarse execution phase derived from a Job's pod counts."""

    PENDING = "Pending"  # Accepted, no pod active yet
    RUNNING = "Running"  # At least one active pod
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    NOT_FOUND = "NotFound"  # No Job object with this name
    UNKNOWN = "Unknown"  # Status could not be read


class JobStatusDetails(BaseModel):
    """Pod counts reported by the Job controller."""

    active: int = 0
    succeeded: int = 0
    failed: int = 0


class JobStatusInfo(BaseModel):
    """Polled status of a submitted job.

    Attributes:
        status: Coarse phase label
        exists: Whether the Job object exists in the namespace
        is_running: True iff at least one pod is active
        details: Active/succeeded/failed pod counts
        error: Transport or API error captured while reading the status
    """

    status: JobPhase
    exists: bool
    is_running: bool = Field(default=False, alias="isRunning")
    details: JobStatusDetails | None = None
    error: str | None = None

    class Config:
        populate_by_name = True


class JobStatusBatchRequest(BaseModel):
    """Request body for fetching several job statuses at once."""

    namespace: str | None = None
    jobs: list[str]


class JobStatusBatchResponse(BaseModel):
    """Statuses keyed by the job name as requested."""

    statuses: dict[str, JobStatusInfo]
