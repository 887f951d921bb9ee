"""Job run orchestration: validate, preflight, render, submit."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from jobshot_api.core.config import Settings, get_settings
from jobshot_api.core.telemetry import (
    ATTR_CREDENTIAL_MODE,
    ATTR_JOB_NAME,
    SPAN_RUN_JOB,
    cluster_span,
)
from jobshot_api.models.cluster import ClusterCredential, PreflightResult
from jobshot_api.models.job import JobDefinition, JobPhase, JobStatusInfo
from jobshot_api.services.catalog import JobCatalogService
from jobshot_api.services.credentials import CredentialConfigError, resolve_credential
from jobshot_api.services.job_builder import build_job_manifest, slugify
from jobshot_api.services.job_status import JobStatusFetcher
from jobshot_api.services.job_submitter import JobSubmitter
from jobshot_api.services.preflight import ConnectivityProber, PreflightError

logger = logging.getLogger(__name__)


class JobValidationError(Exception):
    """Raised when a submitted job or its namespace is malformed."""

    pass


def format_validation_error(exc: ValidationError) -> str:
    """Turn pydantic errors into one field-level sentence per problem."""
    messages: list[str] = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "body"
        if field == "parameters":
            messages.append("Job parameters must be an array.")
        elif error["type"] == "missing":
            messages.append(f"Job {field} is required.")
        elif error["type"] == "value_error":
            messages.append(str(error["msg"]).removeprefix("Value error, "))
        else:
            messages.append(f"Job {field}: {error['msg']}")
    return " ".join(dict.fromkeys(messages))


@dataclass
class JobRunResult:
    """Outcome of an accepted submission."""

    job_name: str
    namespace: str
    preflight: PreflightResult


class JobRunService:
    """Runs catalog jobs on the cluster and reports their status.

    The cluster credential is resolved anew for every call.

    Example:
        ```python
        service = JobRunService()
        result = await service.run_job({
            "name": "Backup Database",
            "container": "backup-db:latest",
            "entrypoint": ["/bin/sh", "-c"],
            "parameters": ["./backup.sh --db=main"],
            "namespace": "jobshot",
        })
        status = await service.job_status(result.job_name, result.namespace)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        prober: ConnectivityProber | None = None,
        submitter: JobSubmitter | None = None,
        status_fetcher: JobStatusFetcher | None = None,
        catalog: JobCatalogService | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.prober = prober or ConnectivityProber(self.settings)
        self.submitter = submitter or JobSubmitter(self.settings)
        self.status_fetcher = status_fetcher or JobStatusFetcher(self.settings)
        self.catalog = catalog or JobCatalogService(self.settings)
        self.environ = environ

    def resolve_credential(self) -> ClusterCredential:
        return resolve_credential(self.settings, self.environ)

    def parse_definition(self, payload: Any) -> JobDefinition:
        """Validate a submitted job body.

        Raises:
            JobValidationError: If the body is not a valid job definition
        """
        if not isinstance(payload, dict):
            raise JobValidationError("Request body must be a JSON object describing the job.")
        try:
            return JobDefinition.model_validate(payload)
        except ValidationError as e:
            raise JobValidationError(format_validation_error(e)) from e

    def resolve_namespace(self, namespace: str | None) -> str:
        """Apply the namespace policy to a possibly missing namespace.

        Raises:
            JobValidationError: If the namespace is missing under the strict policy
        """
        if namespace and namespace.strip():
            return namespace.strip()
        if self.settings.namespace_policy == "strict":
            raise JobValidationError("Job namespace is required and must be a non-empty string.")
        return self.settings.default_namespace

    def pin_entrypoint(self, definition: JobDefinition) -> JobDefinition:
        """Enforce the catalog's entrypoint for jobs that come from the catalog.

        Image, parameters and resources may be edited per run; the command may
        not.

        Raises:
            JobValidationError: If the submitted entrypoint differs from the catalog's
            CatalogError: If the catalog cannot be loaded
        """
        entry = self.catalog.find(definition.name)
        if entry is None:
            return definition
        if definition.entrypoint is None:
            return definition.model_copy(update={"entrypoint": entry.entrypoint})
        if definition.entrypoint != entry.entrypoint:
            raise JobValidationError(
                f"Job entrypoint for '{definition.name}' does not match the catalog "
                "definition and cannot be changed at run time."
            )
        return definition

    async def run_job(self, payload: Any) -> JobRunResult:
        """Validate, preflight and submit one job.

        Args:
            payload: Decoded JSON body of the run request

        Returns:
            JobRunResult with the derived job name

        Raises:
            JobValidationError: Malformed job or namespace
            CredentialConfigError: Unusable explicit connection settings
            CatalogError: Catalog unavailable while pinning the entrypoint
            PreflightError: Connectivity, trust or permission check failed
            JobSubmissionError: The API server rejected the Job
        """
        definition = self.parse_definition(payload)
        namespace = self.resolve_namespace(definition.namespace)
        definition = self.pin_entrypoint(definition)
        manifest = build_job_manifest(definition, namespace)
        credential = self.resolve_credential()

        with cluster_span(
            SPAN_RUN_JOB,
            namespace,
            {ATTR_JOB_NAME: manifest.name, ATTR_CREDENTIAL_MODE: credential.mode.value},
        ):

            preflight = await self.prober.probe(credential, namespace)
            if not preflight.ok:
                raise PreflightError(preflight)

            logger.info(
                "Submitting job %s (%s) to namespace %s as %s",
                manifest.name,
                definition.name,
                namespace,
                credential.mode.value,
            )
            job_name = await asyncio.to_thread(
                self.submitter.submit,
                preflight.credential or credential,
                manifest,
            )

        return JobRunResult(job_name=job_name, namespace=namespace, preflight=preflight)

    def _status_credential(self) -> ClusterCredential | str:
        try:
            return self.resolve_credential()
        except CredentialConfigError as e:
            return str(e)

    async def job_status(self, name: str, namespace: str | None) -> JobStatusInfo:
        """Get the status of one job; failures land in ``error``.

        Raises:
            JobValidationError: If the namespace is missing under the strict policy
        """
        ns = self.resolve_namespace(namespace)
        credential = self._status_credential()
        if isinstance(credential, str):
            return JobStatusInfo(status=JobPhase.UNKNOWN, exists=False, error=credential)
        return await asyncio.to_thread(
            self.status_fetcher.get_status, credential, slugify(name), ns
        )

    async def job_statuses(
        self,
        names: list[str],
        namespace: str | None,
    ) -> dict[str, JobStatusInfo]:
        """Get the statuses of several jobs concurrently, keyed by requested name."""
        ns = self.resolve_namespace(namespace)
        credential = self._status_credential()
        if isinstance(credential, str):
            failed = JobStatusInfo(status=JobPhase.UNKNOWN, exists=False, error=credential)
            return {name: failed for name in names}

        slugs = [slugify(name) for name in names]
        statuses = await self.status_fetcher.get_statuses(credential, slugs, ns)
        return {name: statuses[slug] for name, slug in zip(names, slugs, strict=True)}


# Global singleton instance
_job_run_service: JobRunService | None = None


def get_job_run_service() -> JobRunService:
    """Get the global JobRunService instance."""
    global _job_run_service
    if _job_run_service is None:
        _job_run_service = JobRunService()
    return _job_run_service
