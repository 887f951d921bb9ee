"""Submission of rendered Job manifests to the cluster."""

from __future__ import annotations

import logging

from kubernetes.client.exceptions import ApiException

from jobshot_api.core.config import Settings
from jobshot_api.models.cluster import ClusterCredential
from jobshot_api.services.call_convention import CallConvention, CallConventionAdapter
from jobshot_api.services.job_builder import RenderedJobManifest
from jobshot_api.services.k8s_client import (
    KubernetesClientFactory,
    describe_api_exception,
    get_client_factory,
)

logger = logging.getLogger(__name__)


class JobSubmissionError(Exception):
    """Raised when the API server does not accept a Job."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class JobConflictError(JobSubmissionError):
    """Raised when a Job with the same derived name already exists."""

    pass


class JobSubmitter:
    """Creates Jobs; returns as soon as the API server accepts the object."""

    def __init__(
        self,
        settings: Settings,
        client_factory: KubernetesClientFactory | None = None,
    ) -> None:
        self.settings = settings
        self.client_factory = client_factory or get_client_factory()
        self.adapter = CallConventionAdapter(CallConvention(settings.structured_call_convention))

    def submit(self, credential: ClusterCredential, manifest: RenderedJobManifest) -> str:
        """Create the Job described by ``manifest``.

        Args:
            credential: Credential cleared by the preflight
            manifest: Rendered Job

        Returns:
            The Job's derived name, used for status polling

        Raises:
            JobConflictError: If a Job with this name already exists
            JobSubmissionError: If the API server rejects the Job or cannot be reached
        """
        try:
            batch_api = self.client_factory.batch_v1(credential)
            self.adapter.call(
                batch_api.create_namespaced_job,
                {"namespace": manifest.namespace, "body": manifest.job},
                _request_timeout=self.settings.request_timeout_seconds,
            )
        except ApiException as e:
            logger.error(
                "Job creation failed: namespace=%s job=%s status=%s reason=%s",
                manifest.namespace,
                manifest.name,
                e.status,
                e.reason,
            )
            if e.status == 409:
                raise JobConflictError(
                    f"Job '{manifest.name}' already exists in namespace "
                    f"'{manifest.namespace}'. Delete the previous Job before running "
                    f"'{manifest.display_name}' again ({describe_api_exception(e)})",
                    status=e.status,
                ) from e
            raise JobSubmissionError(describe_api_exception(e), status=e.status) from e
        except Exception as e:
            logger.error(
                "Job creation failed: namespace=%s job=%s error=%s",
                manifest.namespace,
                manifest.name,
                type(e).__name__,
                exc_info=True,
            )
            raise JobSubmissionError(f"{type(e).__name__}: {e}") from e

        logger.info("Created job %s in namespace %s", manifest.name, manifest.namespace)
        return manifest.name
