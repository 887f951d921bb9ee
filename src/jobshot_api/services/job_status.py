"""Status reads for submitted Jobs, polled by the UI."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from kubernetes.client.exceptions import ApiException

from jobshot_api.core.config import Settings
from jobshot_api.models.cluster import ClusterCredential
from jobshot_api.models.job import JobPhase, JobStatusDetails, JobStatusInfo
from jobshot_api.services.call_convention import CallConvention, CallConventionAdapter
from jobshot_api.services.k8s_client import (
    KubernetesClientFactory,
    describe_api_exception,
    get_client_factory,
)

if TYPE_CHECKING:
    from kubernetes.client import V1Job

logger = logging.getLogger(__name__)


def determine_job_status(job: V1Job) -> JobStatusInfo:
    """Derive the polled status from a V1Job's pod counts and conditions."""
    status = job.status
    details = JobStatusDetails(
        active=(status.active or 0) if status else 0,
        succeeded=(status.succeeded or 0) if status else 0,
        failed=(status.failed or 0) if status else 0,
    )

    if details.active > 0:
        phase = JobPhase.RUNNING
    else:
        phase = JobPhase.PENDING
        conditions = (status.conditions or []) if status else []
        for condition in conditions:
            if condition.type == "Complete" and condition.status == "True":
                phase = JobPhase.SUCCEEDED
                break
            if condition.type == "Failed" and condition.status == "True":
                phase = JobPhase.FAILED
                break
        else:
            if details.succeeded > 0:
                phase = JobPhase.SUCCEEDED
            elif details.failed > 0:
                phase = JobPhase.FAILED

    return JobStatusInfo(
        status=phase,
        exists=True,
        isRunning=details.active > 0,
        details=details,
    )


class JobStatusFetcher:
    """Reads Job status without ever raising into the polling caller."""

    def __init__(
        self,
        settings: Settings,
        client_factory: KubernetesClientFactory | None = None,
    ) -> None:
        self.settings = settings
        self.client_factory = client_factory or get_client_factory()
        self.adapter = CallConventionAdapter(CallConvention(settings.structured_call_convention))

    def get_status(
        self,
        credential: ClusterCredential,
        job_name: str,
        namespace: str,
    ) -> JobStatusInfo:
        """Get the current status of a Job.

        A missing Job yields ``exists=False`` without an error; any other
        failure is reported in the ``error`` field.
        """
        try:
            batch_api = self.client_factory.batch_v1(credential)
            job = self.adapter.call(
                batch_api.read_namespaced_job,
                {"name": job_name, "namespace": namespace},
                _request_timeout=self.settings.request_timeout_seconds,
            )
        except ApiException as e:
            if e.status == 404:
                return JobStatusInfo(status=JobPhase.NOT_FOUND, exists=False, isRunning=False)
            logger.warning("Failed to read job %s in %s: %s", job_name, namespace, e.reason)
            return JobStatusInfo(
                status=JobPhase.UNKNOWN,
                exists=False,
                isRunning=False,
                error=describe_api_exception(e),
            )
        except Exception as e:
            logger.warning("Failed to read job %s in %s: %s", job_name, namespace, e)
            return JobStatusInfo(
                status=JobPhase.UNKNOWN,
                exists=False,
                isRunning=False,
                error=f"{type(e).__name__}: {e}",
            )

        return determine_job_status(job)

    async def get_statuses(
        self,
        credential: ClusterCredential,
        job_names: list[str],
        namespace: str,
    ) -> dict[str, JobStatusInfo]:
        """Fetch several statuses concurrently and return them together."""
        results = await asyncio.gather(
            *(
                asyncio.to_thread(self.get_status, credential, name, namespace)
                for name in job_names
            )
        )
        return dict(zip(job_names, results, strict=True))
