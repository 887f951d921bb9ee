"""Rendering of one-shot Kubernetes Job manifests from job definitions."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from kubernetes import client

from jobshot_api.models.job import JobDefinition

# Labels and annotations
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "jobshot"
NAME_LABEL = "jobshot/name"
POD_JOB_LABEL = "jobshot/job"
ORIGINAL_NAME_ANNOTATION = "jobshot/originalName"

# Job configuration
RESTART_POLICY = "Never"
BACKOFF_LIMIT = 1  # One retry at most

_WHITESPACE = re.compile(r"\s+")


def slugify(name: str) -> str:
    """Derive the cluster object name from a display name.

    Lowercases and collapses every whitespace run into a single hyphen, so
    "Backup  Database" becomes "backup-database". Distinct display names can
    collide ("Run Job" and "run  job"); the catalog loader rejects those.
    """
    return _WHITESPACE.sub("-", name.lower())


@dataclass(frozen=True)
class RenderedJobManifest:
    """A Job manifest ready for submission.

    Attributes:
        name: Derived cluster object name
        namespace: Target namespace
        display_name: Original display name, kept verbatim in an annotation
        job: The V1Job body
    """

    name: str
    namespace: str
    display_name: str
    job: client.V1Job

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON structure sent to the API server."""
        return client.ApiClient().sanitize_for_serialization(self.job)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))


def _resource_requirements(definition: JobDefinition) -> client.V1ResourceRequirements | None:
    if definition.resources is None:
        return None
    # Quantities pass through unvalidated; the API server owns their syntax
    return client.V1ResourceRequirements(
        requests={
            "cpu": definition.resources.requests.cpu,
            "memory": definition.resources.requests.memory,
        },
        limits={
            "cpu": definition.resources.limits.cpu,
            "memory": definition.resources.limits.memory,
        },
    )


def build_job_manifest(definition: JobDefinition, namespace: str) -> RenderedJobManifest:
    """Render the Job for a definition. Pure: same input, same manifest.

    Args:
        definition: Job to run; ``entrypoint`` becomes the container command
            unchanged and ``parameters`` its arguments
        namespace: Namespace the Job is created in

    Returns:
        RenderedJobManifest with ``restartPolicy=Never`` and ``backoffLimit=1``
    """
    job_name = slugify(definition.name)

    container = client.V1Container(
        name=job_name,
        image=definition.container,
        command=list(definition.entrypoint) if definition.entrypoint is not None else None,
        args=list(definition.parameters),
        resources=_resource_requirements(definition),
    )

    job = client.V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=client.V1ObjectMeta(
            name=job_name,
            namespace=namespace,
            labels={
                MANAGED_BY_LABEL: MANAGED_BY_VALUE,
                NAME_LABEL: job_name,
            },
            annotations={ORIGINAL_NAME_ANNOTATION: definition.name},
        ),
        spec=client.V1JobSpec(
            backoff_limit=BACKOFF_LIMIT,
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels={POD_JOB_LABEL: job_name}),
                spec=client.V1PodSpec(
                    restart_policy=RESTART_POLICY,
                    containers=[container],
                ),
            ),
        ),
    )

    return RenderedJobManifest(
        name=job_name,
        namespace=namespace,
        display_name=definition.name,
        job=job,
    )
