"""Pytest configuration and shared fixtures for Jobshot tests."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from jobshot_api.core.config import Settings
from jobshot_api.models.cluster import ClusterCredential, CredentialMode

PRIMARY = "https://primary.example:6443"
SECONDARY = "https://10.96.0.1:443"


def review_responder(denied: dict[tuple[str, str], str] | None = None):
    """Build a fake create_self_subject_access_review.

    ``denied`` maps (verb, resource) to the denial reason; everything else is allowed.
    """
    denied = denied or {}

    def _respond(*args, **kwargs):
        body = kwargs.get("body") if "body" in kwargs else args[0]
        attrs = body.spec.resource_attributes
        key = (attrs.verb, attrs.resource)
        if key in denied:
            return SimpleNamespace(status=SimpleNamespace(allowed=False, reason=denied[key]))
        return SimpleNamespace(status=SimpleNamespace(allowed=True, reason=None))

    return _respond


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at temporary paths, telemetry off."""
    return Settings(
        k8s_api=None,
        k8s_token=None,
        service_account_token_path=tmp_path / "sa" / "token",
        service_account_ca_path=tmp_path / "sa" / "ca.crt",
        jobs_config_path=tmp_path / "jobs.yaml",
        static_dir=tmp_path / "dist",
        otel_enabled=False,
        min_kubernetes_version="1.31",
    )


@pytest.fixture
def credential() -> ClusterCredential:
    """External credential with a primary and a secondary endpoint."""
    return ClusterCredential(
        mode=CredentialMode.EXTERNAL,
        endpoint=PRIMARY,
        token="test-token",
        verify_tls=False,
        candidate_endpoints=(PRIMARY, SECONDARY),
    )


@pytest.fixture
def client_factory() -> MagicMock:
    """KubernetesClientFactory stand-in with an allowing, recent cluster."""
    factory = MagicMock()
    factory.authorization_v1.return_value.create_self_subject_access_review.side_effect = (
        review_responder()
    )
    factory.version.return_value.get_code.return_value = SimpleNamespace(major="1", minor="31")
    factory.core_v1.return_value.list_namespaced_pod.return_value = SimpleNamespace(items=[])
    return factory
