"""Construction of kubernetes client APIs from a resolved credential."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from jobshot_api.models.cluster import ClusterCredential

if TYPE_CHECKING:
    from kubernetes.client import AuthorizationV1Api, BatchV1Api, CoreV1Api, VersionApi


class KubernetesClientFactory:
    """Builds API objects bound to one credential.

    A fresh ``ApiClient`` is built per call; credentials are never loaded into
    the library's process-wide default configuration.
    """

    def api_client(self, credential: ClusterCredential) -> client.ApiClient:
        """Create an ApiClient for the credential's current endpoint."""
        configuration = client.Configuration()
        if credential.endpoint:
            configuration.host = credential.endpoint
        if credential.token:
            configuration.api_key = {"authorization": credential.token}
            configuration.api_key_prefix = {"authorization": "Bearer"}
        configuration.verify_ssl = credential.verify_tls
        if credential.verify_tls and credential.ca_path:
            configuration.ssl_ca_cert = credential.ca_path
        return client.ApiClient(configuration)

    def core_v1(self, credential: ClusterCredential) -> CoreV1Api:
        return client.CoreV1Api(self.api_client(credential))

    def batch_v1(self, credential: ClusterCredential) -> BatchV1Api:
        return client.BatchV1Api(self.api_client(credential))

    def authorization_v1(self, credential: ClusterCredential) -> AuthorizationV1Api:
        return client.AuthorizationV1Api(self.api_client(credential))

    def version(self, credential: ClusterCredential) -> VersionApi:
        return client.VersionApi(self.api_client(credential))


def describe_api_exception(exc: ApiException) -> str:
    """Render an ApiException as "<status> <reason>: <message>"."""
    message = None
    if exc.body:
        try:
            payload = json.loads(exc.body)
            if isinstance(payload, dict):
                message = payload.get("message")
        except (TypeError, ValueError):
            message = None
        if message is None:
            message = str(exc.body).strip()
    text = f"{exc.status} {exc.reason}" if exc.reason else str(exc.status)
    return f"{text}: {message}" if message else text


# Global singleton instance
_client_factory: KubernetesClientFactory | None = None


def get_client_factory() -> KubernetesClientFactory:
    """Get the global KubernetesClientFactory instance."""
    global _client_factory
    if _client_factory is None:
        _client_factory = KubernetesClientFactory()
    return _client_factory
