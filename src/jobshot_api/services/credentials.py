"""Resolution of the cluster credential used for a request.

The credential is resolved on every request from settings, the process
environment and the mounted service-account files. Nothing is cached, so a
rotated token or a changed configuration is picked up by the next request.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from urllib.parse import urlparse

from jobshot_api.core.config import Settings
from jobshot_api.models.cluster import ClusterCredential, CredentialMode

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_PORT = "443"


class CredentialConfigError(Exception):
    """Raised when explicitly configured connection parameters are unusable."""

    pass


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8").strip() or None
    except OSError as e:
        logger.debug("Could not read %s: %s", path, e)
        return None


def _read_bytes(path: Path) -> bytes | None:
    try:
        return path.read_bytes() or None
    except OSError as e:
        logger.debug("Could not read %s: %s", path, e)
        return None


def in_cluster_endpoint(settings: Settings, environ: Mapping[str, str]) -> str | None:
    """Derive the API server URL from <PREFIX>_SERVICE_HOST/_PORT variables.

    Raises:
        CredentialConfigError: If the service port is not a valid port number
    """
    prefix = settings.in_cluster_service_prefix.upper()
    host = (environ.get(f"{prefix}_SERVICE_HOST") or "").strip()
    if not host:
        return None
    port = (environ.get(f"{prefix}_SERVICE_PORT") or DEFAULT_SERVICE_PORT).strip()
    if not port.isdigit() or not 0 < int(port) < 65536:
        raise CredentialConfigError(
            f"In-cluster service port ({prefix}_SERVICE_PORT) is not a valid port: {port!r}"
        )
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"  # IPv6 literal
    return f"https://{host}:{port}"


def _validate_external_endpoint(endpoint: str) -> str:
    parsed = urlparse(endpoint)
    try:
        parsed.port
    except ValueError as e:
        raise CredentialConfigError(
            "Kubernetes API server address (JOBSHOT_K8S_API) is not a valid URL: invalid port."
        ) from e
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise CredentialConfigError(
            "Kubernetes API server address (JOBSHOT_K8S_API) is not a valid URL."
        )
    return endpoint.rstrip("/")


def _order(primary: str | None, secondary: str | None) -> tuple[str, ...]:
    ordered: list[str] = []
    for endpoint in (primary, secondary):
        if endpoint and endpoint not in ordered:
            ordered.append(endpoint)
    return tuple(ordered)


def resolve_credential(
    settings: Settings,
    environ: Mapping[str, str] | None = None,
) -> ClusterCredential:
    """Resolve the cluster credential for one request.

    External mode is selected when both an explicit endpoint and token are
    configured; TLS verification is then skipped unless
    ``external_skip_tls_verify`` is turned off. Otherwise the in-cluster
    service account is used. Unreadable token or CA files yield a credential
    without them; the preflight reports the resulting auth failure.

    Args:
        settings: Application settings
        environ: Environment to read service discovery variables from
            (defaults to ``os.environ``)

    Returns:
        ClusterCredential with endpoints ordered per ``endpoint_order``

    Raises:
        CredentialConfigError: If the explicit endpoint is not an http(s) URL,
            or the in-cluster port is malformed and no explicit credential is set
    """
    env = os.environ if environ is None else environ
    explicit_endpoint = (settings.k8s_api or "").strip() or None
    explicit_token = (settings.k8s_token or "").strip() or None
    if explicit_endpoint:
        explicit_endpoint = _validate_external_endpoint(explicit_endpoint)

    try:
        discovered = in_cluster_endpoint(settings, env)
    except CredentialConfigError as e:
        if not (explicit_endpoint and explicit_token):
            raise
        logger.warning("Ignoring in-cluster endpoint: %s", e)
        discovered = None

    if settings.endpoint_order == "in-cluster-first":
        candidates = _order(discovered, explicit_endpoint)
    else:
        candidates = _order(explicit_endpoint, discovered)

    if explicit_endpoint and explicit_token:
        return ClusterCredential(
            mode=CredentialMode.EXTERNAL,
            endpoint=explicit_endpoint,
            token=explicit_token,
            verify_tls=not settings.external_skip_tls_verify,
            candidate_endpoints=candidates,
        )

    token = _read_text(settings.service_account_token_path)
    ca_bundle = _read_bytes(settings.service_account_ca_path)
    if token is None:
        logger.warning(
            "No service account token at %s; cluster calls will be unauthenticated",
            settings.service_account_token_path,
        )

    return ClusterCredential(
        mode=CredentialMode.IN_CLUSTER,
        endpoint=discovered,
        token=token,
        ca_bundle=ca_bundle,
        ca_path=str(settings.service_account_ca_path) if ca_bundle else None,
        verify_tls=True,
        candidate_endpoints=candidates,
    )
