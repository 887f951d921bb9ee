"""Connectivity and permission preflight run before every job submission.

The preflight reads at most one pod from the target namespace. That read
needs a reachable endpoint, working TLS trust and a credential the cluster
accepts, while changing nothing. It is attempted:

1. directly over HTTPS against each candidate endpoint, moving on after
   network or TLS failures and stopping at a 401/403;
2. through the kubernetes client library when no direct attempt succeeded
   and none was refused for permissions.

When every read fails, a self-subject access review asks the cluster whether
the credential may ``list pods`` and ``create jobs`` so the diagnostic names
the missing grant. After a successful read the ``create jobs`` grant is
reviewed too, and the cluster version is compared with the configured minimum.
"""

from __future__ import annotations

import asyncio
import logging
import re
import ssl
from urllib.parse import quote

import httpx
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from jobshot_api.core.config import Settings
from jobshot_api.core.telemetry import (
    ATTR_CREDENTIAL_MODE,
    ATTR_PREFLIGHT_METHOD,
    ATTR_PREFLIGHT_OK,
    SPAN_PREFLIGHT,
    cluster_span,
)
from jobshot_api.models.cluster import (
    ClusterCredential,
    FailureKind,
    PermissionVerdict,
    PreflightResult,
    ProbeAttempt,
    ProbeMethod,
)
from jobshot_api.services.call_convention import CallConvention, CallConventionAdapter
from jobshot_api.services.k8s_client import (
    KubernetesClientFactory,
    describe_api_exception,
    get_client_factory,
)

logger = logging.getLogger(__name__)

# (verb, resource, API group) pairs a submission depends on
LIST_PODS = ("list", "pods", "")
CREATE_JOBS = ("create", "jobs", "batch")
REQUIRED_PERMISSIONS = (LIST_PODS, CREATE_JOBS)

TLS_FAILURE_MARKERS = (
    "certificate_verify_failed",
    "certificate verify failed",
    "self signed certificate",
    "self-signed certificate",
    "unable to get local issuer certificate",
    "wrong_version_number",
)

MAX_BODY_CHARS = 500


class PreflightError(Exception):
    """Raised when the preflight does not clear a submission."""

    def __init__(self, result: PreflightResult) -> None:
        super().__init__(result.detail)
        self.result = result


def looks_like_tls_failure(exc: BaseException) -> bool:
    """Whether an error, or anything in its cause chain, is a TLS trust failure."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ssl.SSLError):
            return True
        text = str(current).lower()
        if any(marker in text for marker in TLS_FAILURE_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


def parse_version(major: object, minor: object) -> tuple[int, int] | None:
    """Parse version fields like ("1", "31+") into (1, 31)."""
    if not isinstance(major, str) or not isinstance(minor, str):
        return None
    major_digits = re.sub(r"\D", "", major)
    minor_digits = re.sub(r"\D", "", minor)
    if not major_digits or not minor_digits:
        return None
    return int(major_digits), int(minor_digits)


def _minimum_version(value: str | None) -> tuple[int, int] | None:
    if not value:
        return None
    parts = value.strip().split(".")
    if len(parts) < 2:
        logger.warning("Ignoring malformed minimum Kubernetes version %r", value)
        return None
    return parse_version(parts[0], parts[1])


def _tls_guidance(exc: BaseException) -> str:
    return (
        f"TLS trust could not be established ({exc}). Mount the cluster CA bundle, "
        "set JOBSHOT_EXTERNAL_SKIP_TLS_VERIFY=true for an external endpoint, "
        "or opt in to JOBSHOT_TLS_INSECURE_FALLBACK=true"
    )


def _response_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.text[:MAX_BODY_CHARS].strip()


class ConnectivityProber:
    """Non-mutating connectivity, TLS and RBAC check against a cluster.

    Example:
        ```python
        prober = ConnectivityProber(settings)
        result = await prober.probe(resolve_credential(settings), "jobshot")
        if not result.ok:
            raise PreflightError(result)
        ```
    """

    def __init__(
        self,
        settings: Settings,
        client_factory: KubernetesClientFactory | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the prober.

        Args:
            settings: Application settings
            client_factory: Builds kubernetes client APIs (defaults to the global factory)
            transport: httpx transport for the direct read (tests inject a MockTransport)
        """
        self.settings = settings
        self.client_factory = client_factory or get_client_factory()
        self.transport = transport
        self.adapter = CallConventionAdapter(CallConvention(settings.structured_call_convention))

    @property
    def timeout(self) -> float:
        return self.settings.request_timeout_seconds

    async def probe(self, credential: ClusterCredential, namespace: str) -> PreflightResult:
        """Check that ``credential`` can list pods and create jobs in ``namespace``.

        Args:
            credential: Credential resolved for this request
            namespace: Target namespace

        Returns:
            PreflightResult; ``result.credential`` is pinned to the endpoint
            that answered when ``ok`` is True
        """
        ns = namespace.strip()
        if not ns:
            return PreflightResult(ok=False, detail="Namespace is empty after trimming.")

        with cluster_span(
            SPAN_PREFLIGHT, ns, {ATTR_CREDENTIAL_MODE: credential.mode.value}
        ) as span:

            attempts: list[ProbeAttempt] = []
            reachable = await self._probe_direct(credential, ns, attempts)
            method = ProbeMethod.DIRECT

            refused = any(a.failure is FailureKind.PERMISSION for a in attempts)
            if reachable is None and not refused:
                reachable = await self._probe_structured(credential, ns, attempts)
                method = ProbeMethod.STRUCTURED

            if reachable is None:
                target = self._self_check_target(credential, attempts)
                permissions = await self._self_check(target, ns, REQUIRED_PERMISSIONS)
                result = PreflightResult(
                    ok=False,
                    detail=self._failure_detail(ns, attempts, permissions),
                    attempts=attempts,
                    permissions=permissions,
                )
            else:
                result = await self._confirm(reachable, ns, method, attempts)

            span.set_attribute(ATTR_PREFLIGHT_OK, result.ok)
            span.set_attribute(ATTR_PREFLIGHT_METHOD, result.method.value)

        if result.ok:
            logger.info(
                "Preflight passed for namespace %s via %s (%s)",
                ns,
                result.method.value,
                result.endpoint,
            )
        else:
            logger.warning("Preflight failed for namespace %s: %s", ns, result.detail)
        return result

    # Direct transport

    def _verify_option(self, credential: ClusterCredential, verify: bool) -> bool | ssl.SSLContext:
        if not verify:
            return False
        if credential.ca_bundle:
            try:
                return ssl.create_default_context(cadata=credential.ca_bundle.decode("ascii"))
            except (ssl.SSLError, ValueError) as e:
                logger.warning("Ignoring unusable CA bundle %s: %s", credential.ca_path, e)
        return True

    async def _direct_read(
        self,
        credential: ClusterCredential,
        endpoint: str,
        namespace: str,
        verify: bool,
    ) -> ProbeAttempt:
        url = f"{endpoint.rstrip('/')}/api/v1/namespaces/{quote(namespace, safe='')}/pods"
        headers = {"Accept": "application/json"}
        if credential.token:
            headers["Authorization"] = f"Bearer {credential.token}"

        try:
            async with httpx.AsyncClient(
                verify=self._verify_option(credential, verify),
                timeout=self.timeout,
                transport=self.transport,
            ) as http:
                response = await http.get(url, params={"limit": 1}, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL, ssl.SSLError) as e:
            if looks_like_tls_failure(e):
                return ProbeAttempt(
                    ProbeMethod.DIRECT, endpoint, False, FailureKind.TLS, _tls_guidance(e)
                )
            return ProbeAttempt(
                ProbeMethod.DIRECT,
                endpoint,
                False,
                FailureKind.NETWORK,
                f"{type(e).__name__}: {e}",
            )

        if response.status_code in (401, 403):
            return ProbeAttempt(
                ProbeMethod.DIRECT,
                endpoint,
                False,
                FailureKind.PERMISSION,
                f"HTTP {response.status_code}: {_response_message(response)}",
            )
        if not response.is_success:
            return ProbeAttempt(
                ProbeMethod.DIRECT,
                endpoint,
                False,
                FailureKind.HTTP,
                f"HTTP {response.status_code}: {_response_message(response)}",
            )

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict) or not isinstance(payload.get("items"), list):
            return ProbeAttempt(
                ProbeMethod.DIRECT,
                endpoint,
                False,
                FailureKind.MALFORMED,
                "response is not a pod list",
            )
        return ProbeAttempt(ProbeMethod.DIRECT, endpoint, True)

    async def _probe_direct(
        self,
        credential: ClusterCredential,
        namespace: str,
        attempts: list[ProbeAttempt],
    ) -> ClusterCredential | None:
        for endpoint in credential.endpoints():
            candidate = credential.with_endpoint(endpoint)
            attempt = await self._direct_read(candidate, endpoint, namespace, candidate.verify_tls)

            if (
                attempt.failure is FailureKind.TLS
                and candidate.verify_tls
                and self.settings.tls_insecure_fallback
            ):
                attempts.append(attempt)
                logger.warning(
                    "TLS verification failed for %s; retrying once without verification",
                    endpoint,
                )
                candidate = candidate.insecure()
                attempt = await self._direct_read(candidate, endpoint, namespace, False)

            attempts.append(attempt)
            if attempt.ok:
                return candidate
            if attempt.failure is FailureKind.PERMISSION:
                # Another endpoint would see the same credential
                return None
            if attempt.failure in (FailureKind.NETWORK, FailureKind.TLS):
                logger.info("Endpoint %s unusable (%s), trying next", endpoint, attempt.message)
                continue
            return None
        return None

    # Structured client

    def _list_pods(self, credential: ClusterCredential, namespace: str) -> object:
        core_api = self.client_factory.core_v1(credential)
        return self.adapter.call(
            core_api.list_namespaced_pod,
            {"namespace": namespace},
            limit=1,
            _request_timeout=self.timeout,
        )

    async def _probe_structured(
        self,
        credential: ClusterCredential,
        namespace: str,
        attempts: list[ProbeAttempt],
    ) -> ClusterCredential | None:
        endpoints = credential.endpoints()
        target = credential.with_endpoint(credential.endpoint or endpoints[0]) if endpoints else None
        if target is None:
            attempts.append(
                ProbeAttempt(
                    ProbeMethod.STRUCTURED,
                    None,
                    False,
                    FailureKind.NETWORK,
                    "no API endpoint configured or discoverable",
                )
            )
            return None

        try:
            pods = await asyncio.to_thread(self._list_pods, target, namespace)
        except ApiException as e:
            if e.status in (401, 403):
                kind = FailureKind.PERMISSION
            elif e.status:
                kind = FailureKind.HTTP
            else:
                kind = FailureKind.TLS if looks_like_tls_failure(e) else FailureKind.NETWORK
            attempts.append(
                ProbeAttempt(
                    ProbeMethod.STRUCTURED,
                    target.endpoint,
                    False,
                    kind,
                    describe_api_exception(e),
                )
            )
            return None
        except Exception as e:
            tls = looks_like_tls_failure(e)
            attempts.append(
                ProbeAttempt(
                    ProbeMethod.STRUCTURED,
                    target.endpoint,
                    False,
                    FailureKind.TLS if tls else FailureKind.NETWORK,
                    _tls_guidance(e) if tls else f"{type(e).__name__}: {e}",
                )
            )
            return None

        if not isinstance(getattr(pods, "items", None), list):
            attempts.append(
                ProbeAttempt(
                    ProbeMethod.STRUCTURED,
                    target.endpoint,
                    False,
                    FailureKind.MALFORMED,
                    "response is not a pod list",
                )
            )
            return None

        attempts.append(ProbeAttempt(ProbeMethod.STRUCTURED, target.endpoint, True))
        return target

    # Permission self-check

    def _self_check_target(
        self,
        credential: ClusterCredential,
        attempts: list[ProbeAttempt],
    ) -> ClusterCredential | None:
        for attempt in attempts:
            if attempt.failure is FailureKind.PERMISSION and attempt.endpoint:
                return credential.with_endpoint(attempt.endpoint)
        endpoints = credential.endpoints()
        if credential.endpoint:
            return credential
        return credential.with_endpoint(endpoints[0]) if endpoints else None

    def _review(
        self,
        credential: ClusterCredential,
        namespace: str,
        permission: tuple[str, str, str],
    ) -> PermissionVerdict:
        verb, resource, group = permission
        review = client.V1SelfSubjectAccessReview(
            spec=client.V1SelfSubjectAccessReviewSpec(
                resource_attributes=client.V1ResourceAttributes(
                    namespace=namespace,
                    verb=verb,
                    group=group,
                    resource=resource,
                )
            )
        )
        try:
            auth_api = self.client_factory.authorization_v1(credential)
            response = self.adapter.call(
                auth_api.create_self_subject_access_review,
                {"body": review},
                _request_timeout=self.timeout,
            )
        except ApiException as e:
            return PermissionVerdict(verb, resource, group, None, describe_api_exception(e))
        except Exception as e:
            return PermissionVerdict(verb, resource, group, None, f"{type(e).__name__}: {e}")

        status = getattr(response, "status", None)
        if status is None:
            return PermissionVerdict(verb, resource, group, None, "review returned no status")
        reason = getattr(status, "reason", None)
        return PermissionVerdict(
            verb,
            resource,
            group,
            getattr(status, "allowed", None) is True,
            reason if isinstance(reason, str) and reason else None,
        )

    async def _self_check(
        self,
        credential: ClusterCredential | None,
        namespace: str,
        permissions: tuple[tuple[str, str, str], ...],
    ) -> list[PermissionVerdict]:
        if credential is None:
            return [
                PermissionVerdict(verb, resource, group, None, "no API endpoint to ask")
                for verb, resource, group in permissions
            ]
        verdicts = await asyncio.gather(
            *(
                asyncio.to_thread(self._review, credential, namespace, permission)
                for permission in permissions
            )
        )
        return list(verdicts)

    # Success path

    async def _cluster_version(self, credential: ClusterCredential) -> tuple[int, int] | None:
        def _get_code() -> object:
            return self.client_factory.version(credential).get_code(
                _request_timeout=self.timeout
            )

        try:
            info = await asyncio.to_thread(_get_code)
        except Exception as e:
            logger.warning("Failed to retrieve cluster version, not enforcing minimum: %s", e)
            return None
        return parse_version(getattr(info, "major", None), getattr(info, "minor", None))

    async def _confirm(
        self,
        credential: ClusterCredential,
        namespace: str,
        method: ProbeMethod,
        attempts: list[ProbeAttempt],
    ) -> PreflightResult:
        permissions = [PermissionVerdict(*LIST_PODS, allowed=True)]
        if self.settings.check_create_permission:
            permissions += await self._self_check(credential, namespace, (CREATE_JOBS,))

        denied = [v for v in permissions if v.allowed is False]
        if denied:
            detail = (
                f"Kubernetes preflight failed for namespace '{namespace}': pods are "
                f"readable at {credential.endpoint} but the credential is missing "
                "permissions.\nPermission check: "
                + "; ".join(v.describe() for v in permissions)
            )
            return PreflightResult(
                ok=False,
                detail=detail,
                method=method,
                endpoint=credential.endpoint,
                attempts=attempts,
                permissions=permissions,
            )

        minimum = _minimum_version(self.settings.min_kubernetes_version)
        if minimum is not None:
            version = await self._cluster_version(credential)
            if version is not None and version < minimum:
                return PreflightResult(
                    ok=False,
                    detail=(
                        f"Unsupported Kubernetes version {version[0]}.{version[1]}. "
                        f"Minimum required is {minimum[0]}.{minimum[1]}"
                    ),
                    method=method,
                    endpoint=credential.endpoint,
                    attempts=attempts,
                    permissions=permissions,
                )

        return PreflightResult(
            ok=True,
            detail=(
                f"Listed pods in namespace '{namespace}' via {method.value} "
                f"transport at {credential.endpoint}"
            ),
            method=method,
            endpoint=credential.endpoint,
            attempts=attempts,
            permissions=permissions,
            credential=credential,
        )

    def _failure_detail(
        self,
        namespace: str,
        attempts: list[ProbeAttempt],
        permissions: list[PermissionVerdict],
    ) -> str:
        lines = [f"Kubernetes preflight failed for namespace '{namespace}'."]
        lines += [f"- {attempt.describe()}" for attempt in attempts]
        if permissions:
            lines.append("Permission check: " + "; ".join(v.describe() for v in permissions))
        if any(v.allowed is False for v in permissions):
            lines.append(
                "Grant the denied permissions to the service account or token in use "
                "and resubmit."
            )
        return "\n".join(lines)
