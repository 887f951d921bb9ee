"""Cluster access and preflight models."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum


class CredentialMode(str, Enum):
    """How the process reaches the Kubernetes API."""

    EXTERNAL = "external"  # Explicit endpoint + bearer token from configuration
    IN_CLUSTER = "in-cluster"  # Mounted service account, discovered service address


@dataclass(frozen=True)
class ClusterCredential:
    """Resolved cluster credential for a single request.

    The token and CA bytes are excluded from repr so a credential can be
    logged without leaking secrets.

    Attributes:
        mode: External or in-cluster
        endpoint: API server base URL for this mode, if known
        token: Bearer token, None if the mounted token was unreadable
        ca_bundle: PEM trust anchors, None when absent
        ca_path: File the CA bundle was read from
        verify_tls: Whether server certificates are verified
        candidate_endpoints: Endpoints to try, in preference order
    """

    mode: CredentialMode
    endpoint: str | None
    token: str | None = field(default=None, repr=False)
    ca_bundle: bytes | None = field(default=None, repr=False)
    ca_path: str | None = None
    verify_tls: bool = True
    candidate_endpoints: tuple[str, ...] = ()

    def with_endpoint(self, endpoint: str) -> ClusterCredential:
        """Return a copy of this credential pinned to one endpoint."""
        return replace(self, endpoint=endpoint)

    def insecure(self) -> ClusterCredential:
        """Return a copy with TLS verification disabled."""
        return replace(self, verify_tls=False)

    def endpoints(self) -> tuple[str, ...]:
        """Endpoints to try in order; falls back to the mode's own endpoint."""
        if self.candidate_endpoints:
            return self.candidate_endpoints
        return (self.endpoint,) if self.endpoint else ()


class ProbeMethod(str, Enum):
    """Code path that satisfied the preflight read."""

    DIRECT = "direct"  # Raw HTTPS read against the API server
    STRUCTURED = "structured"  # kubernetes client library
    NONE = "none"


class FailureKind(str, Enum):
    """Classification of a failed preflight attempt."""

    NETWORK = "network"
    TLS = "tls"
    PERMISSION = "permission"
    HTTP = "http"
    MALFORMED = "malformed"


@dataclass
class ProbeAttempt:
    """Outcome of one read attempt against one endpoint."""

    method: ProbeMethod
    endpoint: str | None
    ok: bool
    failure: FailureKind | None = None
    message: str = ""

    def describe(self) -> str:
        where = self.endpoint or "<no endpoint>"
        if self.ok:
            return f"{self.method.value} {where}: ok"
        kind = self.failure.value if self.failure else "error"
        return f"{self.method.value} {where}: {kind} error: {self.message}"


@dataclass
class PermissionVerdict:
    """Answer of a self-subject access review for one verb/resource pair."""

    verb: str
    resource: str
    group: str = ""
    allowed: bool | None = None  # None when the review itself failed
    reason: str | None = None

    @property
    def label(self) -> str:
        return f"{self.verb} {self.resource}"

    def describe(self) -> str:
        if self.allowed is None:
            return f"{self.label}=unknown ({self.reason or 'review failed'})"
        if self.allowed:
            return f"{self.label}=allowed"
        if self.reason:
            return f"{self.label}=denied ({self.reason})"
        return f"{self.label}=denied"


@dataclass
class PreflightResult:
    """Outcome of the connectivity and permission preflight.

    Attributes:
        ok: True when the cluster can be used for a submission
        detail: Human-readable diagnostic
        method: Path that succeeded (direct or structured)
        endpoint: Endpoint that answered, used for the submission
        attempts: Every read attempt, in order
        permissions: Self-check verdicts, when a self-check ran
        credential: Credential pinned to the answering endpoint, set when ok
    """

    ok: bool
    detail: str
    method: ProbeMethod = ProbeMethod.NONE
    endpoint: str | None = None
    attempts: list[ProbeAttempt] = field(default_factory=list)
    permissions: list[PermissionVerdict] = field(default_factory=list)
    credential: ClusterCredential | None = None

    @property
    def denied(self) -> list[PermissionVerdict]:
        return [v for v in self.permissions if v.allowed is False]
