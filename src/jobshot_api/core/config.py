"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="JOBSHOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = "Jobshot"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # Server
    host: str = "0.0.0.0"
    port: int = 3000

    # External cluster access (both must be set for external mode)
    k8s_api: str | None = Field(
        default=None,
        validation_alias=AliasChoices("JOBSHOT_K8S_API", "VITE_K8S_API"),
    )
    k8s_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("JOBSHOT_K8S_TOKEN", "VITE_K8S_TOKEN"),
    )
    external_skip_tls_verify: bool = True

    # In-cluster discovery
    in_cluster_service_prefix: str = "KUBERNETES"
    service_account_token_path: Path = Path("/var/run/secrets/kubernetes.io/serviceaccount/token")
    service_account_ca_path: Path = Path("/var/run/secrets/kubernetes.io/serviceaccount/ca.crt")

    # Preflight
    tls_insecure_fallback: bool = False  # Retry once without TLS verification
    endpoint_order: Literal["external-first", "in-cluster-first"] = "external-first"
    request_timeout_seconds: float = 5.0
    structured_call_convention: Literal["keyword", "positional"] = "keyword"
    check_create_permission: bool = True
    min_kubernetes_version: str | None = "1.31"

    # Namespace policy
    namespace_policy: Literal["default", "strict"] = "default"
    default_namespace: str = "default"

    # Catalog and UI
    jobs_config_path: Path = Path("config/jobs.yaml")
    static_dir: Path = Path("dist")

    # OpenTelemetry
    otel_enabled: bool = True
    otel_service_name: str = "jobshot"
    otel_exporter_endpoint: str = "http://localhost:4317"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
