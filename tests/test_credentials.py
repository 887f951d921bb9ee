"""Tests for cluster credential resolution."""

import pytest

from jobshot_api.core.config import Settings
from jobshot_api.models.cluster import CredentialMode
from jobshot_api.services.credentials import (
    CredentialConfigError,
    in_cluster_endpoint,
    resolve_credential,
)

SERVICE_ENV = {"KUBERNETES_SERVICE_HOST": "10.96.0.1", "KUBERNETES_SERVICE_PORT": "443"}


@pytest.fixture
def mounted_account(settings: Settings) -> Settings:
    """Write a service account token and CA bundle to the configured paths."""
    settings.service_account_token_path.parent.mkdir(parents=True, exist_ok=True)
    settings.service_account_token_path.write_text("sa-token\n")
    settings.service_account_ca_path.write_bytes(b"-----BEGIN CERTIFICATE-----\n")
    return settings


class TestExternalMode:
    """Tests for explicitly configured endpoint + token."""

    def test_external_mode_when_endpoint_and_token_set(self, settings: Settings):
        """Test that both explicit values select external mode."""
        settings.k8s_api = "https://cluster.example:6443/"
        settings.k8s_token = "abc"

        credential = resolve_credential(settings, environ={})

        assert credential.mode == CredentialMode.EXTERNAL
        assert credential.endpoint == "https://cluster.example:6443"
        assert credential.token == "abc"
        assert credential.ca_bundle is None

    def test_external_mode_skips_tls_verification_by_default(self, settings: Settings):
        """Test that external mode does not verify TLS unless configured to."""
        settings.k8s_api = "https://cluster.example:6443"
        settings.k8s_token = "abc"

        assert resolve_credential(settings, environ={}).verify_tls is False

        settings.external_skip_tls_verify = False
        assert resolve_credential(settings, environ={}).verify_tls is True

    def test_invalid_endpoint_rejected(self, settings: Settings):
        """Test that a non-URL endpoint is a configuration error."""
        settings.k8s_api = "not a url"
        settings.k8s_token = "abc"

        with pytest.raises(CredentialConfigError, match="not a valid URL"):
            resolve_credential(settings, environ={})

    def test_invalid_port_rejected(self, settings: Settings):
        """Test that a non-numeric port is a configuration error."""
        settings.k8s_api = "https://cluster.example:notaport"
        settings.k8s_token = "abc"

        with pytest.raises(CredentialConfigError, match="invalid port"):
            resolve_credential(settings, environ={})

    def test_bad_service_port_ignored_in_external_mode(self, settings: Settings):
        """Test that a broken discovered port does not block an explicit endpoint."""
        settings.k8s_api = "https://cluster.example:6443"
        settings.k8s_token = "abc"
        env = {"KUBERNETES_SERVICE_HOST": "10.96.0.1", "KUBERNETES_SERVICE_PORT": "https"}

        credential = resolve_credential(settings, environ=env)

        assert credential.endpoints() == ("https://cluster.example:6443",)

    def test_token_not_in_repr(self, settings: Settings):
        """Test that the token never shows up in the credential repr."""
        settings.k8s_api = "https://cluster.example:6443"
        settings.k8s_token = "super-secret-token"

        credential = resolve_credential(settings, environ={})

        assert "super-secret-token" not in repr(credential)


class TestInClusterMode:
    """Tests for ambient service account discovery."""

    def test_in_cluster_mode_reads_mounted_files(self, mounted_account: Settings):
        """Test that the mounted token and CA are used."""
        credential = resolve_credential(mounted_account, environ=SERVICE_ENV)

        assert credential.mode == CredentialMode.IN_CLUSTER
        assert credential.endpoint == "https://10.96.0.1:443"
        assert credential.token == "sa-token"
        assert credential.ca_bundle == b"-----BEGIN CERTIFICATE-----\n"
        assert credential.ca_path == str(mounted_account.service_account_ca_path)
        assert credential.verify_tls is True

    def test_missing_mount_files_yield_empty_token(self, settings: Settings):
        """Test that missing files produce a credential without token or CA."""
        credential = resolve_credential(settings, environ=SERVICE_ENV)

        assert credential.mode == CredentialMode.IN_CLUSTER
        assert credential.token is None
        assert credential.ca_bundle is None
        assert credential.ca_path is None

    def test_token_only_is_not_external(self, mounted_account: Settings):
        """Test that a token without an endpoint falls back to in-cluster mode."""
        mounted_account.k8s_token = "abc"

        credential = resolve_credential(mounted_account, environ=SERVICE_ENV)

        assert credential.mode == CredentialMode.IN_CLUSTER
        assert credential.token == "sa-token"

    def test_no_service_env_means_no_endpoint(self, settings: Settings):
        """Test that without discovery variables there is nothing to try."""
        credential = resolve_credential(settings, environ={})

        assert credential.endpoint is None
        assert credential.endpoints() == ()

    def test_ipv6_host_is_bracketed(self, settings: Settings):
        """Test that IPv6 service hosts form a valid URL."""
        endpoint = in_cluster_endpoint(
            settings, {"KUBERNETES_SERVICE_HOST": "fd00::1", "KUBERNETES_SERVICE_PORT": "443"}
        )

        assert endpoint == "https://[fd00::1]:443"

    def test_invalid_service_port(self, mounted_account: Settings):
        """Test that a non-numeric service port is a configuration error."""
        env = {"KUBERNETES_SERVICE_HOST": "10.96.0.1", "KUBERNETES_SERVICE_PORT": "tcp://443"}

        with pytest.raises(CredentialConfigError, match="KUBERNETES_SERVICE_PORT"):
            resolve_credential(mounted_account, environ=env)

    def test_default_port(self, settings: Settings):
        """Test that the port defaults to 443."""
        endpoint = in_cluster_endpoint(settings, {"KUBERNETES_SERVICE_HOST": "10.0.0.1"})

        assert endpoint == "https://10.0.0.1:443"


class TestEndpointOrder:
    """Tests for candidate endpoint ordering."""

    def test_external_first_by_default(self, settings: Settings):
        """Test that the explicit endpoint is tried before the discovered one."""
        settings.k8s_api = "https://cluster.example:6443"
        settings.k8s_token = "abc"

        credential = resolve_credential(settings, environ=SERVICE_ENV)

        assert credential.endpoints() == ("https://cluster.example:6443", "https://10.96.0.1:443")

    def test_in_cluster_first(self, settings: Settings):
        """Test that the order can be flipped."""
        settings.k8s_api = "https://cluster.example:6443"
        settings.k8s_token = "abc"
        settings.endpoint_order = "in-cluster-first"

        credential = resolve_credential(settings, environ=SERVICE_ENV)

        assert credential.endpoints() == ("https://10.96.0.1:443", "https://cluster.example:6443")
        assert credential.endpoint == "https://cluster.example:6443"

    def test_resolved_fresh_each_call(self, mounted_account: Settings):
        """Test that a rotated token is picked up by the next resolution."""
        first = resolve_credential(mounted_account, environ=SERVICE_ENV)
        mounted_account.service_account_token_path.write_text("rotated")
        second = resolve_credential(mounted_account, environ=SERVICE_ENV)

        assert first.token == "sa-token"
        assert second.token == "rotated"
