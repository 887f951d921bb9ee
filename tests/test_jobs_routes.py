"""Tests for the job API routes."""

import logging
from collections.abc import Iterator
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import MaxRetryError

from jobshot_api.core.config import get_settings
from jobshot_api.main import create_app
from jobshot_api.services.catalog import JobCatalogService, get_catalog_service
from jobshot_api.services.job_status import JobStatusFetcher
from jobshot_api.services.job_submitter import JobSubmitter
from jobshot_api.services.jobs import JobRunService, get_job_run_service
from jobshot_api.services.preflight import ConnectivityProber

from .conftest import review_responder

CATALOG = """
jobs:
  - name: Backup Database
    container: backup-db:latest
    entrypoint: ["/bin/sh", "-c"]
    parameters: ["./backup.sh --db=main"]
    namespace: jobshot
"""

BACKUP_JOB = {
    "name": "Backup Database",
    "container": "backup-db:latest",
    "entrypoint": ["/bin/sh", "-c"],
    "parameters": ["./backup.sh --db=main"],
    "namespace": "jobshot",
}


def pod_list(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"kind": "PodList", "items": []})


@pytest.fixture
def cluster_settings(settings):
    """Settings for an external cluster with a catalog on disk."""
    settings.k8s_api = "https://cluster.example:6443"
    settings.k8s_token = "test-token"
    settings.jobs_config_path.write_text(CATALOG)
    return settings


@pytest.fixture
def client(cluster_settings, client_factory) -> Iterator[TestClient]:
    """Test client whose services talk to a mocked cluster."""
    catalog = JobCatalogService(cluster_settings)
    service = JobRunService(
        settings=cluster_settings,
        prober=ConnectivityProber(
            cluster_settings,
            client_factory=client_factory,
            transport=httpx.MockTransport(pod_list),
        ),
        submitter=JobSubmitter(cluster_settings, client_factory),
        status_fetcher=JobStatusFetcher(cluster_settings, client_factory),
        catalog=catalog,
        environ={},
    )

    app = create_app()
    app.dependency_overrides[get_settings] = lambda: cluster_settings
    app.dependency_overrides[get_job_run_service] = lambda: service
    app.dependency_overrides[get_catalog_service] = lambda: catalog

    with TestClient(app) as test_client:
        yield test_client


class TestListJobs:
    """Tests for GET /api/jobs."""

    def test_list_jobs(self, client: TestClient):
        """Test that the catalog is returned."""
        response = client.get("/api/jobs")

        assert response.status_code == 200
        jobs = response.json()["jobs"]
        assert jobs[0]["name"] == "Backup Database"
        assert jobs[0]["entrypoint"] == ["/bin/sh", "-c"]

    def test_default_resources_filled_in(self, client: TestClient):
        """Test that entries without resources are listed with the defaults."""
        job = client.get("/api/jobs").json()["jobs"][0]

        assert job["resources"] == {
            "requests": {"cpu": "250m", "memory": "64Mi"},
            "limits": {"cpu": "500m", "memory": "128Mi"},
        }

    def test_missing_catalog(self, client: TestClient, cluster_settings):
        """Test that an unreadable catalog is a JSON 500."""
        cluster_settings.jobs_config_path.unlink()

        response = client.get("/api/jobs")

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to load jobs.yaml"
        assert "Cannot read" in response.json()["details"]


class TestRunJob:
    """Tests for POST /api/run-job."""

    def test_run_job_success(self, client: TestClient, client_factory):
        """Test that a job clearing preflight is submitted."""
        response = client.post("/api/run-job", json=BACKUP_JOB)

        assert response.status_code == 200
        assert response.json() == {
            "message": "Job started",
            "jobName": "backup-database",
            "namespace": "jobshot",
        }
        create = client_factory.batch_v1.return_value.create_namespaced_job
        create.assert_called_once()
        body = create.call_args.kwargs["body"]
        assert body.metadata.name == "backup-database"
        assert body.spec.template.spec.containers[0].command == ["/bin/sh", "-c"]

    def test_success_logs_preflight_path(self, client: TestClient, caplog):
        """Test that the accepted submission logs how the cluster was reached."""
        with caplog.at_level(logging.INFO, logger="jobshot_api.routes.jobs"):
            client.post("/api/run-job", json=BACKUP_JOB)

        assert (
            "Job backup-database started in namespace jobshot "
            "(preflight via direct at https://cluster.example:6443)"
        ) in caplog.text

    def test_missing_create_permission_blocks_submission(self, client: TestClient, client_factory):
        """Test that readable pods without create jobs is a 503 and nothing is created."""
        client_factory.authorization_v1.return_value.create_self_subject_access_review.side_effect = review_responder(
            {("create", "jobs"): ""}
        )

        response = client.post("/api/run-job", json=BACKUP_JOB)

        assert response.status_code == 503
        assert "create jobs=denied" in response.text
        client_factory.batch_v1.return_value.create_namespaced_job.assert_not_called()

    def test_unsupported_cluster_version(self, client: TestClient, client_factory):
        """Test that an old cluster is a 503."""
        client_factory.version.return_value.get_code.return_value = SimpleNamespace(
            major="1", minor="30"
        )

        response = client.post("/api/run-job", json=BACKUP_JOB)

        assert response.status_code == 503
        assert "Unsupported Kubernetes version 1.30" in response.text

    def test_invalid_json(self, client: TestClient):
        """Test that a non-JSON body is a 400."""
        response = client.post(
            "/api/run-job", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400

    def test_blank_name(self, client: TestClient, client_factory):
        """Test that a blank name is rejected before any cluster call."""
        response = client.post("/api/run-job", json={**BACKUP_JOB, "name": "  "})

        assert response.status_code == 400
        assert "Job name is required" in response.text
        client_factory.core_v1.assert_not_called()
        client_factory.batch_v1.assert_not_called()

    def test_parameters_must_be_array(self, client: TestClient):
        """Test that non-list parameters are rejected."""
        response = client.post("/api/run-job", json={**BACKUP_JOB, "parameters": "--full"})

        assert response.status_code == 400
        assert response.text == "Job parameters must be an array."

    def test_missing_namespace_uses_default(self, client: TestClient):
        """Test the default namespace policy."""
        job = {key: value for key, value in BACKUP_JOB.items() if key != "namespace"}

        response = client.post("/api/run-job", json=job)

        assert response.status_code == 200
        assert response.json()["namespace"] == "default"

    def test_missing_namespace_strict(self, client: TestClient, cluster_settings):
        """Test that the strict policy requires a namespace."""
        cluster_settings.namespace_policy = "strict"
        job = {**BACKUP_JOB, "namespace": " "}

        response = client.post("/api/run-job", json=job)

        assert response.status_code == 400
        assert "namespace is required" in response.text

    def test_entrypoint_is_pinned_to_catalog(self, client: TestClient, client_factory):
        """Test that the catalog command cannot be replaced at run time."""
        response = client.post(
            "/api/run-job", json={**BACKUP_JOB, "entrypoint": ["/bin/rm", "-rf"]}
        )

        assert response.status_code == 400
        assert "entrypoint" in response.text
        client_factory.batch_v1.return_value.create_namespaced_job.assert_not_called()

    def test_omitted_entrypoint_taken_from_catalog(self, client: TestClient, client_factory):
        """Test that an omitted entrypoint uses the catalog's."""
        job = {key: value for key, value in BACKUP_JOB.items() if key != "entrypoint"}

        response = client.post("/api/run-job", json=job)

        assert response.status_code == 200
        body = client_factory.batch_v1.return_value.create_namespaced_job.call_args.kwargs["body"]
        assert body.spec.template.spec.containers[0].command == ["/bin/sh", "-c"]

    def test_existing_job_conflict(self, client: TestClient, client_factory):
        """Test that a duplicate Job is reported with a remedy."""
        client_factory.batch_v1.return_value.create_namespaced_job.side_effect = ApiException(
            status=409, reason="Conflict"
        )

        response = client.post("/api/run-job", json=BACKUP_JOB)

        assert response.status_code == 500
        assert response.text.startswith("Failed to start job: ")
        assert "already exists" in response.text

    def test_unexpected_create_failure(self, client: TestClient, client_factory):
        """Test that a transport failure during create is a plain-text 500."""
        client_factory.batch_v1.return_value.create_namespaced_job.side_effect = MaxRetryError(
            None, "/apis/batch/v1/namespaces/jobshot/jobs"
        )

        response = client.post("/api/run-job", json=BACKUP_JOB)

        assert response.status_code == 500
        assert response.text.startswith("Failed to start job: MaxRetryError: ")

    def test_endpoint_with_invalid_port(self, client: TestClient, cluster_settings, client_factory):
        """Test that an unparsable port is a 400 before any cluster call."""
        cluster_settings.k8s_api = "https://cluster.example:notaport"

        response = client.post("/api/run-job", json=BACKUP_JOB)

        assert response.status_code == 400
        assert "invalid port" in response.text
        client_factory.core_v1.assert_not_called()

    def test_invalid_endpoint_setting(self, client: TestClient, cluster_settings):
        """Test that a malformed API address is a 400."""
        cluster_settings.k8s_api = "cluster.example"

        response = client.post("/api/run-job", json=BACKUP_JOB)

        assert response.status_code == 400
        assert "not a valid URL" in response.text


class TestJobStatus:
    """Tests for the status routes."""

    def test_never_run_job(self, client: TestClient, client_factory):
        """Test that a job that was never run reports exists false without error."""
        client_factory.batch_v1.return_value.read_namespaced_job.side_effect = ApiException(
            status=404, reason="Not Found"
        )

        response = client.get("/api/job-status/Backup Database", params={"namespace": "jobshot"})

        assert response.status_code == 200
        data = response.json()
        assert data["exists"] is False
        assert data["isRunning"] is False
        assert "error" not in data
        read = client_factory.batch_v1.return_value.read_namespaced_job
        assert read.call_args.kwargs["name"] == "backup-database"

    def test_running_job(self, client: TestClient, client_factory):
        """Test a job with an active pod."""
        client_factory.batch_v1.return_value.read_namespaced_job.return_value = SimpleNamespace(
            status=SimpleNamespace(active=1, succeeded=0, failed=0, conditions=None)
        )

        data = client.get("/api/job-status/backup-database?namespace=jobshot").json()

        assert data["status"] == "Running"
        assert data["isRunning"] is True
        assert data["details"] == {"active": 1, "succeeded": 0, "failed": 0}

    def test_status_error_is_reported_in_body(self, client: TestClient, client_factory):
        """Test that a cluster failure is a 200 with an error field."""
        client_factory.batch_v1.return_value.read_namespaced_job.side_effect = ApiException(
            status=500, reason="Internal Server Error"
        )

        response = client.get("/api/job-status/backup-database?namespace=jobshot")

        assert response.status_code == 200
        assert response.json()["status"] == "Unknown"
        assert "500" in response.json()["error"]

    def test_batch_statuses(self, client: TestClient, client_factory):
        """Test that statuses come back keyed by the requested names."""

        def read_namespaced_job(name, namespace, **kwargs):
            if name == "backup-database":
                return SimpleNamespace(
                    status=SimpleNamespace(active=0, succeeded=1, failed=0, conditions=None)
                )
            raise ApiException(status=404, reason="Not Found")

        client_factory.batch_v1.return_value.read_namespaced_job.side_effect = read_namespaced_job

        response = client.post(
            "/api/job-statuses",
            json={"namespace": "jobshot", "jobs": ["Backup Database", "Rebuild Search Index"]},
        )

        assert response.status_code == 200
        statuses = response.json()["statuses"]
        assert statuses["Backup Database"]["status"] == "Succeeded"
        assert statuses["Rebuild Search Index"]["exists"] is False
