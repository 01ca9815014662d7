"""
HTTP surface tests for main.py (FastAPI TestClient, in-memory stores, fake cluster)
"""
import pytest
from fastapi.testclient import TestClient

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import main
from config import Settings
from core.assessment.cluster import NODES, FakeClusterReader
from core.assessment.validator import Registry
from validators.nodes import NodesValidator
from validators.rbac import RBACValidator


def worker(name):
    return {"metadata": {"name": name, "labels": {"node-role.kubernetes.io/worker": ""}}}


@pytest.fixture
def client():
    cfg = Settings(DATABASE_URL=None, KUBE_ENABLED=False)
    reader = FakeClusterReader({NODES: [worker("w1")]})
    main.runtime = main.build_runtime(cfg, Registry([NodesValidator(), RBACValidator()]), reader=reader)
    # no `with`: startup hooks (real registry, worker threads) stay out of the test
    yield TestClient(main.app)
    main.runtime = None


class TestServiceEndpoints:
    """Test service-level routes: root, health, profiles, validators"""

    def test_root(self, client):
        """Root reports the service is up"""
        body = client.get("/").json()
        assert body["status"] == "ok"

    def test_health(self, client):
        """Health lists database mode and the registered validator count"""
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["services"]["database"] == "not_configured"
        assert body["services"]["validators"] == 2

    def test_profiles(self, client):
        """Both built-in profiles are served with their thresholds"""
        profiles = {p["name"]: p for p in client.get("/profiles").json()}
        assert set(profiles) == {"production", "development"}
        assert profiles["production"]["thresholds"]["min_control_plane_nodes"] == 3

    def test_validators(self, client):
        """Validators are listed sorted by name"""
        names = [v["name"] for v in client.get("/validators").json()]
        assert names == ["nodes", "rbac"]

    def test_not_initialized(self):
        """Requests before startup completes get a 503"""
        main.runtime = None
        resp = TestClient(main.app).get("/validators")
        assert resp.status_code == 503
        assert resp.json()["error"] == "Service is not initialized"


class TestAssessmentEndpoints:
    """Test assessment CRUD and on-demand reconcile over HTTP"""

    def test_create_and_get(self, client):
        """Created assessments start Pending with version 1 and defaults filled in"""
        resp = client.post("/assessments", json={"name": "weekly", "spec": {"minSeverity": "WARN"}})
        assert resp.status_code == 201
        body = resp.json()
        assert body["name"] == "weekly"
        assert body["resourceVersion"] == 1
        assert body["status"]["phase"] == "Pending"

        got = client.get("/assessments/weekly").json()
        assert got["spec"]["minSeverity"] == "WARN"
        assert got["spec"]["profile"] == "production"

    def test_duplicate_is_conflict(self, client):
        """Creating the same name twice = 409"""
        client.post("/assessments", json={"name": "weekly"})
        resp = client.post("/assessments", json={"name": "weekly"})
        assert resp.status_code == 409
        assert "already exists" in resp.json()["error"]

    def test_invalid_body(self, client):
        """Empty names and unknown report formats are rejected with 422"""
        assert client.post("/assessments", json={"name": ""}).status_code == 422
        assert client.post("/assessments", json={"name": "x", "spec": {"reportStorage": {"formats": ["pdf"]}}}).status_code == 422

    def test_missing_is_404(self, client):
        """Unknown assessment names = 404 on read and reconcile"""
        resp = client.get("/assessments/nope")
        assert resp.status_code == 404
        assert resp.json()["status_code"] == 404
        assert client.post("/assessments/nope/reconcile").status_code == 404

    def test_list(self, client):
        """Assessments are listed sorted by name"""
        client.post("/assessments", json={"name": "b"})
        client.post("/assessments", json={"name": "a"})
        assert [a["name"] for a in client.get("/assessments").json()] == ["a", "b"]

    def test_reconcile_runs_assessment(self, client):
        """A reconcile runs the validators against the cluster and stores the result"""
        client.post("/assessments", json={"name": "weekly", "spec": {"profile": "development"}})

        body = client.post("/assessments/weekly/reconcile").json()

        assert body["result"] == {"requeue": False, "requeueAfterSeconds": None}
        status = body["assessment"]["status"]
        assert status["phase"] == "Completed"
        assert status["clusterInfo"]["nodeCount"] == 1
        assert status["summary"]["profileUsed"] == "development"
        ids = {f["id"] for f in status["findings"]}
        assert "nodes-worker-count" in ids
        assert "rbac-cluster-admin-minimal" in ids

    def test_scheduled_reconcile_reports_requeue(self, client):
        """Scheduled assessments report when they will be looked at again"""
        client.post("/assessments", json={"name": "nightly", "spec": {"schedule": "@daily"}})
        body = client.post("/assessments/nightly/reconcile").json()
        assert body["assessment"]["status"]["phase"] == "Completed"
        assert 0 < body["result"]["requeueAfterSeconds"] <= 86400
        assert body["assessment"]["status"]["nextRunTime"] is not None

    def test_metrics_after_run(self, client):
        """A completed run shows up on /metrics"""
        client.post("/assessments", json={"name": "weekly"})
        client.post("/assessments/weekly/reconcile")
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert 'cluster_assessment_score{assessment_name="weekly",profile="production"}' in resp.text
