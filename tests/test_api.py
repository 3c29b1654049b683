"""HTTP surface tests. The orchestrator is mocked; only routing and error mapping are exercised."""

import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from logs.audit import reset_audit
from src.errors import (
    DeploymentConflictError, NotFoundError, ProvisioningError, ValidationError,
)
from src.schemas.deployment_schemas import LogBlock, StatusReport
from ui.monitor import app


class TestDeploymentApi(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.audit = reset_audit(Path(self._tmp.name) / "audit.jsonl")
        self.orchestrator = MagicMock()
        self.orchestrator.store = {}
        patcher = patch("ui.monitor.get_orchestrator", return_value=self.orchestrator)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client = TestClient(app)

    def tearDown(self):
        self.audit.shutdown()
        self._tmp.cleanup()

    def test_chat_returns_202_with_id(self):
        self.orchestrator.submit = AsyncMock(return_value="abc123")
        resp = self.client.post("/api/deployment/chat",
                                json={"message": "Deploy my Flask app", "repository_url": "https://example/repo"})
        self.assertEqual(resp.status_code, 202)
        body = resp.json()
        self.assertEqual(body["deployment_id"], "abc123")
        self.assertEqual(body["status_url"], "/api/deployment/abc123/status")
        self.orchestrator.submit.assert_awaited_once_with("Deploy my Flask app", "https://example/repo")

    def test_validation_error_is_400(self):
        self.orchestrator.submit = AsyncMock(side_effect=ValidationError("description must not be empty"))
        resp = self.client.post("/api/deployment/chat", json={"message": ""})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "ValidationError")

    def test_status(self):
        report = StatusReport(deployment_id="abc123", status="deploying", progress=67)
        self.orchestrator.get_status = AsyncMock(return_value=report)
        resp = self.client.get("/api/deployment/abc123/status")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["progress"], 67)
        self.assertTrue(resp.json()["success"])

    def test_unknown_id_is_404(self):
        self.orchestrator.get_status = AsyncMock(side_effect=NotFoundError("Deployment x not found"))
        self.assertEqual(self.client.get("/api/deployment/x/status").status_code, 404)

    def test_steps_and_instructions(self):
        self.orchestrator.get_steps = AsyncMock(return_value=[{"id": "infrastructure", "status": "pending"}])
        self.orchestrator.get_instructions = AsyncMock(return_value=["1. Clone the repository:"])
        self.assertEqual(self.client.get("/api/deployment/a/steps").json()["steps"][0]["id"], "infrastructure")
        self.assertEqual(self.client.get("/api/deployment/a/instructions").json()["instructions"],
                         ["1. Clone the repository:"])

    def test_logs(self):
        self.orchestrator.get_logs = AsyncMock(return_value=[LogBlock("terraform init", ["ok"])])
        logs = self.client.get("/api/deployment/a/logs").json()["logs"]
        self.assertEqual(logs[0]["source"], "terraform init")
        self.assertEqual(logs[0]["lines"], ["ok"])

    def test_list(self):
        self.orchestrator.list_all.return_value = [{"deployment_id": "a"}]
        self.assertEqual(self.client.get("/api/deployments").json()["deployments"], [{"deployment_id": "a"}])

    def test_destroy_conflict_is_409(self):
        self.orchestrator.destroy = AsyncMock(side_effect=DeploymentConflictError("running"))
        self.assertEqual(self.client.delete("/api/deployment/a").status_code, 409)

    def test_destroy_provisioning_failure_is_502(self):
        self.orchestrator.destroy = AsyncMock(side_effect=ProvisioningError("terraform destroy failed"))
        resp = self.client.delete("/api/deployment/a")
        self.assertEqual(resp.status_code, 502)
        self.assertIn("terraform destroy failed", resp.json()["message"])

    def test_destroy(self):
        self.orchestrator.destroy = AsyncMock(return_value=True)
        body = self.client.delete("/api/deployment/a").json()
        self.assertTrue(body["infrastructure_destroyed"])

    def test_deploy_analyzed(self):
        self.orchestrator.start_deploy = AsyncMock(return_value=None)
        self.assertEqual(self.client.post("/api/deployment/a/deploy").status_code, 202)
        self.orchestrator.start_deploy.assert_awaited_once_with("a")

    def test_audit_entries(self):
        self.audit.deployment_started("a", "https://example/repo", "Deploy")
        entries = self.client.get("/api/audit", params={"deployment_id": "a"}).json()
        self.assertEqual(entries[0]["event"], "DEPLOYMENT_STARTED")

    def test_health(self):
        body = self.client.get("/api/health").json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["deployments"], 0)


if __name__ == '__main__':
    unittest.main()
