"""Unit tests for the deployment journal."""

import json
import tempfile
import unittest
from pathlib import Path

from logs.audit import AuditLogger, get_audit, reset_audit


class TestAuditLogger(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "journal" / "deployments.jsonl"
        self.audit = AuditLogger(self.path, max_buffer=3)

    def tearDown(self):
        self.audit.shutdown()
        self._tmp.cleanup()

    def test_lines_are_json(self):
        self.audit.deployment_started("d1", "https://example/repo", "Deploy my Flask app")
        self.audit.phase_changed("d1", "analyzing", "Analyzing application")
        lines = self.path.read_text(encoding="utf-8").splitlines()
        self.assertEqual(len(lines), 2)
        first = json.loads(lines[0])
        self.assertEqual(first["event"], "DEPLOYMENT_STARTED")
        self.assertEqual(first["deployment_id"], "d1")
        self.assertEqual(first["data"]["repository_url"], "https://example/repo")

    def test_invalid_severity(self):
        with self.assertRaises(ValueError):
            self.audit.log("X", severity="loud")

    def test_buffer_is_bounded_and_filtered_before_limit(self):
        self.audit.phase_changed("d1", "analyzing")
        for i in range(3):
            self.audit.phase_changed("d2", "deploying", f"step {i}")
        recent = self.audit.get_recent(limit=10)
        self.assertEqual(len(recent), 3)
        self.assertEqual(recent[0]["message"], "deploying: step 2")
        self.assertEqual(self.audit.get_recent(limit=1, deployment_id="d2")[0]["message"], "deploying: step 2")
        self.assertEqual(self.audit.get_recent(deployment_id="d1"), [])

    def test_read_all_reads_disk(self):
        for i in range(5):
            self.audit.provisioning_command("d1", "terraform init", 0, 1.5)
        self.audit.deployment_failed("d1", "deploying", "boom")
        entries = self.audit.read_all()
        self.assertEqual(len(entries), 6)
        self.assertEqual(entries[-1]["severity"], "error")

    def test_nonzero_command_is_warning(self):
        self.audit.provisioning_command("d1", "terraform apply", 1, 3.0)
        self.assertEqual(self.audit.get_recent(1)[0]["severity"], "warning")

    def test_shutdown_is_idempotent(self):
        self.audit.shutdown()
        self.audit.shutdown()
        self.audit.deployment_destroyed("d1", False)


class TestSingleton(unittest.TestCase):

    def test_reset_replaces_singleton(self):
        with tempfile.TemporaryDirectory() as tmp:
            first = reset_audit(Path(tmp) / "a.jsonl")
            self.assertIs(get_audit(), first)
            second = reset_audit(Path(tmp) / "b.jsonl")
            self.assertIsNot(first, second)
            self.assertIs(get_audit(), second)
            second.shutdown()


if __name__ == '__main__':
    unittest.main()
