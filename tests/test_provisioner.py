"""Unit tests for the terraform provisioning driver. Terraform and the aws CLI are never executed;
TestCommandRunner drives real Python child processes through the runner."""

import json
import sys
import tempfile
import time
import unittest
from dataclasses import replace
from pathlib import Path
from unittest.mock import AsyncMock, patch

from config.deploy_config import DeployConfig
from logs.audit import reset_audit
from src.agents.config_assembler import ConfigAssembler
from src.agents.deployment_strategy import decide_strategy
from src.agents.provisioner import (
    FALLBACK_IMAGES, STATE_FILE, CommandResult, ProvisioningDriver,
    derive_public_url, flatten_outputs, has_address,
)
from src.errors import ProvisioningError, ProvisioningTimeoutError
from src.schemas.deployment_schemas import CodeAnalysis, IntentAnalysis

DEPLOYMENT_ID = "c0ffee00-1111-4222-8333-444455556666"


class TestPublicUrl(unittest.TestCase):
    """Precedence: application_url, public ip, public dns, placeholder."""

    def test_application_url_first(self):
        outputs = {"application_url": "http://1.2.3.4:5000", "instance_public_ip": "9.9.9.9"}
        self.assertEqual(derive_public_url(outputs, 8080), "http://1.2.3.4:5000")

    def test_public_ip_with_port(self):
        self.assertEqual(derive_public_url({"instance_public_ip": "54.1.2.3"}, 5000), "http://54.1.2.3:5000")

    def test_public_dns(self):
        outputs = {"instance_public_dns": "ec2-54-1-2-3.compute.amazonaws.com"}
        self.assertEqual(
            derive_public_url(outputs, 3000),
            "http://ec2-54-1-2-3.compute.amazonaws.com:3000",
        )

    def test_raw_terraform_shape(self):
        raw = {"instance_public_ip": {"value": "54.1.2.3", "type": "string", "sensitive": False}}
        self.assertEqual(derive_public_url(raw, 5000), "http://54.1.2.3:5000")

    def test_placeholder_is_deterministic_and_logged(self):
        with self.assertLogs("src.agents.provisioner", level="ERROR"):
            url = derive_public_url({}, 8080, DEPLOYMENT_ID, "eu-west-1")
        self.assertEqual(url, "http://unresolved-c0ffee00.eu-west-1.compute.amazonaws.com:8080")

    def test_has_address(self):
        self.assertFalse(has_address({}))
        self.assertFalse(has_address({"instance_id": {"value": "i-123"}, "instance_public_ip": {"value": ""}}))
        self.assertTrue(has_address({"instance_public_dns": {"value": "ec2.example"}}))
        self.assertTrue(has_address({"application_url": "http://1.2.3.4:5000"}))

    def test_flatten(self):
        raw = {"a": {"value": 1, "type": "number"}, "b": "plain"}
        self.assertEqual(flatten_outputs(raw), {"a": 1, "b": "plain"})


class _DriverCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.audit = reset_audit(root / "audit.jsonl")
        self.cfg = DeployConfig(
            work_dir=root / "work",
            plugin_cache_dir=root / "cache",
            terraform_path="terraform",
            aws_cli_path="aws",
            aws_region="us-east-1",
            terraform_timeout=60,
        )
        self.driver = ProvisioningDriver(self.cfg)
        code = CodeAnalysis(language="python", framework="flask", app_type="flask")
        intent = IntentAnalysis()
        self.config = ConfigAssembler(self.cfg).assemble(
            decide_strategy(code, intent), code, intent, DEPLOYMENT_ID, "https://github.com/acme/api",
        )
        self.calls = []

    def tearDown(self):
        self.audit.shutdown()
        self._tmp.cleanup()

    def fake_runner(self, outputs=None, fail_on=None, ami="ami-0123456789abcdef0"):
        """Stand-in for _run_command that records argv and fakes each tool."""
        outputs = outputs if outputs is not None else {"instance_public_ip": {"value": "54.1.2.3"}}

        async def run(args, cwd=None, env=None, timeout=None):
            args = [str(a) for a in args]
            self.calls.append(args)
            if args[0] == "aws":
                return CommandResult(args, 0, ami + "\n", "")
            sub = args[1]
            if sub == fail_on:
                return CommandResult(args, 1, "", f"Error: {sub} exploded")
            if sub == "apply":
                (Path(cwd) / STATE_FILE).write_text("{}", encoding="utf-8")
            if sub == "destroy":
                (Path(cwd) / STATE_FILE).unlink()
            if sub == "output":
                return CommandResult(args, 0, json.dumps(outputs), "")
            return CommandResult(args, 0, f"{sub} ok\n", "")
        return run

    def terraform_subcommands(self):
        return [c[1] for c in self.calls if c[0] == "terraform"]


class TestCommandRunner(_DriverCase):
    """The real runner against short-lived Python children."""

    def python(self, code):
        return [sys.executable, "-c", code]

    async def test_large_output_drained_before_exit_code(self):
        code = "import sys; sys.stdout.write('x' * (2 * 1024 * 1024)); sys.stderr.write('e'); sys.exit(3)"
        result = await self.driver._run_command(self.python(code), timeout=30)
        self.assertEqual(result.returncode, 3)
        self.assertEqual(len(result.stdout), 2 * 1024 * 1024)
        self.assertEqual(result.output, "e")

    async def test_output_falls_back_to_stdout(self):
        result = await self.driver._run_command(self.python("print('plan failed'); raise SystemExit(1)"), timeout=30)
        self.assertEqual(result.returncode, 1)
        self.assertEqual(result.output, "plan failed")

    async def test_timeout_kills_child(self):
        t0 = time.monotonic()
        with self.assertRaises(ProvisioningTimeoutError) as ctx:
            await self.driver._run_command(self.python("import time; time.sleep(30)"), timeout=0.5)
        self.assertLess(time.monotonic() - t0, 10)
        self.assertIn("timed out after 0.5s", str(ctx.exception))

    async def test_missing_binary(self):
        missing = str(Path(self._tmp.name) / "no-such-terraform")
        with self.assertRaises(ProvisioningError) as ctx:
            await self.driver._run_command([missing, "init"], timeout=5)
        self.assertNotIsInstance(ctx.exception, ProvisioningTimeoutError)
        self.assertIn("Could not start", str(ctx.exception))
        self.assertEqual(ctx.exception.command, f"{missing} init")

    async def test_nonzero_terraform_surfaces_stderr_and_logs(self):
        # The interpreter stands in for terraform: `python output -json` fails on the missing script
        self.driver = ProvisioningDriver(replace(self.cfg, terraform_path=sys.executable))
        self.driver.terraform_dir(DEPLOYMENT_ID).mkdir(parents=True)
        with self.assertRaises(ProvisioningError) as ctx:
            await self.driver.read_outputs(DEPLOYMENT_ID)
        self.assertEqual(ctx.exception.returncode, 2)
        self.assertIn("output", ctx.exception.output)
        log = self.driver.log_file(DEPLOYMENT_ID).read_text(encoding="utf-8")
        self.assertIn("(exit 2,", log)


class TestProvision(_DriverCase):

    async def test_happy_path(self):
        with patch.object(ProvisioningDriver, "_run_command", side_effect=self.fake_runner()):
            result = await self.driver.provision(self.config)

        self.assertEqual(self.terraform_subcommands(), ["init", "plan", "apply", "output"])
        self.assertEqual(result.public_url, "http://54.1.2.3:5000")
        self.assertEqual(result.image_id, "ami-0123456789abcdef0")
        self.assertEqual(result.outputs, {"instance_public_ip": "54.1.2.3"})
        self.assertTrue(self.driver.has_state(DEPLOYMENT_ID))

        tf_dir = self.driver.terraform_dir(DEPLOYMENT_ID)
        for name in ("providers.tf", "main.tf", "variables.tf", "outputs.tf", "bootstrap.sh"):
            self.assertTrue((tf_dir / name).is_file(), name)
        self.assertIn("$ terraform apply", self.driver.log_file(DEPLOYMENT_ID).read_text())
        self.assertEqual([b.source for b in result.logs],
                         ["terraform init", "terraform plan", "terraform apply"])

    async def test_terraform_env(self):
        captured = {}
        runner = self.fake_runner()

        async def run(args, cwd=None, env=None, timeout=None):
            if args[0] == "terraform" and args[1] == "apply":
                captured.update(env)
                self.assertEqual(timeout, 60)
            return await runner(args, cwd, env, timeout)

        with patch.object(ProvisioningDriver, "_run_command", side_effect=run):
            await self.driver.provision(self.config)
        self.assertEqual(captured["TF_VAR_ami_id"], "ami-0123456789abcdef0")
        self.assertEqual(captured["TF_VAR_app_name"], "app-c0ffee00")
        self.assertEqual(captured["TF_IN_AUTOMATION"], "1")

    async def test_apply_failure_surfaces_stderr(self):
        with patch.object(ProvisioningDriver, "_run_command",
                          side_effect=self.fake_runner(fail_on="apply")):
            with self.assertRaises(ProvisioningError) as ctx:
                await self.driver.provision(self.config)
        self.assertEqual(ctx.exception.returncode, 1)
        self.assertIn("apply exploded", ctx.exception.output)
        self.assertEqual(self.terraform_subcommands(), ["init", "plan", "apply"])

    async def test_plan_failure_is_fatal(self):
        with patch.object(ProvisioningDriver, "_run_command",
                          side_effect=self.fake_runner(fail_on="plan")):
            with self.assertRaises(ProvisioningError):
                await self.driver.provision(self.config)
        self.assertNotIn("apply", self.terraform_subcommands())

    async def test_timeout_propagates(self):
        async def run(args, cwd=None, env=None, timeout=None):
            if args[0] == "terraform" and args[1] == "init":
                raise ProvisioningTimeoutError("terraform init timed out", command="terraform init")
            return CommandResult(list(args), 0, "ami-0123456789abcdef0", "")

        with patch.object(ProvisioningDriver, "_run_command", side_effect=run):
            with self.assertRaises(ProvisioningTimeoutError):
                await self.driver.provision(self.config)

    async def test_output_not_json(self):
        async def run(args, cwd=None, env=None, timeout=None):
            return CommandResult(list(args), 0, "not json" if args[1] == "output" else "ami-1", "")

        with patch.object(ProvisioningDriver, "_run_command", side_effect=run):
            with self.assertRaises(ProvisioningError):
                await self.driver.provision(self.config)

    async def test_rewrite_keeps_state(self):
        with patch.object(ProvisioningDriver, "_run_command", side_effect=self.fake_runner()):
            await self.driver.provision(self.config)
            await self.driver.provision(self.config)
        self.assertTrue(self.driver.has_state(DEPLOYMENT_ID))

    async def test_commands_are_audited(self):
        with patch.object(ProvisioningDriver, "_run_command", side_effect=self.fake_runner()):
            await self.driver.provision(self.config)
        events = [e for e in self.audit.get_recent(50) if e["event"] == "PROVISIONING_COMMAND"]
        self.assertEqual(len(events), 4)


class TestImageResolution(_DriverCase):

    async def test_query_result(self):
        with patch.object(ProvisioningDriver, "_run_command", side_effect=self.fake_runner()):
            self.assertEqual(await self.driver.resolve_image_id(), "ami-0123456789abcdef0")

    async def test_empty_result_falls_back(self):
        with patch.object(ProvisioningDriver, "_run_command", side_effect=self.fake_runner(ami="None")):
            self.assertEqual(await self.driver.resolve_image_id("us-west-2"), FALLBACK_IMAGES["us-west-2"])

    async def test_missing_cli_falls_back(self):
        with patch.object(ProvisioningDriver, "_run_command",
                          AsyncMock(side_effect=ProvisioningError("Could not start aws"))):
            self.assertEqual(await self.driver.resolve_image_id("eu-west-1"), FALLBACK_IMAGES["eu-west-1"])

    async def test_unknown_region_uses_default_table_entry(self):
        with patch.object(ProvisioningDriver, "_run_command",
                          AsyncMock(return_value=CommandResult(["aws"], 255, "", "denied"))):
            self.assertEqual(await self.driver.resolve_image_id("sa-east-1"), FALLBACK_IMAGES["us-east-1"])


class TestDeprovision(_DriverCase):

    async def test_no_state_is_noop(self):
        runner = AsyncMock()
        with patch.object(ProvisioningDriver, "_run_command", runner):
            had_state = await self.driver.deprovision(DEPLOYMENT_ID)
        self.assertFalse(had_state)
        runner.assert_not_called()

    async def test_destroy_with_state(self):
        with patch.object(ProvisioningDriver, "_run_command", side_effect=self.fake_runner()):
            await self.driver.provision(self.config)
            self.calls.clear()
            had_state = await self.driver.deprovision(DEPLOYMENT_ID)
        self.assertTrue(had_state)
        self.assertEqual(self.terraform_subcommands(), ["destroy"])
        self.assertIn("-auto-approve", [c for c in self.calls if c[0] == "terraform"][0])

    async def test_destroy_failure_propagates(self):
        with patch.object(ProvisioningDriver, "_run_command", side_effect=self.fake_runner()):
            await self.driver.provision(self.config)
        with patch.object(ProvisioningDriver, "_run_command",
                          side_effect=self.fake_runner(fail_on="destroy")):
            with self.assertRaises(ProvisioningError):
                await self.driver.deprovision(DEPLOYMENT_ID)
        self.assertTrue(self.driver.has_state(DEPLOYMENT_ID))

    async def test_remove_artifacts(self):
        with patch.object(ProvisioningDriver, "_run_command", side_effect=self.fake_runner()):
            await self.driver.provision(self.config)
        self.driver.remove_artifacts(DEPLOYMENT_ID)
        self.assertFalse(self.cfg.deployment_dir(DEPLOYMENT_ID).exists())
        self.driver.remove_artifacts(DEPLOYMENT_ID)


class TestReadOutputs(_DriverCase):

    async def test_missing_directory(self):
        with self.assertRaises(ProvisioningError):
            await self.driver.read_outputs(DEPLOYMENT_ID)

    async def test_reads_flattened(self):
        self.driver.terraform_dir(DEPLOYMENT_ID).mkdir(parents=True)
        outputs = {"application_url": {"value": "http://54.1.2.3:5000"}}
        with patch.object(ProvisioningDriver, "_run_command",
                          side_effect=self.fake_runner(outputs=outputs)):
            self.assertEqual(await self.driver.read_outputs(DEPLOYMENT_ID),
                             {"application_url": "http://54.1.2.3:5000"})


if __name__ == '__main__':
    unittest.main()
