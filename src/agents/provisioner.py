"""
Provisioning Driver (src/agents/provisioner.py)

Turns an IaCBundle into real infrastructure by driving the terraform CLI:

  provision()    write files → resolve AMI → init → plan → apply → output -json
  deprovision()  no state file → no-op, else resolve AMI → destroy
  read_outputs() output -json in an existing working directory (reconciliation)

One child process per terraform invocation. stdout and stderr are drained
with communicate() before the exit code is inspected. Every invocation is
bounded by TERRAFORM_TIMEOUT; on expiry the child is killed and
ProvisioningTimeoutError is raised.

On-disk layout (shared with reconciliation in src/main.py):

  <TEMP_DIR>/<deployment_id>/terraform/
      providers.tf  main.tf  variables.tf  outputs.tf  bootstrap.sh
      terraform.tfstate     ← presence means "infrastructure may exist"
      terraform.log         ← captured output of every command, appended

AMI resolution never fails: a bad or empty answer from the aws CLI falls
back to a fixed per-region table.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from config.deploy_config import DEPLOY_CONFIG, DeployConfig
from logs.audit import get_audit
from src.agents.config_assembler import DeploymentConfig
from src.agents.iac_generator import BOOTSTRAP_FILE, IaCBundle, IaCGeneratorAgent
from src.errors import ProvisioningError, ProvisioningTimeoutError
from src.schemas.deployment_schemas import LogBlock

logger = logging.getLogger(__name__)

STATE_FILE     = "terraform.tfstate"
TERRAFORM_LOG  = "terraform.log"
TERRAFORM_DIR  = "terraform"

# Amazon Linux 2023, x86_64
IMAGE_NAME_FILTER = "al2023-ami-*"
IMAGE_ARCH        = "x86_64"
FALLBACK_IMAGES: Dict[str, str] = {
    "us-east-1":      "ami-0b3a73487ec93ea0b",
    "us-west-2":      "ami-0c02fb55956c7d316",
    "eu-west-1":      "ami-0c9c942bd7bf113a2",
    "ap-southeast-1": "ami-0df7a207adb9748c7",
}
DEFAULT_IMAGE_REGION = "us-east-1"


# ══════════════════════════════════════════════════════════════════════════════
# Result dataclasses
# ══════════════════════════════════════════════════════════════════════════════

@dataclass
class CommandResult:
    args:       List[str]
    returncode: Optional[int]
    stdout:     str
    stderr:     str
    duration:   float = 0.0

    @property
    def command(self) -> str:
        return " ".join(self.args)

    @property
    def output(self) -> str:
        """stderr, or stdout when stderr is empty."""
        return self.stderr.strip() or self.stdout.strip()


@dataclass
class ProvisioningResult:
    deployment_id:    str
    outputs:          Dict[str, Any]           # flattened name → value
    public_url:       str
    image_id:         str
    working_dir:      Path
    logs:             List[LogBlock] = field(default_factory=list)
    duration_seconds: float          = 0.0
    provisioned_at:   float          = field(default_factory=time.time)


def flatten_outputs(raw: Dict[str, Any]) -> Dict[str, Any]:
    """`terraform output -json` wraps each value as {"value": ..., "type": ...}."""
    flat: Dict[str, Any] = {}
    for name, entry in (raw or {}).items():
        if isinstance(entry, dict) and "value" in entry:
            flat[name] = entry["value"]
        else:
            flat[name] = entry
    return flat


# Outputs that carry a reachable address, in precedence order
ADDRESS_OUTPUTS = ("application_url", "instance_public_ip", "instance_public_dns")


def has_address(outputs: Dict[str, Any]) -> bool:
    flat = flatten_outputs(outputs)
    return any(flat.get(name) for name in ADDRESS_OUTPUTS)


def derive_public_url(
    outputs:       Dict[str, Any],
    port:          int,
    deployment_id: str = "",
    region:        str = DEFAULT_IMAGE_REGION,
) -> str:
    """
    Precedence:
      1. application_url output
      2. http://<instance_public_ip>:<port>
      3. http://<instance_public_dns>:<port>
      4. deterministic placeholder (never expected in a real run)
    Accepts flattened or raw terraform outputs.
    """
    flat = flatten_outputs(outputs)
    if flat.get("application_url"):
        return str(flat["application_url"])
    if flat.get("instance_public_ip"):
        return f"http://{flat['instance_public_ip']}:{port}"
    if flat.get("instance_public_dns"):
        return f"http://{flat['instance_public_dns']}:{port}"

    placeholder = f"http://unresolved-{deployment_id[:8] or 'app'}.{region}.compute.amazonaws.com:{port}"
    logger.error(
        "[%s] No address in provisioning outputs (%s), using placeholder %s",
        deployment_id, sorted(flat), placeholder,
    )
    return placeholder


# ══════════════════════════════════════════════════════════════════════════════
# Driver
# ══════════════════════════════════════════════════════════════════════════════

class ProvisioningDriver:
    """
    Applies an IaCBundle with terraform. Stateless between calls: everything
    it needs to resume lives under terraform_dir(deployment_id).
    """

    def __init__(
        self,
        deploy_config: DeployConfig = DEPLOY_CONFIG,
        generator:     Optional[IaCGeneratorAgent] = None,
    ) -> None:
        self.cfg       = deploy_config
        self.generator = generator or IaCGeneratorAgent()
        self._audit    = get_audit()

    # ── Filesystem contract ───────────────────────────────────────────────────

    def terraform_dir(self, deployment_id: str) -> Path:
        return self.cfg.deployment_dir(deployment_id) / TERRAFORM_DIR

    def state_file(self, deployment_id: str) -> Path:
        return self.terraform_dir(deployment_id) / STATE_FILE

    def log_file(self, deployment_id: str) -> Path:
        return self.terraform_dir(deployment_id) / TERRAFORM_LOG

    def has_state(self, deployment_id: str) -> bool:
        return self.state_file(deployment_id).is_file()

    def remove_artifacts(self, deployment_id: str) -> None:
        """Delete the whole deployment directory. Missing directory is fine."""
        target = self.cfg.deployment_dir(deployment_id)
        if target.exists():
            shutil.rmtree(target)
            logger.info("[%s] Removed artifacts at %s", deployment_id, target)

    def write_bundle(self, bundle: IaCBundle) -> Path:
        """
        Write generated files into a clean working directory.
        Stale generated files are replaced; terraform state and the
        provider cache (.terraform/) are left alone.
        """
        tf_dir = self.terraform_dir(bundle.deployment_id)
        tf_dir.mkdir(parents=True, exist_ok=True)
        for stale in list(tf_dir.glob("*.tf")) + [tf_dir / BOOTSTRAP_FILE]:
            if stale.is_file():
                stale.unlink()
        for fname, content in bundle.files.items():
            dest = tf_dir / fname
            dest.write_text(content, encoding="utf-8")
        (tf_dir / BOOTSTRAP_FILE).chmod(0o755)
        logger.info("[%s] Wrote %d files to %s", bundle.deployment_id, len(bundle.files), tf_dir)
        return tf_dir

    # ── Process execution ─────────────────────────────────────────────────────

    async def _run_command(
        self,
        args:    Sequence[str],
        cwd:     Optional[Path]           = None,
        env:     Optional[Dict[str, str]] = None,
        timeout: Optional[float]          = None,
    ) -> CommandResult:
        """
        Run one child process to completion. Never raises on non-zero exit;
        raises ProvisioningError if the binary cannot be started and
        ProvisioningTimeoutError if it outlives `timeout`.
        """
        args = [str(a) for a in args]
        t0 = time.time()
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(cwd) if cwd else None,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ProvisioningError(
                f"Could not start {args[0]}: {exc}", command=" ".join(args),
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ProvisioningTimeoutError(
                f"{' '.join(args)} timed out after {timeout}s",
                command=" ".join(args),
            )

        return CommandResult(
            args=args,
            returncode=proc.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            duration=round(time.time() - t0, 2),
        )

    def _append_log(self, deployment_id: str, result: CommandResult) -> None:
        log_path = self.log_file(deployment_id)
        if not log_path.parent.exists():
            return
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(f"$ {result.command}  (exit {result.returncode}, {result.duration:.1f}s)\n")
            if result.stdout:
                f.write(result.stdout.rstrip() + "\n")
            if result.stderr:
                f.write(result.stderr.rstrip() + "\n")

    def _terraform_env(
        self,
        image_id:    str,
        app_name:    Optional[str] = None,
        environment: Optional[str] = None,
    ) -> Dict[str, str]:
        cache_dir = self.cfg.plugin_cache_dir.resolve()
        cache_dir.mkdir(parents=True, exist_ok=True)
        env = dict(os.environ)
        env.update({
            "TF_VAR_ami_id":      image_id,
            "TF_VAR_aws_region":  self.cfg.aws_region,
            "TF_VAR_environment": environment or self.cfg.environment,
            "TF_PLUGIN_CACHE_DIR": str(cache_dir),
            "TF_IN_AUTOMATION":   "1",
            "TF_LOG":             "ERROR",
        })
        if app_name:
            env["TF_VAR_app_name"] = app_name
        return env

    async def _terraform(
        self,
        deployment_id: str,
        args:          List[str],
        env:           Dict[str, str],
        logs:          Optional[List[LogBlock]] = None,
    ) -> CommandResult:
        """One terraform subcommand. Non-zero exit raises ProvisioningError."""
        command = [self.cfg.terraform_path] + args
        logger.info("[%s] Running %s", deployment_id, " ".join(command))
        timeout = self.cfg.terraform_timeout or None
        try:
            result = await self._run_command(
                command, cwd=self.terraform_dir(deployment_id), env=env, timeout=timeout,
            )
        except ProvisioningError as exc:
            self._audit.provisioning_command(deployment_id, exc.command, None, 0.0)
            raise

        self._append_log(deployment_id, result)
        self._audit.provisioning_command(
            deployment_id, result.command, result.returncode, result.duration,
        )
        if logs is not None:
            logs.append(LogBlock.from_text(f"terraform {args[0]}", result.stdout + result.stderr))

        if result.returncode != 0:
            logger.error(
                "[%s] terraform %s exited %s: %s",
                deployment_id, args[0], result.returncode, result.output[-500:],
            )
            raise ProvisioningError(
                f"terraform {args[0]} failed with code {result.returncode}: {result.output}",
                command=result.command,
                returncode=result.returncode,
                output=result.output,
            )
        return result

    # ── Machine image ─────────────────────────────────────────────────────────

    async def resolve_image_id(self, region: Optional[str] = None) -> str:
        """Newest Amazon Linux 2023 x86_64 AMI, or the fallback table entry."""
        region = region or self.cfg.aws_region
        fallback = FALLBACK_IMAGES.get(region, FALLBACK_IMAGES[DEFAULT_IMAGE_REGION])
        command = [
            self.cfg.aws_cli_path, "ec2", "describe-images",
            "--owners", "amazon",
            "--filters", f"Name=name,Values={IMAGE_NAME_FILTER}", f"Name=architecture,Values={IMAGE_ARCH}",
            "--query", "Images | sort_by(@, &CreationDate) | [-1].ImageId",
            "--output", "text",
            "--region", region,
        ]
        try:
            result = await self._run_command(command, timeout=self.cfg.image_query_timeout or None)
        except ProvisioningError as exc:
            logger.warning("AMI lookup failed (%s), using fallback %s", exc, fallback)
            return fallback

        image_id = result.stdout.strip()
        if result.returncode != 0 or not image_id.startswith("ami-"):
            logger.warning(
                "AMI lookup returned %r (exit %s), using fallback %s",
                image_id[:80], result.returncode, fallback,
            )
            return fallback

        logger.info("Using AMI %s for region %s", image_id, region)
        return image_id

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def provision(
        self,
        config: DeploymentConfig,
        bundle: Optional[IaCBundle] = None,
    ) -> ProvisioningResult:
        """
        Write templates and run init → plan → apply → output.
        Raises ProvisioningError (or ProvisioningTimeoutError) on any failed step.
        Resources already created by a failed apply are left for destroy().
        """
        t0 = time.time()
        deployment_id = config.deployment_id
        bundle = bundle or self.generator.generate(config)
        tf_dir = self.write_bundle(bundle)

        image_id = await self.resolve_image_id(config.region)
        env = self._terraform_env(image_id, config.app_name, config.environment)
        logs: List[LogBlock] = []

        await self._terraform(deployment_id, ["init", "-input=false", "-no-color"], env, logs)
        # Diagnostic only: output discarded, failure still fatal
        await self._terraform(deployment_id, ["plan", "-input=false", "-no-color"], env, logs)
        await self._terraform(deployment_id, ["apply", "-auto-approve", "-input=false", "-no-color"], env, logs)
        output = await self._terraform(deployment_id, ["output", "-json"], env)

        outputs = self._parse_outputs(deployment_id, output)
        public_url = derive_public_url(outputs, config.port, deployment_id, config.region)
        duration = round(time.time() - t0, 2)
        logger.info("[%s] Provisioned in %.1fs: %s", deployment_id, duration, public_url)

        return ProvisioningResult(
            deployment_id=deployment_id,
            outputs=outputs,
            public_url=public_url,
            image_id=image_id,
            working_dir=tf_dir,
            logs=logs,
            duration_seconds=duration,
        )

    async def read_outputs(self, deployment_id: str) -> Dict[str, Any]:
        """
        Flattened outputs of an existing working directory.
        Raises ProvisioningError when the directory is missing or the
        command fails.
        """
        if not self.terraform_dir(deployment_id).is_dir():
            raise ProvisioningError(f"No working directory for {deployment_id}")
        result = await self._terraform(deployment_id, ["output", "-json"], dict(os.environ))
        return self._parse_outputs(deployment_id, result)

    async def deprovision(self, deployment_id: str) -> bool:
        """
        Destroy everything recorded in the state file.
        Returns False (no-op) when there is no state, True after a destroy.
        """
        if not self.has_state(deployment_id):
            logger.warning("[%s] No terraform state, nothing to destroy", deployment_id)
            return False

        image_id = await self.resolve_image_id()
        env = self._terraform_env(image_id)
        await self._terraform(deployment_id, ["destroy", "-auto-approve", "-input=false", "-no-color"], env)
        logger.info("[%s] Infrastructure destroyed", deployment_id)
        return True

    @staticmethod
    def _parse_outputs(deployment_id: str, result: CommandResult) -> Dict[str, Any]:
        try:
            raw = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise ProvisioningError(
                f"[{deployment_id}] terraform output is not JSON: {exc}",
                command=result.command, returncode=result.returncode, output=result.stdout[:500],
            ) from exc
        if not isinstance(raw, dict):
            raise ProvisioningError(
                f"[{deployment_id}] terraform output is not an object",
                command=result.command, returncode=result.returncode,
            )
        return flatten_outputs(raw)
