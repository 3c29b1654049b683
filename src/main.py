"""
Deployment Orchestrator (main.py)

One state machine per deployment id:

  initializing → analyzing → (analyzed) → deploying → completing → completed
                                                    ↘ deployed
  any non-terminal state → failed

  analyzing   CodeAnalysis (GitHubCodeInspector) + IntentAnalysis
              (RuleBasedIntentExtractor) → DeploymentStrategyAgent
  deploying   ConfigAssembler → IaCGeneratorAgent → ProvisioningDriver,
              then a best-effort HTTP probe of the public URL
  completing  chat summary (process_chat_deployment only)

Two success paths: process_chat_deployment() ends in `completed`,
deploy_application() ends in `deployed`. Both are terminal success.

A phase that raises moves the record straight to `failed` and the error
is re-raised to the caller. Nothing is rolled back: destroy() is the only
cleanup.

Records live in a DeploymentStore (process memory). When a status read
misses memory, the record is rebuilt from the terraform working directory
on disk. That rebuild is lossy: steps and instructions are regenerated
from defaults, not replayed.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
from pydantic import ValidationError as PydanticValidationError

from config.deploy_config import DEPLOY_CONFIG, DeployConfig
from logs.audit import get_audit
from src.agents.config_assembler import FALLBACK_PORT, ConfigAssembler, infer_port
from src.agents.deployment_strategy import DeploymentStrategyAgent
from src.agents.iac_generator import IaCGeneratorAgent
from src.agents.provisioner import (
    ProvisioningDriver, ProvisioningResult, derive_public_url, has_address,
)
from src.analyzer.code_inspector import GitHubCodeInspector
from src.analyzer.intent_extractor import RuleBasedIntentExtractor
from src.errors import (
    AnalysisError, DeploymentConflictError, DeploymentError, NotFoundError,
    ProvisioningError, ReconciliationAmbiguous, ValidationError,
)
from src.schemas.deployment_schemas import (
    ALLOWED_TRANSITIONS, CodeAnalysis, DeploymentRecord, DeploymentRequest,
    DeploymentStatus, LogBlock, PhaseEntry, StatusReport, Step, progress_for,
)
from src.store import DeploymentStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)

for lib in ("aiohttp", "asyncio", "uvicorn.access"):
    logging.getLogger(lib).setLevel(logging.WARNING)

# Statuses a phase sequence may start from
RUNNABLE = frozenset({DeploymentStatus.INITIALIZING, DeploymentStatus.ANALYZED})

DEPLOYMENT_LOG_FILES = ("deployment.log", "build.log")

PYTHON_STACKS = frozenset({"flask", "django", "fastapi", "python"})
NODE_STACKS   = frozenset({"node", "express", "javascript", "nextjs", "react"})


# ─────────────────────────────────────────────────────────────────
# Narration: steps, instructions, summary
# ─────────────────────────────────────────────────────────────────

def _stack(code: Optional[CodeAnalysis]) -> str:
    if code is None:
        return "generic"
    name = (code.framework or code.language or "").lower()
    if name in PYTHON_STACKS:
        return "python"
    if name in NODE_STACKS:
        return "node"
    return "generic"


def generate_steps(
    code:           Optional[CodeAnalysis],
    repository_url: Optional[str],
    port:           int,
    instance_type:  str = "t3.micro",
) -> List[Step]:
    """Five user-facing steps, details tailored to the detected stack."""
    stack = _stack(code)
    repo = repository_url or "application repository"

    if stack == "python":
        system = [
            "Updating system packages (yum update)",
            "Installing Python 3 and pip",
            "Installing Git for repository cloning",
            "Creating application directory structure",
            "Setting up Python virtual environment",
        ]
        application = [
            f"Cloning repository: {repo}",
            "Detecting main Python application file (app.py, main.py, server.py)",
            "Installing Python dependencies from requirements.txt",
            f"Binding the application to 0.0.0.0:{port}",
            "Setting up application directory permissions",
        ]
        service_name = "flask-app.service"
    elif stack == "node":
        system = [
            "Updating system packages (yum update)",
            "Installing Node.js 18.x LTS",
            "Installing npm package manager",
            "Installing Git for repository cloning",
            "Creating application directory structure",
        ]
        application = [
            f"Cloning repository: {repo}",
            "Detecting main Node.js entry point (server.js, app.js, index.js)",
            "Installing npm dependencies (npm install)",
            f"Configuring application port to {port}",
            "Setting up application directory permissions",
        ]
        service_name = "node-app.service"
    else:
        system = [
            "Updating system packages",
            "Installing Docker runtime",
            "Installing Git for repository cloning",
            "Creating application directory structure",
        ]
        application = [
            f"Cloning repository: {repo}",
            "Building container image when a Dockerfile is present",
            f"Otherwise serving a placeholder page on port {port}",
        ]
        service_name = "application service"

    return [
        Step(
            id="infrastructure",
            title="Setting up AWS Infrastructure",
            description="Creating VPC, subnet, security group, and EC2 instance with Elastic IP",
            details=[
                "Allocating static Elastic IP address",
                "Creating Virtual Private Cloud (VPC)",
                "Setting up public subnet with internet gateway",
                "Configuring security groups for web traffic",
                f"Launching EC2 instance ({instance_type})",
            ],
        ),
        Step(
            id="system",
            title="Configuring Server Environment",
            description="Installing system dependencies and runtime environment",
            details=system,
        ),
        Step(
            id="application",
            title="Deploying Application",
            description="Cloning repository and installing dependencies",
            details=application,
        ),
        Step(
            id="service",
            title="Configuring Application Service",
            description="Registering the application as a supervised service",
            details=[
                f"Creating {service_name}",
                "Configuring service to auto-start on boot",
                "Setting working directory and permissions",
                "Enabling automatic restart on failure",
            ],
        ),
        Step(
            id="verification",
            title="Verifying Deployment",
            description="Testing application accessibility",
            details=[
                "Checking service status",
                f"Testing HTTP response on port {port}",
            ],
        ),
    ]


def generate_instructions(
    repository_url: Optional[str],
    code:           Optional[CodeAnalysis],
    outputs:        Optional[Dict[str, Any]],
    port:           int,
) -> List[str]:
    """Manual reproduction of the deployment, without this system."""
    outputs = outputs or {}
    public_ip = outputs.get("instance_public_ip")
    stack = _stack(code)

    lines = ["1. Clone the repository:"]
    lines.append(f"   git clone {repository_url}" if repository_url else "   # (Upload your codebase manually)")
    lines += [
        "",
        "2. Analyze the codebase and determine dependencies:",
        "   # Inspect requirements.txt, package.json, or other manifest files",
        "",
        "3. Generate and apply Terraform configuration:",
        "   # (Assumes AWS credentials are configured)",
        "   terraform init",
        "   terraform apply -auto-approve",
        "",
        "4. Wait for resources to be provisioned (EC2, VPC, Security Groups, EIP)",
        "",
        "5. SSH into the EC2 instance:",
        f"   ssh -i <your-key.pem> ec2-user@{public_ip or '<EC2_PUBLIC_IP>'}",
        "",
    ]
    if stack == "python":
        lines += [
            "6. Set up Python environment and run the app:",
            "   sudo yum install -y python3 python3-pip git",
            "   python3 -m venv venv && source venv/bin/activate",
            "   pip install -r requirements.txt",
            "   python app.py",
        ]
    elif stack == "node":
        lines += [
            "6. Set up Node.js environment and run the app:",
            "   sudo yum install -y nodejs npm git",
            "   npm install",
            f"   PORT={port} npm start",
        ]
    else:
        lines += [
            "6. Set up application environment and run your app:",
            "   # Install required runtime and dependencies",
            "   # Start your application manually",
        ]
    lines += [
        "",
        "7. (Optional) Set up a systemd service for auto-start on boot",
        "   # Create a systemd service file and enable it",
        "",
        "8. Access your application in the browser:",
        f"   Open: {outputs.get('application_url') or f'http://<EC2_PUBLIC_IP>:{port}'}",
    ]
    return lines


def render_summary(record: DeploymentRecord, public_url: Optional[str] = None) -> str:
    """Rule-based chat reply for a finished deployment."""
    code = record.code_analysis or CodeAnalysis()
    framework = code.framework or code.language or "application"
    strategy = record.strategy.type.value if record.strategy else "vm"
    url = public_url or record.public_url or (record.provisioning_outputs or {}).get("application_url")
    if not url:
        return "Deployment encountered an issue. Please check the logs for more details."
    return "\n".join([
        f"Your {framework} application has been deployed.",
        "",
        f"It is live at: {url}",
        "",
        "Deployment summary:",
        f"- Application type: {code.app_type or 'unknown'}",
        f"- Framework: {framework}",
        f"- Strategy: {strategy}",
        "- Infrastructure: AWS EC2 with Elastic IP",
        "",
        "The host may need a few minutes to finish its bootstrap script "
        "before the URL responds.",
    ])


# ─────────────────────────────────────────────────────────────────
# Orchestrator
# ─────────────────────────────────────────────────────────────────

class DeploymentOrchestrator:
    """
    Owns every DeploymentRecord and sequences its phases.
    Collaborators are injectable; defaults talk to GitHub and terraform.
    """

    def __init__(
        self,
        deploy_config:    DeployConfig = DEPLOY_CONFIG,
        store:            Optional[DeploymentStore] = None,
        code_inspector=None,
        intent_extractor=None,
        strategy_agent:   Optional[DeploymentStrategyAgent] = None,
        assembler:        Optional[ConfigAssembler] = None,
        generator:        Optional[IaCGeneratorAgent] = None,
        driver:           Optional[ProvisioningDriver] = None,
    ) -> None:
        self.cfg              = deploy_config
        self.store            = store or DeploymentStore()
        self.code_inspector   = code_inspector or GitHubCodeInspector()
        self.intent_extractor = intent_extractor or RuleBasedIntentExtractor()
        self.strategy_agent   = strategy_agent or DeploymentStrategyAgent()
        self.assembler        = assembler or ConfigAssembler(deploy_config)
        self.generator        = generator or IaCGeneratorAgent()
        self.driver           = driver or ProvisioningDriver(deploy_config, self.generator)
        self._audit           = get_audit()
        self._tasks: Dict[str, asyncio.Task] = {}

    # ── Intake ───────────────────────────────────────────────────

    def _validate(self, description: Any, repository_url: Optional[str]) -> DeploymentRequest:
        try:
            request = DeploymentRequest(description=description, repository_url=repository_url)
        except PydanticValidationError as exc:
            errors = "; ".join(e["msg"] for e in exc.errors())
            raise ValidationError(f"Invalid deployment request: {errors}") from exc
        if not request.repository_url and not self.cfg.default_repository_url:
            raise ValidationError("repository_url is required")
        return request

    def create_deployment(
        self,
        description:    str,
        repository_url: Optional[str] = None,
        deployment_id:  Optional[str] = None,
    ) -> DeploymentRecord:
        """Validate intake and register a record in `initializing`."""
        request = self._validate(description, repository_url)
        record = DeploymentRecord(
            id=deployment_id or str(uuid.uuid4()),
            description=request.description,
            repository_url=request.repository_url or self.cfg.default_repository_url,
        )
        record.history.append(PhaseEntry(DeploymentStatus.INITIALIZING.value, "Deployment accepted"))
        self.store.add(record)
        self._audit.deployment_started(record.id, record.repository_url, record.description)
        logger.info("[%s] Deployment accepted: %s", record.id, record.repository_url)
        return record

    async def submit(self, description: str, repository_url: Optional[str] = None) -> str:
        """
        Fire-and-forget chat deployment. Returns the id immediately;
        callers poll get_status() for the outcome.
        """
        record = self.create_deployment(description, repository_url)
        self._spawn(record.id, chat=True)
        return record.id

    async def start_deploy(self, deployment_id: str) -> None:
        """Background deploy_application() for an analyzed record."""
        self._spawn(deployment_id, chat=False)

    def _spawn(self, deployment_id: str, chat: bool) -> None:
        # Claimed before the task exists so a second start is rejected synchronously
        record = self._claim(deployment_id)
        task = asyncio.create_task(self._run_in_background(record, chat))
        self._tasks[deployment_id] = task
        task.add_done_callback(self._forget_task)

    def _forget_task(self, task: asyncio.Task) -> None:
        for deployment_id, current in list(self._tasks.items()):
            if current is task:
                del self._tasks[deployment_id]

    async def _run_in_background(self, record: DeploymentRecord, chat: bool) -> None:
        try:
            await self._run_phases(record, chat=chat)
        except DeploymentError as exc:
            # Already recorded on the record; nobody awaits this task
            logger.error("[%s] Background deployment ended: %s", record.id, exc)
        finally:
            self.store.release(record.id)

    async def wait(self, deployment_id: str) -> None:
        """Await a background sequence, if one is in flight."""
        task = self._tasks.get(deployment_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ── Phase sequences ──────────────────────────────────────────

    def _claim(self, deployment_id: str) -> DeploymentRecord:
        record = self.store.get(deployment_id)
        if record is None:
            raise NotFoundError(f"Deployment {deployment_id} not found")
        self.store.claim(deployment_id)
        if record.status not in RUNNABLE:
            self.store.release(deployment_id)
            raise DeploymentConflictError(
                f"Deployment {deployment_id} is {record.status.value}, cannot start a new sequence"
            )
        return record

    async def analyze_application(
        self,
        description:    str,
        repository_url: Optional[str] = None,
    ) -> DeploymentRecord:
        """Inspection + strategy only. Parks the record in `analyzed`."""
        record = self.create_deployment(description, repository_url)
        self._claim(record.id)
        try:
            await self._analyze(record)
            self._transition(record, DeploymentStatus.ANALYZED, "Analysis complete")
        except Exception as exc:
            self._fail(record, exc)
            raise
        finally:
            self.store.release(record.id)
        return record

    async def process_chat_deployment(self, deployment_id: str) -> DeploymentRecord:
        """analyze → deploy → completing summary. Ends in `completed`."""
        record = self._claim(deployment_id)
        try:
            await self._run_phases(record, chat=True)
        finally:
            self.store.release(deployment_id)
        return record

    async def deploy_application(self, deployment_id: str) -> DeploymentRecord:
        """analyze (unless already analyzed) → deploy. Ends in `deployed`."""
        record = self._claim(deployment_id)
        try:
            await self._run_phases(record, chat=False)
        finally:
            self.store.release(deployment_id)
        return record

    async def _run_phases(self, record: DeploymentRecord, chat: bool) -> None:
        t0 = time.time()
        try:
            if record.status == DeploymentStatus.INITIALIZING:
                await self._analyze(record)

            self._transition(record, DeploymentStatus.DEPLOYING, "Starting deployment")
            result = await self._deploy(record)
            await self._verify(record, result.public_url)

            if chat:
                self._transition(record, DeploymentStatus.COMPLETING, "Generating response")
                record.summary = render_summary(record, result.public_url)
                self._succeed(record, DeploymentStatus.COMPLETED, result, t0)
            else:
                self._succeed(record, DeploymentStatus.DEPLOYED, result, t0)
        except Exception as exc:
            self._fail(record, exc)
            raise

    # ── Phases ───────────────────────────────────────────────────

    async def _analyze(self, record: DeploymentRecord) -> None:
        self._transition(record, DeploymentStatus.ANALYZING, "Analyzing application")

        try:
            code = await self.code_inspector.inspect(record.repository_url)
            intent = self.intent_extractor.extract(record.description)
        except DeploymentError:
            raise
        except (ValueError, TypeError, KeyError, OSError) as exc:
            raise AnalysisError(f"Analysis failed: {exc}") from exc
        record.assign("code_analysis", code)
        record.assign("intent_analysis", intent)

        strategy = self.strategy_agent.decide(code, intent, record.description)
        record.assign("strategy", strategy)
        self._audit.strategy_decided(record.id, strategy.type.value, strategy.reasoning)

        port = code.port or infer_port(code.framework)
        for step in generate_steps(code, record.repository_url, port, self.cfg.instance_type):
            record.upsert_step(step)

    async def _deploy(self, record: DeploymentRecord) -> ProvisioningResult:
        config = self.assembler.assemble(
            record.strategy, record.code_analysis, record.intent_analysis,
            record.id, record.repository_url or "", record.description,
        )
        record.assign("deployment_config", config)
        bundle = self.generator.generate(config)

        record.update_step("infrastructure", "in_progress")
        try:
            result = await self.driver.provision(config, bundle)
        except ProvisioningError as exc:
            if exc.output:
                record.logs.append(LogBlock.from_text(exc.command or "terraform", exc.output))
            raise
        record.logs.extend(result.logs)
        record.assign("provisioning_outputs", dict(result.outputs))
        record.update_step("infrastructure", "completed", f"Public address: {result.public_url}")

        for step_id in ("system", "application", "service"):
            record.update_step(step_id, "completed", "Delegated to host bootstrap script (/var/log/user-data.log)")
        record.instructions = generate_instructions(
            record.repository_url, record.code_analysis, result.outputs, config.port,
        )
        return result

    async def _verify(self, record: DeploymentRecord, url: str) -> None:
        """Best-effort probe. Never fails the deployment."""
        record.update_step("verification", "in_progress")
        ok, detail = await self._probe(url)
        record.update_step("verification", "completed", detail)
        if not ok:
            logger.warning("[%s] Verification: %s", record.id, detail)

    async def _probe(self, url: str) -> Tuple[bool, str]:
        if not self.cfg.verify_timeout:
            return True, "HTTP probe disabled"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url, timeout=aiohttp.ClientTimeout(total=self.cfg.verify_timeout),
                ) as resp:
                    return resp.status < 500, f"HTTP {resp.status} from {url}"
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            return False, f"{url} not responding yet ({type(exc).__name__}); host bootstrap may still be running"

    # ── State transitions ────────────────────────────────────────

    @staticmethod
    def _check_transition(record: DeploymentRecord, status: DeploymentStatus) -> None:
        if status not in ALLOWED_TRANSITIONS.get(record.status, frozenset()):
            raise DeploymentError(
                f"Illegal transition {record.status.value} → {status.value} for {record.id}"
            )

    def _transition(
        self,
        record:  DeploymentRecord,
        status:  DeploymentStatus,
        message: str,
    ) -> None:
        self._check_transition(record, status)
        record.status = status
        record.last_updated = time.time()
        record.history.append(PhaseEntry(status.value, message))
        self._audit.phase_changed(record.id, status.value, message)
        logger.info("[%s] %s: %s", record.id, status.value, message)

    def _succeed(
        self,
        record: DeploymentRecord,
        status: DeploymentStatus,
        result: ProvisioningResult,
        t0:     float,
    ) -> None:
        self._check_transition(record, status)
        # public_url and terminal success are set together
        record.public_url = result.public_url
        record.status = status
        record.completed_at = record.last_updated = time.time()
        record.history.append(PhaseEntry(status.value, "Deployment completed successfully"))
        duration = record.completed_at - t0
        self._audit.deployment_complete(record.id, status.value, record.public_url, duration)
        logger.info("[%s] %s in %.1fs: %s", record.id, status.value, duration, record.public_url)

    def _fail(self, record: DeploymentRecord, exc: BaseException) -> None:
        if record.is_terminal:
            return
        phase = record.status.value
        message = str(exc) or type(exc).__name__
        for step in record.steps:
            if step.status == "in_progress":
                step.status = "failed"
                step.details.append(message)
        record.status = DeploymentStatus.FAILED
        record.error = message
        record.failed_at = record.last_updated = time.time()
        record.history.append(PhaseEntry(DeploymentStatus.FAILED.value, f"Failed during {phase}", error=message))
        self._audit.deployment_failed(record.id, phase, message)
        logger.error("[%s] Deployment failed during %s: %s", record.id, phase, message)

    # ── Read APIs ────────────────────────────────────────────────

    async def get_status(self, deployment_id: str) -> StatusReport:
        """
        Memory first, then filesystem reconciliation.
        Raises NotFoundError only when neither has evidence.
        """
        record = self.store.get(deployment_id)
        if record is not None:
            return StatusReport.from_record(record)
        try:
            record = await self._reconcile(deployment_id)
        except ReconciliationAmbiguous as exc:
            logger.warning("[%s] %s", deployment_id, exc)
            return exc.report
        return StatusReport.from_record(record)

    async def _reconcile(self, deployment_id: str) -> DeploymentRecord:
        if not self.driver.has_state(deployment_id):
            raise NotFoundError(f"Deployment {deployment_id} not found")

        logger.info("[%s] Reconstructing deployment from filesystem", deployment_id)
        try:
            outputs = await self.driver.read_outputs(deployment_id)
        except ProvisioningError as exc:
            raise ReconciliationAmbiguous(
                f"State exists but outputs unreadable: {exc}",
                report=self._ambiguous_report(deployment_id),
            ) from exc
        if not has_address(outputs):
            # e.g. an apply that failed before the instance got an address
            raise ReconciliationAmbiguous(
                f"State exists but outputs carry no address: {sorted(outputs)}",
                report=self._ambiguous_report(deployment_id),
            )

        state_file = self.driver.state_file(deployment_id)
        created = state_file.stat().st_mtime
        url = derive_public_url(outputs, FALLBACK_PORT, deployment_id, self.cfg.aws_region)
        record = DeploymentRecord(
            id=deployment_id,
            status=DeploymentStatus.COMPLETED,
            created_at=created,
            last_updated=time.time(),
            completed_at=created,
            public_url=url,
            reconstructed=True,
            note="Status reconstructed from deployment artifacts",
        )
        record.assign("provisioning_outputs", dict(outputs))
        for step in generate_steps(None, None, FALLBACK_PORT, self.cfg.instance_type):
            step.status = "completed"
            record.upsert_step(step)
        record.instructions = generate_instructions(None, None, outputs, FALLBACK_PORT)
        record.history.append(PhaseEntry(DeploymentStatus.COMPLETED.value, record.note))

        existing = self.store.get(deployment_id)
        if existing is not None:
            return existing
        self.store.set(record)
        self._audit.deployment_reconciled(deployment_id, record.status.value, url)
        return record

    @staticmethod
    def _ambiguous_report(deployment_id: str) -> StatusReport:
        return StatusReport(
            deployment_id=deployment_id,
            status=DeploymentStatus.UNKNOWN.value,
            progress=progress_for(DeploymentStatus.UNKNOWN),
            last_updated=time.time(),
            note="Deployment artifacts found but status unclear",
            reconstructed=True,
        )

    async def _resolve(self, deployment_id: str) -> Optional[DeploymentRecord]:
        """Record from memory or reconciliation. None when ambiguous."""
        record = self.store.get(deployment_id)
        if record is not None:
            return record
        try:
            return await self._reconcile(deployment_id)
        except ReconciliationAmbiguous:
            return None

    async def get_steps(self, deployment_id: str) -> List[Dict[str, Any]]:
        record = await self._resolve(deployment_id)
        if record is None:
            return []
        return [s.to_dict() for s in record.steps]

    async def get_instructions(self, deployment_id: str) -> List[str]:
        record = await self._resolve(deployment_id)
        if record is None:
            return []
        return list(record.instructions)

    async def get_logs(self, deployment_id: str) -> List[LogBlock]:
        """Never raises. Record logs, else log files on disk, else a status block."""
        record = self.store.get(deployment_id)
        if record is not None and record.logs:
            return list(record.logs)

        blocks: List[LogBlock] = []
        deployment_dir = self.cfg.deployment_dir(deployment_id)
        candidates = [deployment_dir / name for name in DEPLOYMENT_LOG_FILES]
        candidates.append(self.driver.log_file(deployment_id))
        for path in candidates:
            if path.is_file():
                try:
                    blocks.append(LogBlock.from_text(path.name, path.read_text(encoding="utf-8", errors="replace")))
                except OSError as exc:
                    logger.warning("[%s] Could not read %s: %s", deployment_id, path, exc)
        if blocks:
            return blocks

        try:
            status = await self.get_status(deployment_id)
        except DeploymentError as exc:
            return [LogBlock("error.log", [f"Failed to retrieve logs: {exc}"])]
        lines = [
            f"Deployment ID: {deployment_id}",
            f"Status: {status.status}",
            f"Progress: {status.progress}%",
        ]
        if status.public_url:
            lines.append(f"Public URL: {status.public_url}")
        if status.error:
            lines.append(f"Error: {status.error}")
        lines.append("Note: Detailed logs may not be available for this deployment")
        return [LogBlock("deployment-status.log", lines)]

    def list_all(self) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in self.store.list()]

    # ── Destroy ──────────────────────────────────────────────────

    async def destroy(self, deployment_id: str) -> bool:
        """
        Deprovision, then remove artifacts, then forget the record.
        If deprovision raises, the record stays so destroy can be retried.
        Returns whether terraform state existed.
        """
        if self.store.get(deployment_id) is None:
            raise NotFoundError(f"Deployment {deployment_id} not found")
        self.store.claim(deployment_id)
        try:
            had_state = await self.driver.deprovision(deployment_id)
            self.driver.remove_artifacts(deployment_id)
            self.store.delete(deployment_id)
        except DeploymentError as exc:
            logger.error("[%s] Destroy failed, record kept: %s", deployment_id, exc)
            raise
        finally:
            self.store.release(deployment_id)

        self._audit.deployment_destroyed(deployment_id, had_state)
        logger.info("[%s] Deployment destroyed (had_state=%s)", deployment_id, had_state)
        return had_state


# ── Singleton ────────────────────────────────────────────────────

_orchestrator: Optional[DeploymentOrchestrator] = None


def get_orchestrator() -> DeploymentOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = DeploymentOrchestrator()
    return _orchestrator


async def main() -> None:
    description = os.getenv("DEPLOY_DESCRIPTION", "")
    if not description:
        raise ValueError("DEPLOY_DESCRIPTION environment variable required")
    orchestrator = get_orchestrator()
    record = orchestrator.create_deployment(description, os.getenv("GITHUB_REPO_URL") or None)
    await orchestrator.process_chat_deployment(record.id)
    print("\n" + "=" * 60)
    for k, v in record.to_dict().items():
        print(f"  {k}: {v}")
    print("\n" + (record.summary or ""))
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
