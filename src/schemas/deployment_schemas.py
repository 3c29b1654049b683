"""
Deployment data model.

Two kinds of object live here:

  Collaborator contracts (pydantic, frozen)
    CodeAnalysis, IntentAnalysis: produced by the codebase inspector and the
    intent extractor, attached once to a record and never mutated.
    DeploymentRequest: validated intake.

  Engine state (dataclasses, mutable, owned by the orchestrator)
    DeploymentRecord and its parts: Step, PhaseEntry, LogBlock.
    StatusReport: the read-only snapshot returned by status polling.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

if TYPE_CHECKING:
    from src.agents.config_assembler import DeploymentConfig
    from src.agents.deployment_strategy import Strategy


class DeploymentStatus(str, Enum):
    INITIALIZING = "initializing"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    DEPLOYING = "deploying"
    COMPLETING = "completing"
    COMPLETED = "completed"
    DEPLOYED = "deployed"
    FAILED = "failed"
    # Reconciliation only: state on disk, outputs unreadable
    UNKNOWN = "unknown"


TERMINAL_SUCCESS = frozenset({DeploymentStatus.COMPLETED, DeploymentStatus.DEPLOYED})
TERMINAL = TERMINAL_SUCCESS | {DeploymentStatus.FAILED}

# Forward-only transitions. FAILED is reachable from every non-terminal state.
ALLOWED_TRANSITIONS: Dict[DeploymentStatus, frozenset] = {
    DeploymentStatus.INITIALIZING: frozenset({DeploymentStatus.ANALYZING}),
    DeploymentStatus.ANALYZING:    frozenset({DeploymentStatus.ANALYZED, DeploymentStatus.DEPLOYING}),
    DeploymentStatus.ANALYZED:     frozenset({DeploymentStatus.DEPLOYING}),
    DeploymentStatus.DEPLOYING:    frozenset({DeploymentStatus.COMPLETING, DeploymentStatus.DEPLOYED}),
    DeploymentStatus.COMPLETING:   frozenset({DeploymentStatus.COMPLETED}),
}

PROGRESS_BY_STATUS: Dict[DeploymentStatus, int] = {
    DeploymentStatus.INITIALIZING: 0,
    DeploymentStatus.ANALYZING:    33,
    DeploymentStatus.ANALYZED:     33,
    DeploymentStatus.DEPLOYING:    67,
    DeploymentStatus.COMPLETING:   67,
    DeploymentStatus.DEPLOYED:     100,
    DeploymentStatus.COMPLETED:    100,
    # Finished, not successful
    DeploymentStatus.FAILED:       100,
    DeploymentStatus.UNKNOWN:      50,
}


def progress_for(status: Any) -> int:
    """Map a status (enum or raw string) to a 0-100 progress value. Unknown strings map to 0."""
    try:
        return PROGRESS_BY_STATUS[DeploymentStatus(status)]
    except ValueError:
        return 0


class StrategyType(str, Enum):
    STATIC = "static"
    SERVERLESS = "serverless"
    CONTAINER = "container"
    VM = "vm"
    KUBERNETES = "kubernetes"


# Synonyms the intent extractor (or an LLM) may emit
_DEPLOYMENT_TYPE_ALIASES: Dict[str, StrategyType] = {
    "static":     StrategyType.STATIC,
    "cdn":        StrategyType.STATIC,
    "serverless": StrategyType.SERVERLESS,
    "lambda":     StrategyType.SERVERLESS,
    "container":  StrategyType.CONTAINER,
    "docker":     StrategyType.CONTAINER,
    "ecs":        StrategyType.CONTAINER,
    "fargate":    StrategyType.CONTAINER,
    "vm":         StrategyType.VM,
    "ec2":        StrategyType.VM,
    "kubernetes": StrategyType.KUBERNETES,
    "k8s":        StrategyType.KUBERNETES,
    "eks":        StrategyType.KUBERNETES,
}


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(ts))


# ══════════════════════════════════════════════════════════════════════════════
# Collaborator contracts
# ══════════════════════════════════════════════════════════════════════════════

class CodeAnalysis(BaseModel):
    """What the codebase inspector found. Defaults make partial output valid."""
    language: Optional[str] = None
    framework: Optional[str] = None
    app_type: Optional[str] = None
    port: Optional[int] = None
    # None or {} = dependency count unknown
    dependencies: Optional[Dict[str, Any]] = None
    build_commands: List[str] = Field(default_factory=list)
    start_commands: List[str] = Field(default_factory=list)
    environment_variables: List[str] = Field(default_factory=list)
    database_requirements: List[str] = Field(default_factory=list)
    dockerized: bool = False
    static_files: bool = False

    @field_validator("language", "framework", "app_type")
    @classmethod
    def normalize_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        return v or None

    @field_validator("database_requirements")
    @classmethod
    def normalize_databases(cls, v: List[str]) -> List[str]:
        return [d.strip().lower() for d in v if d and d.strip()]

    class Config:
        frozen = True


class IntentAnalysis(BaseModel):
    """Requirements extracted from the free-text request."""
    cloud_provider: Optional[str] = None
    deployment_type: Optional[StrategyType] = None
    environment: str = "production"
    scaling_requirements: str = "low"
    estimated_traffic: str = "low"
    database_needed: bool = False
    storage_needed: bool = False
    custom_domain: bool = False
    https: bool = False
    monitoring: bool = False
    requirements: List[str] = Field(default_factory=list)
    confidence: float = 0.0

    @field_validator("deployment_type", mode="before")
    @classmethod
    def normalize_deployment_type(cls, v: Any) -> Optional[StrategyType]:
        if v is None or isinstance(v, StrategyType):
            return v
        return _DEPLOYMENT_TYPE_ALIASES.get(str(v).strip().lower())

    @field_validator("scaling_requirements", "estimated_traffic", "environment")
    @classmethod
    def lower(cls, v: str) -> str:
        return v.strip().lower()

    class Config:
        frozen = True


# https://host[:port]/segment[/segment...], no shell or URL metacharacters
REPOSITORY_URL_RE = re.compile(r"^https://[A-Za-z0-9.-]+(?::\d+)?(?:/[A-Za-z0-9._~-]+)+/?$")


class DeploymentRequest(BaseModel):
    """Intake payload. Rejected before a record exists when invalid."""
    description: str
    repository_url: Optional[str] = None

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("description must not be empty")
        return v.strip()

    @field_validator("repository_url")
    @classmethod
    def strip_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        if not REPOSITORY_URL_RE.match(v):
            raise ValueError(f"repository_url must look like https://host/owner/repo, got {v!r}")
        return v

    class Config:
        frozen = True


# ══════════════════════════════════════════════════════════════════════════════
# Engine state
# ══════════════════════════════════════════════════════════════════════════════

@dataclass
class Step:
    """User-facing narration of one phase. Updated in place by id, never removed."""
    id:          str
    title:       str
    description: str
    status:      str       = "pending"    # pending | in_progress | completed | failed
    details:     List[str] = field(default_factory=list)

    def to_dict(self, with_details: bool = True) -> Dict[str, Any]:
        d = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
        }
        if with_details:
            d["details"] = list(self.details)
        return d


@dataclass
class PhaseEntry:
    """One status transition of the state machine."""
    status:    str
    message:   str
    timestamp: float         = field(default_factory=time.time)
    error:     Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {"status": self.status, "message": self.message, "timestamp": _iso(self.timestamp)}
        if self.error:
            d["error"] = self.error
        return d


@dataclass
class LogBlock:
    """Captured output of one source (a tool invocation or a log file)."""
    source:    str
    lines:     List[str]
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_text(cls, source: str, text: str) -> "LogBlock":
        return cls(source=source, lines=[ln for ln in text.splitlines() if ln.strip()])

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "lines": list(self.lines), "timestamp": _iso(self.timestamp)}


class _Unset:
    pass


@dataclass
class DeploymentRecord:
    """
    Everything the engine knows about one deployment.

    Owned by the orchestrator. Snapshot fields (analyses, strategy, config,
    outputs) are write-once: use assign() so a second write raises.
    """
    id:             str
    description:    str                        = ""
    repository_url: Optional[str]              = None
    status:         DeploymentStatus           = DeploymentStatus.INITIALIZING
    created_at:     float                      = field(default_factory=time.time)
    last_updated:   float                      = field(default_factory=time.time)
    completed_at:   Optional[float]            = None
    failed_at:      Optional[float]            = None

    code_analysis:        Optional[CodeAnalysis]       = None
    intent_analysis:      Optional[IntentAnalysis]     = None
    strategy:             Optional["Strategy"]         = None
    deployment_config:    Optional["DeploymentConfig"] = None
    provisioning_outputs: Optional[Dict[str, Any]]     = None

    public_url:   Optional[str]     = None
    steps:        List[Step]        = field(default_factory=list)
    history:      List[PhaseEntry]  = field(default_factory=list)
    logs:         List[LogBlock]    = field(default_factory=list)
    instructions: List[str]         = field(default_factory=list)
    summary:      Optional[str]     = None
    error:        Optional[str]     = None
    reconstructed: bool             = False
    note:          Optional[str]    = None

    _WRITE_ONCE = frozenset({
        "code_analysis", "intent_analysis", "strategy",
        "deployment_config", "provisioning_outputs",
    })

    def assign(self, name: str, value: Any) -> None:
        """Attach a write-once snapshot."""
        if name not in self._WRITE_ONCE:
            raise AttributeError(f"{name} is not a write-once field")
        if getattr(self, name) is not None:
            raise AttributeError(f"{name} already assigned for deployment {self.id}")
        setattr(self, name, value)
        self.last_updated = time.time()

    # ── Steps ─────────────────────────────────────────────────────────────────

    def get_step(self, step_id: str) -> Optional[Step]:
        return next((s for s in self.steps if s.id == step_id), None)

    def upsert_step(self, step: Step) -> None:
        existing = self.get_step(step.id)
        if existing is None:
            self.steps.append(step)
        else:
            existing.title = step.title
            existing.description = step.description
            existing.status = step.status
            existing.details = list(step.details)
        self.last_updated = time.time()

    def update_step(self, step_id: str, status: str, detail: Optional[str] = None) -> None:
        step = self.get_step(step_id)
        if step is None:
            return
        step.status = status
        if detail:
            step.details.append(detail)
        self.last_updated = time.time()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deployment_id": self.id,
            "status": self.status.value,
            "description": self.description,
            "repository_url": self.repository_url,
            "created_at": _iso(self.created_at),
            "last_updated": _iso(self.last_updated),
            "completed_at": _iso(self.completed_at),
            "failed_at": _iso(self.failed_at),
            "strategy": self.strategy.type.value if self.strategy else None,
            "public_url": self.public_url,
            "provisioning_outputs": dict(self.provisioning_outputs or {}),
            "error": self.error,
            "progress": progress_for(self.status),
            "reconstructed": self.reconstructed,
        }


@dataclass
class StatusReport:
    """What status polling returns. Always well-formed, even for failures."""
    deployment_id: str
    status:        str
    progress:      int
    created_at:    Optional[float]     = None
    last_updated:  Optional[float]     = None
    public_url:    Optional[str]       = None
    error:         Optional[str]       = None
    instructions:  Optional[List[str]] = None
    note:          Optional[str]       = None
    reconstructed: bool                = False

    @classmethod
    def from_record(cls, record: DeploymentRecord) -> "StatusReport":
        return cls(
            deployment_id=record.id,
            status=record.status.value,
            progress=progress_for(record.status),
            created_at=record.created_at,
            last_updated=record.last_updated,
            public_url=record.public_url,
            error=record.error,
            instructions=list(record.instructions) or None,
            note=record.note,
            reconstructed=record.reconstructed,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "status": self.status,
            "progress": self.progress,
            "created_at": _iso(self.created_at),
            "last_updated": _iso(self.last_updated),
            "public_url": self.public_url,
            "error": self.error,
            "instructions": self.instructions,
            "note": self.note,
            "reconstructed": self.reconstructed,
        }
