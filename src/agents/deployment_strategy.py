"""
Deployment Strategy Agent

Decides the deployment shape from the CodeAnalysis and IntentAnalysis
snapshots. Five strategies, one chosen per deployment:

  STATIC      → object storage + CDN
  SERVERLESS  → functions + API gateway
  CONTAINER   → container service + load balancer
  VM          → compute instance (+ load balancer)
  KUBERNETES  → managed cluster + load balancer

Decision order (first matching rule wins, each match adds a reasoning line):
  1. Intent names a deployment type explicitly        → that type
  2. Static site (app_type static, or static assets and
     no backend framework)                             → STATIC
  3. Stateless-friendly framework, few dependencies,
     no local sqlite, traffic not high                 → SERVERLESS
  4. Dockerized, any database, high scaling, or a
     full-stack framework                              → CONTAINER
  5. High traffic, high scaling, several databases, or
     "high-availability" requested                     → KUBERNETES
  6. Anything else                                     → VM

This agent never raises. Missing or malformed inputs fall through to VM.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from src.schemas.deployment_schemas import CodeAnalysis, IntentAnalysis, StrategyType

logger = logging.getLogger(__name__)

SERVERLESS_FRAMEWORKS = frozenset({"flask", "fastapi", "express"})
FULL_STACK_FRAMEWORKS = frozenset({"django", "spring-boot", "laravel"})
LOW_DEPENDENCY_LIMIT  = 10


@dataclass(frozen=True)
class InfrastructureProfile:
    category:       str           # "cdn" | "serverless" | "container" | "vm" | "kubernetes"
    services:       tuple         # provider services the strategy maps onto
    estimated_cost: str           # very_low | low | medium | high
    complexity:     str           # low | medium | high
    scalability:    str           # manual | good | auto | excellent

    def to_dict(self) -> Dict:
        return {
            "type": self.category,
            "services": list(self.services),
            "estimated_cost": self.estimated_cost,
            "complexity": self.complexity,
            "scalability": self.scalability,
        }


@dataclass(frozen=True)
class Strategy:
    type:           StrategyType
    reasoning:      List[str]
    infrastructure: InfrastructureProfile
    networking:     Dict = field(default_factory=dict)
    security:       Dict = field(default_factory=dict)
    monitoring:     Dict = field(default_factory=dict)
    decided_at:     float = field(default_factory=time.time)

    @property
    def estimated_cost(self) -> str:
        return self.infrastructure.estimated_cost

    @property
    def complexity(self) -> str:
        return self.infrastructure.complexity

    def to_dict(self) -> Dict:
        return {
            "type": self.type.value,
            "reasoning": list(self.reasoning),
            "infrastructure": self.infrastructure.to_dict(),
            "networking": dict(self.networking),
            "security": dict(self.security),
            "monitoring": dict(self.monitoring),
            "estimated_cost": self.estimated_cost,
            "complexity": self.complexity,
        }


# ── Per-strategy sub-configuration ────────────────────────────────────────────
# Each builder returns (infrastructure, networking, security, monitoring).
# Constants only: nothing here depends on the analyses.

def _static_profile():
    return (
        InfrastructureProfile("cdn", ("s3", "cloudfront"), "very_low", "low", "excellent"),
        {"load_balancer": False, "public_ingress": [80, 443]},
        {"iam_roles": {"execution_role": False, "task_role": False}},
        {"access_logs": True},
    )


def _serverless_profile():
    return (
        InfrastructureProfile("serverless", ("lambda", "api_gateway"), "low", "medium", "auto"),
        {"load_balancer": False, "public_ingress": [443]},
        {"iam_roles": {"execution_role": True, "task_role": False}},
        {"function_logs": True},
    )


def _container_profile():
    return (
        InfrastructureProfile("container", ("ecs", "fargate", "alb"), "medium", "medium", "good"),
        {"load_balancer": True, "public_ingress": [80, 443]},
        {"iam_roles": {"execution_role": True, "task_role": True}},
        {"container_insights": True},
    )


def _vm_profile():
    return (
        InfrastructureProfile("vm", ("ec2", "elb"), "medium", "medium", "manual"),
        {"load_balancer": True, "public_ingress": [22, 80, 443]},
        {"iam_roles": {"execution_role": False, "task_role": False}},
        {"instance_metrics": True},
    )


def _kubernetes_profile():
    return (
        InfrastructureProfile("kubernetes", ("eks", "alb"), "high", "high", "excellent"),
        {"load_balancer": True, "public_ingress": [80, 443]},
        {"iam_roles": {"execution_role": True, "task_role": True}},
        {"container_insights": True},
    )


STRATEGY_PROFILES: Dict[StrategyType, Callable[[], tuple]] = {
    StrategyType.STATIC:     _static_profile,
    StrategyType.SERVERLESS: _serverless_profile,
    StrategyType.CONTAINER:  _container_profile,
    StrategyType.VM:         _vm_profile,
    StrategyType.KUBERNETES: _kubernetes_profile,
}


class DeploymentStrategyAgent:
    """
    Pure decision function over the two analysis snapshots.
    Same inputs always give the same type and reasoning.
    """

    def decide(
        self,
        code:        Optional[CodeAnalysis],
        intent:      Optional[IntentAnalysis],
        description: str = "",
    ) -> Strategy:
        code   = code if isinstance(code, CodeAnalysis) else CodeAnalysis()
        intent = intent if isinstance(intent, IntentAnalysis) else IntentAnalysis()

        reasoning: List[str] = []
        try:
            chosen = self._choose(code, intent, reasoning)
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("Strategy inputs unusable (%s), defaulting to vm", exc)
            reasoning = ["Inputs could not be evaluated, standard VM deployment for flexibility"]
            chosen = StrategyType.VM

        infrastructure, networking, security, monitoring = STRATEGY_PROFILES[chosen]()
        strategy = Strategy(
            type=chosen,
            reasoning=reasoning,
            infrastructure=infrastructure,
            networking=networking,
            security=security,
            monitoring=monitoring,
        )

        logger.info(
            "Strategy %s for %r: %s",
            chosen.value, (description or "")[:60], "; ".join(reasoning),
        )
        return strategy

    # ── Decision tree ────────────────────────────────────────────────────────

    def _choose(
        self,
        code:      CodeAnalysis,
        intent:    IntentAnalysis,
        reasoning: List[str],
    ) -> StrategyType:
        if intent.deployment_type is not None:
            reasoning.append(f"User requested {intent.deployment_type.value} deployment")
            return intent.deployment_type

        if self._is_static(code):
            reasoning.append("Static files detected, optimal for CDN deployment")
            return StrategyType.STATIC

        if self._suits_serverless(code, intent):
            reasoning.append(
                f"{code.framework} app with {len(code.dependencies)} dependencies "
                f"and no local database, suitable for serverless"
            )
            return StrategyType.SERVERLESS

        if self._suits_container(code, intent):
            reasoning.append("Application is containerized or suitable for containers")
            return StrategyType.CONTAINER

        if self._suits_kubernetes(code, intent):
            reasoning.append("Complex application requiring orchestration")
            return StrategyType.KUBERNETES

        reasoning.append("Standard VM deployment for flexibility")
        return StrategyType.VM

    @staticmethod
    def _is_static(code: CodeAnalysis) -> bool:
        if code.app_type == "static":
            return True
        return code.static_files and not code.framework

    @staticmethod
    def _suits_serverless(code: CodeAnalysis, intent: IntentAnalysis) -> bool:
        # Unknown dependency count (None or {}) never counts as low
        low_complexity = bool(code.dependencies) and len(code.dependencies) < LOW_DEPENDENCY_LIMIT
        return (
            code.framework in SERVERLESS_FRAMEWORKS
            and "sqlite" not in code.database_requirements
            and low_complexity
            and intent.estimated_traffic != "high"
        )

    @staticmethod
    def _suits_container(code: CodeAnalysis, intent: IntentAnalysis) -> bool:
        return (
            code.dockerized
            or len(code.database_requirements) > 0
            or intent.scaling_requirements == "high"
            or code.framework in FULL_STACK_FRAMEWORKS
        )

    @staticmethod
    def _suits_kubernetes(code: CodeAnalysis, intent: IntentAnalysis) -> bool:
        return (
            intent.estimated_traffic == "high"
            or intent.scaling_requirements == "high"
            or len(code.database_requirements) > 1
            or "high-availability" in intent.requirements
        )


_agent: Optional[DeploymentStrategyAgent] = None


def decide_strategy(
    code:        Optional[CodeAnalysis],
    intent:      Optional[IntentAnalysis],
    description: str = "",
) -> Strategy:
    """Module-level entry point sharing one stateless agent."""
    global _agent
    if _agent is None:
        _agent = DeploymentStrategyAgent()
    return _agent.decide(code, intent, description)
