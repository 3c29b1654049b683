"""
Configuration Assembler

Joins a Strategy with the two analysis snapshots into one DeploymentConfig,
the only input the IaC generator reads. Pure: no I/O, no clock, no random
names. Bucket and application names derive from the deployment id so two
assemblies of the same inputs are equal.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config.deploy_config import DEPLOY_CONFIG, DeployConfig
from src.agents.deployment_strategy import Strategy
from src.schemas.deployment_schemas import CodeAnalysis, IntentAnalysis, StrategyType

logger = logging.getLogger(__name__)

# Framework → port when the inspector did not detect one
DEFAULT_PORTS: Dict[str, int] = {
    "flask":       5000,
    "fastapi":     8000,
    "django":      8000,
    "express":     3000,
    "node":        3000,
    "nextjs":      3000,
    "react":       3000,
    "spring-boot": 8080,
    "spring":      8080,
}
FALLBACK_PORT = 8080

# Case-insensitive substring match against env var names
SECRET_KEYWORDS = ("password", "secret", "key", "token", "api")

LAMBDA_RUNTIMES: Dict[str, str] = {
    "javascript": "nodejs18.x",
    "python":     "python3.9",
    "java":       "java11",
    "go":         "go1.x",
}

VPC_CIDR        = "10.0.0.0/16"
PUBLIC_SUBNETS  = ["10.0.1.0/24", "10.0.2.0/24"]
PRIVATE_SUBNETS = ["10.0.3.0/24", "10.0.4.0/24"]


def infer_port(framework: Optional[str]) -> int:
    return DEFAULT_PORTS.get((framework or "").lower(), FALLBACK_PORT)


def identify_secrets(env_vars: List[str]) -> List[str]:
    """Env var names that look like credentials, e.g. DB_PASSWORD but not DB_HOST."""
    return [
        name for name in env_vars
        if any(kw in name.lower() for kw in SECRET_KEYWORDS)
    ]


@dataclass(frozen=True)
class ApplicationDescriptor:
    name:           str
    language:       Optional[str]
    framework:      Optional[str]
    app_type:       Optional[str]
    port:           int
    build_commands: List[str] = field(default_factory=list)
    start_commands: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "language": self.language,
            "framework": self.framework,
            "app_type": self.app_type,
            "port": self.port,
            "build_commands": list(self.build_commands),
            "start_commands": list(self.start_commands),
        }


@dataclass(frozen=True)
class DeploymentConfig:
    """Everything the IaC generator and provisioning driver need for one deployment."""
    deployment_id:  str
    app_name:       str
    cloud_provider: str
    strategy_type:  StrategyType
    repository_url: str
    description:    str
    region:         str
    zone:           str
    environment:    str
    instance_type:  str
    application:    ApplicationDescriptor
    infrastructure: Dict[str, Any]
    networking:     Dict[str, Any]
    security:       Dict[str, Any]
    monitoring:     Dict[str, Any]
    env_vars:       List[str]                = field(default_factory=list)
    secrets:        List[str]                = field(default_factory=list)
    database:       Optional[Dict[str, Any]] = None
    storage:        Optional[Dict[str, Any]] = None

    @property
    def port(self) -> int:
        return self.application.port

    @property
    def language(self) -> Optional[str]:
        return self.application.language

    @property
    def framework(self) -> Optional[str]:
        return self.application.framework

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "deployment_id": self.deployment_id,
            "app_name": self.app_name,
            "cloud_provider": self.cloud_provider,
            "strategy": self.strategy_type.value,
            "repository_url": self.repository_url,
            "region": self.region,
            "zone": self.zone,
            "environment": self.environment,
            "instance_type": self.instance_type,
            "application": self.application.to_dict(),
            "infrastructure": dict(self.infrastructure),
            "networking": dict(self.networking),
            "security": dict(self.security),
            "monitoring": dict(self.monitoring),
            "environment_variables": {"variables": list(self.env_vars), "secrets": list(self.secrets)},
        }
        if self.database is not None:
            d["database"] = dict(self.database)
        if self.storage is not None:
            d["storage"] = dict(self.storage)
        return d


class ConfigAssembler:

    def __init__(self, deploy_config: DeployConfig = DEPLOY_CONFIG) -> None:
        self.cfg = deploy_config

    def assemble(
        self,
        strategy:       Strategy,
        code:           CodeAnalysis,
        intent:         IntentAnalysis,
        deployment_id:  str,
        repository_url: str = "",
        description:    str = "",
    ) -> DeploymentConfig:
        app_name = f"app-{deployment_id[:8]}"
        port = code.port or infer_port(code.framework)
        provider = (intent.cloud_provider or "aws").lower()

        application = ApplicationDescriptor(
            name=app_name,
            language=code.language,
            framework=code.framework,
            app_type=code.app_type,
            port=port,
            build_commands=list(code.build_commands),
            start_commands=list(code.start_commands),
        )

        needs_db = bool(code.database_requirements) or intent.database_needed
        config = DeploymentConfig(
            deployment_id=deployment_id,
            app_name=app_name,
            cloud_provider=provider,
            strategy_type=strategy.type,
            repository_url=repository_url or self.cfg.default_repository_url,
            description=description,
            region=self.cfg.aws_region,
            zone=self.cfg.zone,
            environment=self.cfg.environment,
            instance_type=self.cfg.instance_type,
            application=application,
            infrastructure=self._infrastructure(strategy, code, deployment_id, provider),
            networking=self._networking(strategy, port),
            security=self._security(strategy, intent),
            monitoring=self._monitoring(strategy, intent),
            env_vars=list(code.environment_variables),
            secrets=identify_secrets(code.environment_variables),
            database=self._database(code.database_requirements) if needs_db else None,
            storage=self._storage(deployment_id) if intent.storage_needed else None,
        )
        logger.info(
            "Assembled %s config for %s (port %d, db=%s, storage=%s)",
            strategy.type.value, deployment_id, port,
            config.database is not None, config.storage is not None,
        )
        return config

    # ── Descriptors ──────────────────────────────────────────────────────────

    def _infrastructure(
        self,
        strategy:      Strategy,
        code:          CodeAnalysis,
        deployment_id: str,
        provider:      str,
    ) -> Dict[str, Any]:
        base = {
            "provider": provider,
            "region": self.cfg.aws_region,
            "type": strategy.type.value,
            "services": list(strategy.infrastructure.services),
        }
        kind = strategy.type
        if kind == StrategyType.STATIC:
            base.update({
                "s3_bucket": f"static-site-{deployment_id[:8]}",
                "cloudfront_distribution": True,
            })
        elif kind == StrategyType.SERVERLESS:
            base.update({
                "lambda_runtime": LAMBDA_RUNTIMES.get(code.language or "", "nodejs18.x"),
                "memory": 256,
                "timeout": 30,
            })
        elif kind == StrategyType.CONTAINER:
            base.update({
                "cluster_name": "app-cluster",
                "service_name": "app-service",
                "task_cpu": 256,
                "task_memory": 512,
                "desired_count": 1,
            })
        elif kind == StrategyType.KUBERNETES:
            base.update({
                "cluster_name": "app-cluster",
                "node_group": {
                    "instance_types": ["t3.medium"],
                    "scaling_config": {"desired_size": 2, "max_size": 10, "min_size": 1},
                },
            })
        else:
            base.update({
                "instance_type": self.cfg.instance_type,
                "root_volume_gb": 20,
            })
        return base

    @staticmethod
    def _networking(strategy: Strategy, port: int) -> Dict[str, Any]:
        ingress_ports = [80, 443]
        if port not in ingress_ports:
            ingress_ports.append(port)
        return {
            "vpc": {"cidr": VPC_CIDR, "enable_dns": True},
            "subnets": {"public": list(PUBLIC_SUBNETS), "private": list(PRIVATE_SUBNETS)},
            "ingress": [
                {"port": p, "protocol": "tcp", "cidr": "0.0.0.0/0"} for p in ingress_ports
            ],
            "load_balancer": bool(strategy.networking.get("load_balancer", False)),
        }

    @staticmethod
    def _security(strategy: Strategy, intent: IntentAnalysis) -> Dict[str, Any]:
        hardened = "security" in intent.requirements
        return {
            "https_enabled": intent.https or intent.custom_domain,
            "ssl_certificate": "acm" if intent.custom_domain else "default",
            "iam_roles": dict(strategy.security.get("iam_roles", {})),
            "secrets_manager": hardened,
            "waf_enabled": hardened,
        }

    @staticmethod
    def _monitoring(strategy: Strategy, intent: IntentAnalysis) -> Dict[str, Any]:
        d = {
            "cloudwatch_logs": True,
            "cloudwatch_metrics": True,
            "alarms": intent.monitoring,
            "xray_tracing": "performance" in intent.requirements,
        }
        d.update(strategy.monitoring)
        return d

    @staticmethod
    def _database(requirements: List[str]) -> Dict[str, Any]:
        return {
            "engine": requirements[0] if requirements else "postgresql",
            "instance_class": "db.t3.micro",
            "allocated_storage": 20,
            "multi_az": False,
            "backup_retention": 7,
            "subnet_group": "app-db-subnet-group",
        }

    @staticmethod
    def _storage(deployment_id: str) -> Dict[str, Any]:
        return {
            "s3_bucket": f"app-storage-{deployment_id[:8]}",
            "versioning": True,
            "encryption": True,
        }
