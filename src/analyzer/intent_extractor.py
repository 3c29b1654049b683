"""
Rule-based intent extraction.

Reads a free-text deployment request ("Deploy my Flask app on AWS with a
Postgres database and high traffic") and produces an IntentAnalysis.
Keyword lists and regexes only: no model, no network.

A deployment type is set only when the text names one. Leaving it unset
lets the strategy agent decide from the code.
"""
from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from src.errors import AnalysisError
from src.schemas.deployment_schemas import IntentAnalysis

logger = logging.getLogger(__name__)

CLOUD_PROVIDERS: List[Tuple[str, str]] = [
    ("aws", "aws"),
    ("amazon", "aws"),
    ("azure", "azure"),
    ("microsoft", "azure"),
    ("gcp", "gcp"),
    ("google cloud", "gcp"),
]

# Checked in order; the first word-bounded hit wins
DEPLOYMENT_TYPES: List[str] = [
    "serverless", "lambda",
    "kubernetes", "k8s", "eks",
    "container", "docker", "ecs", "fargate",
    "static",
    "vm", "ec2",
]

ENVIRONMENTS: List[str] = ["production", "staging", "development", "test", "demo"]

REQUIREMENT_PATTERNS: Dict[str, re.Pattern] = {
    "security":          re.compile(r"secure|security|auth|login", re.I),
    "performance":       re.compile(r"fast|performance|speed|optimi[sz]e", re.I),
    "auto-scaling":      re.compile(r"scale|scalable|auto.?scal", re.I),
    "high-availability": re.compile(r"availability|uptime|reliable", re.I),
    "cost-optimization": re.compile(r"cheap|cost|budget|affordable", re.I),
}

DATABASE_RE   = re.compile(r"database|\bdb\b|sql|mongo|redis", re.I)
STORAGE_RE    = re.compile(r"storage|files|uploads|assets", re.I)
DOMAIN_RE     = re.compile(r"domain|dns|custom url", re.I)
HTTPS_RE      = re.compile(r"https|ssl|tls|secure", re.I)
MONITORING_RE = re.compile(r"monitor|logging|alert", re.I)
HIGH_LOAD_RE  = re.compile(r"high.*(traffic|load|scale)", re.I)
MED_LOAD_RE   = re.compile(r"medium.*(traffic|load)", re.I)


def _word(keyword: str, text: str) -> bool:
    return re.search(rf"\b{re.escape(keyword)}\b", text) is not None


class RuleBasedIntentExtractor:

    def extract(self, description: str) -> IntentAnalysis:
        if not isinstance(description, str) or not description.strip():
            raise AnalysisError("Cannot extract intent from an empty description")

        text = description.lower()
        traffic, scaling = self._load(description)
        intent = IntentAnalysis(
            cloud_provider=self._cloud_provider(text),
            deployment_type=self._deployment_type(text),
            environment=self._environment(text),
            scaling_requirements=scaling,
            estimated_traffic=traffic,
            database_needed=bool(DATABASE_RE.search(description)),
            storage_needed=bool(STORAGE_RE.search(description)),
            custom_domain=bool(DOMAIN_RE.search(description)),
            https=bool(HTTPS_RE.search(description)),
            monitoring=bool(MONITORING_RE.search(description)),
            requirements=self.extract_requirements(description),
            confidence=0.7,
        )
        logger.info(
            "Intent: provider=%s type=%s traffic=%s requirements=%s",
            intent.cloud_provider,
            intent.deployment_type.value if intent.deployment_type else None,
            intent.estimated_traffic,
            intent.requirements,
        )
        return intent

    @staticmethod
    def extract_requirements(description: str) -> List[str]:
        return [tag for tag, pattern in REQUIREMENT_PATTERNS.items() if pattern.search(description)]

    @staticmethod
    def _cloud_provider(text: str) -> str:
        for keyword, provider in CLOUD_PROVIDERS:
            if keyword in text:
                return provider
        return "aws"

    @staticmethod
    def _deployment_type(text: str) -> Optional[str]:
        for keyword in DEPLOYMENT_TYPES:
            if _word(keyword, text):
                return keyword
        return None

    @staticmethod
    def _environment(text: str) -> str:
        for env in ENVIRONMENTS:
            if _word(env, text):
                return env
        return "production"

    @staticmethod
    def _load(description: str) -> Tuple[str, str]:
        """(estimated_traffic, scaling_requirements)"""
        if HIGH_LOAD_RE.search(description):
            return "high", "high"
        if MED_LOAD_RE.search(description):
            return "medium", "medium"
        return "low", "low"
