"""
Deployment engine configuration.
All values sourced from environment, never hardcoded.

Provisioning notes:
  The engine shells out to two external binaries:
    1. terraform: init / plan / apply / output / destroy
    2. aws:       machine-image lookup (describe-images)
  Credentials for both are taken from the ambient AWS environment
  (AWS_PROFILE, AWS_ACCESS_KEY_ID, ...). Nothing here reads them.

All fields have defaults so the module always imports cleanly.
A missing binary surfaces as a ProvisioningError at call time,
not at import time.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(override=False)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class DeployConfig:
    # ── Filesystem ───────────────────────────────────────────────────────────
    work_dir:         Path = field(default_factory=lambda: Path(os.getenv("TEMP_DIR", "./temp")))
    plugin_cache_dir: Path = field(default_factory=lambda: Path(os.getenv("TF_PLUGIN_CACHE_DIR", "./.terraform-cache")))

    # ── External binaries ────────────────────────────────────────────────────
    terraform_path: str = field(default_factory=lambda: os.getenv("TERRAFORM_PATH", "terraform"))
    aws_cli_path:   str = field(default_factory=lambda: os.getenv("AWS_CLI_PATH",   "aws"))

    # ── Target placement ─────────────────────────────────────────────────────
    aws_region:        str = field(default_factory=lambda: os.getenv("AWS_REGION", "us-east-1"))
    availability_zone: str = field(default_factory=lambda: os.getenv("AWS_AVAILABILITY_ZONE", ""))
    instance_type:     str = field(default_factory=lambda: os.getenv("INSTANCE_TYPE", "t3.micro"))
    environment:       str = field(default_factory=lambda: os.getenv("DEPLOY_ENVIRONMENT", "development"))

    # ── Timeouts (seconds, 0 = unbounded) ────────────────────────────────────
    terraform_timeout:   int = field(default_factory=lambda: _env_int("TERRAFORM_TIMEOUT",   1800))
    image_query_timeout: int = field(default_factory=lambda: _env_int("IMAGE_QUERY_TIMEOUT", 30))
    verify_timeout:      int = field(default_factory=lambda: _env_int("VERIFY_TIMEOUT",      10))

    # ── Intake ───────────────────────────────────────────────────────────────
    default_repository_url: str = field(default_factory=lambda: os.getenv("DEFAULT_REPOSITORY_URL", ""))

    @property
    def zone(self) -> str:
        """Availability zone, defaulting to the first zone of the region."""
        return self.availability_zone or f"{self.aws_region}a"

    def deployment_dir(self, deployment_id: str) -> Path:
        return self.work_dir / deployment_id


DEPLOY_CONFIG = DeployConfig()
