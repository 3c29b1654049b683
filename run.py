#!/usr/bin/env python3
"""
Launch the deployment orchestrator API.

Usage:
  python run.py                                     # Start API on port 8000
  python run.py --deploy REPO_URL "Deploy my app"   # One chat deployment from the CLI
"""
import argparse
import asyncio
import os
import shutil
import sys

# Load .env before anything else
from dotenv import load_dotenv
load_dotenv(override=False)  # real env vars take precedence


def _check_env() -> None:
    terraform = os.getenv("TERRAFORM_PATH", "terraform")
    if shutil.which(terraform) is None and not os.path.isfile(terraform):
        print(f"⚠️  terraform binary not found ({terraform}); deployments will fail")
    if not os.getenv("AWS_ACCESS_KEY_ID") and not os.getenv("AWS_PROFILE"):
        print("⚠️  No AWS_ACCESS_KEY_ID or AWS_PROFILE set; relying on instance credentials")


def run_api() -> None:
    """Start the HTTP API."""
    import uvicorn
    from ui.monitor import app

    port = int(os.getenv("API_PORT", "8000"))
    host = os.getenv("API_HOST", "0.0.0.0")

    print("🚀 Deployment Orchestrator")
    print(f"   API:      http://localhost:{port}/api/health")
    print(f"   API Docs: http://localhost:{port}/docs")
    print()

    uvicorn.run(app, host=host, port=port, log_level="info", access_log=False)


def run_deploy(repo_url: str, description: str) -> None:
    """Run one chat deployment from the CLI."""
    from src.main import main as deploy_main
    os.environ["GITHUB_REPO_URL"] = repo_url
    os.environ["DEPLOY_DESCRIPTION"] = description
    asyncio.run(deploy_main())


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Deployment Orchestrator")
    parser.add_argument("--deploy", nargs=2, metavar=("REPO_URL", "DESCRIPTION"),
                        help="Deploy a GitHub repository and exit")
    args = parser.parse_args()

    _check_env()
    if args.deploy:
        run_deploy(*args.deploy)
        sys.exit(0)
    run_api()
