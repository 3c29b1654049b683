"""
Deployment API

FastAPI app serving:
  POST   /api/deployment/chat                → start a chat deployment (202)
  POST   /api/deployment/analyze             → analysis only, record parked in `analyzed`
  POST   /api/deployment/{id}/deploy         → deploy an analyzed record (202)
  GET    /api/deployment/{id}/status         → status, progress, public URL
  GET    /api/deployment/{id}/steps          → user-facing steps
  GET    /api/deployment/{id}/logs           → log blocks (never 404)
  GET    /api/deployment/{id}/instructions   → manual reproduction steps
  GET    /api/deployments                    → every in-memory record
  DELETE /api/deployment/{id}                → deprovision and forget
  GET    /api/audit                          → recent audit journal entries
  GET    /api/health                         → liveness
"""
from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from logs.audit import get_audit
from src.errors import (
    DeploymentConflictError, DeploymentError, NotFoundError,
    ProvisioningError, ValidationError,
)
from src.main import get_orchestrator

logger = logging.getLogger(__name__)

app = FastAPI(title="Deployment Orchestrator", version="1.0.0")
app.add_middleware(CORSMiddleware, allow_origins=["*"],
                   allow_methods=["*"], allow_headers=["*"])

_started_at = time.time()

# Most specific first; the first isinstance match wins
ERROR_STATUS = [
    (ValidationError,         400),
    (NotFoundError,           404),
    (DeploymentConflictError, 409),
    (ProvisioningError,       502),
]


class ChatRequest(BaseModel):
    message: str = ""
    repository_url: Optional[str] = None


@app.exception_handler(DeploymentError)
async def _deployment_error(request: Request, exc: DeploymentError) -> JSONResponse:
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={"success": False, "error": type(exc).__name__, "message": str(exc)},
    )


# ── Deployments ──────────────────────────────────────────────────────────────

@app.post("/api/deployment/chat", status_code=202)
async def chat_deployment(body: ChatRequest) -> Dict[str, Any]:
    deployment_id = await get_orchestrator().submit(body.message, body.repository_url)
    return {
        "success": True,
        "deployment_id": deployment_id,
        "status": "in_progress",
        "status_url": f"/api/deployment/{deployment_id}/status",
    }


@app.post("/api/deployment/analyze")
async def analyze_deployment(body: ChatRequest) -> Dict[str, Any]:
    record = await get_orchestrator().analyze_application(body.message, body.repository_url)
    return {
        "success": True,
        "deployment_id": record.id,
        "status": record.status.value,
        "code_analysis": record.code_analysis.model_dump() if record.code_analysis else None,
        "intent_analysis": record.intent_analysis.model_dump(mode="json") if record.intent_analysis else None,
        "strategy": record.strategy.to_dict() if record.strategy else None,
    }


@app.post("/api/deployment/{deployment_id}/deploy", status_code=202)
async def deploy_analyzed(deployment_id: str) -> Dict[str, Any]:
    await get_orchestrator().start_deploy(deployment_id)
    return {"success": True, "deployment_id": deployment_id, "status": "in_progress"}


@app.get("/api/deployment/{deployment_id}/status")
async def deployment_status(deployment_id: str) -> Dict[str, Any]:
    report = await get_orchestrator().get_status(deployment_id)
    return {"success": True, **report.to_dict()}


@app.get("/api/deployment/{deployment_id}/steps")
async def deployment_steps(deployment_id: str) -> Dict[str, Any]:
    steps = await get_orchestrator().get_steps(deployment_id)
    return {"success": True, "deployment_id": deployment_id, "steps": steps}


@app.get("/api/deployment/{deployment_id}/logs")
async def deployment_logs(deployment_id: str) -> Dict[str, Any]:
    blocks = await get_orchestrator().get_logs(deployment_id)
    return {"success": True, "deployment_id": deployment_id,
            "logs": [b.to_dict() for b in blocks]}


@app.get("/api/deployment/{deployment_id}/instructions")
async def deployment_instructions(deployment_id: str) -> Dict[str, Any]:
    lines = await get_orchestrator().get_instructions(deployment_id)
    return {"success": True, "deployment_id": deployment_id, "instructions": lines}


@app.get("/api/deployments")
async def list_deployments() -> Dict[str, Any]:
    return {"success": True, "deployments": get_orchestrator().list_all()}


@app.delete("/api/deployment/{deployment_id}")
async def destroy_deployment(deployment_id: str) -> Dict[str, Any]:
    had_state = await get_orchestrator().destroy(deployment_id)
    return {"success": True, "deployment_id": deployment_id, "infrastructure_destroyed": had_state}


# ── Audit / health ───────────────────────────────────────────────────────────

@app.get("/api/audit")
async def audit_entries(limit: int = 200, deployment_id: Optional[str] = None) -> List[Dict]:
    return get_audit().get_recent(limit=limit, deployment_id=deployment_id)


@app.get("/api/health")
async def health() -> Dict[str, Any]:
    return {
        "success": True,
        "status": "ok",
        "uptime_seconds": round(time.time() - _started_at, 1),
        "deployments": len(get_orchestrator().store),
        "environment": os.getenv("DEPLOY_ENVIRONMENT", "development"),
    }
