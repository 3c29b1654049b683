"""
In-process deployment store.

The live index of deployments: id → DeploymentRecord. A narrow get/set/
delete/list interface so a durable backend can replace it without touching
the orchestrator.

Also holds the per-id execution guard. claim() is a compare-and-swap on a
"sequence running" flag: the first caller wins, every concurrent caller is
rejected with DeploymentConflictError until release().
"""
from __future__ import annotations

import threading
from typing import Dict, List, Optional, Set

from src.errors import DeploymentConflictError
from src.schemas.deployment_schemas import DeploymentRecord


class DeploymentStore:

    def __init__(self) -> None:
        self._records: Dict[str, DeploymentRecord] = {}
        self._running: Set[str] = set()
        self._lock = threading.Lock()

    # ── Records ───────────────────────────────────────────────────────────────

    def get(self, deployment_id: str) -> Optional[DeploymentRecord]:
        with self._lock:
            return self._records.get(deployment_id)

    def set(self, record: DeploymentRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    def add(self, record: DeploymentRecord) -> None:
        """Insert a new record. An existing id is a conflict."""
        with self._lock:
            if record.id in self._records:
                raise DeploymentConflictError(f"Deployment {record.id} already exists")
            self._records[record.id] = record

    def delete(self, deployment_id: str) -> Optional[DeploymentRecord]:
        with self._lock:
            self._running.discard(deployment_id)
            return self._records.pop(deployment_id, None)

    def list(self) -> List[DeploymentRecord]:
        """Snapshot, newest first."""
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def __contains__(self, deployment_id: str) -> bool:
        with self._lock:
            return deployment_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ── Execution guard ───────────────────────────────────────────────────────

    def claim(self, deployment_id: str) -> None:
        with self._lock:
            if deployment_id in self._running:
                raise DeploymentConflictError(
                    f"A phase sequence is already running for deployment {deployment_id}"
                )
            self._running.add(deployment_id)

    def release(self, deployment_id: str) -> None:
        with self._lock:
            self._running.discard(deployment_id)

    def is_running(self, deployment_id: str) -> bool:
        with self._lock:
            return deployment_id in self._running
