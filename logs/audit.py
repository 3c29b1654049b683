"""
Deployment Journal (logs/audit.py)

Append-only, structured JSON event log for every deployment the engine
touches. Independent of the in-memory deployment store: when the process
restarts, this file is what an operator reads to find out what happened.

Records:
  - Intake (deployment accepted)
  - Every status transition of the orchestrator state machine
  - Strategy decisions
  - Each external provisioning command and its exit code
  - Terminal outcomes (complete / failed / destroyed)
  - Filesystem reconciliation

One JSON object per line. Thread-safe: the orchestrator runs on the
event loop but provisioning callbacks and the HTTP layer may log from
worker threads.
"""
from __future__ import annotations

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

LOG_DIR  = Path(os.getenv("AUDIT_LOG_DIR", "logs"))
LOG_FILE = LOG_DIR / "deployments.jsonl"

# log() raises ValueError for anything else.
SEVERITY_LEVELS = frozenset({"debug", "info", "warning", "error", "critical"})


class AuditLogger:
    """
    Append-only structured deployment journal.
    Each line is a self-contained JSON record keyed by deployment_id.
    """

    def __init__(self, log_file: Path = LOG_FILE, max_buffer: int = 500) -> None:
        self._log_file = Path(log_file)
        self._lock     = threading.Lock()
        self._log_file.parent.mkdir(parents=True, exist_ok=True)

        # Recent records for the read API
        self._buffer:     List[Dict] = []
        self._max_buffer: int        = max_buffer

        self._fh = open(self._log_file, "a", encoding="utf-8", buffering=1)  # line-buffered

    # ── Internal write ────────────────────────────────────────────────────────

    def _write(self, record: Dict) -> None:
        with self._lock:
            if self._fh.closed:
                logger.debug("Journal closed, dropping %s", record.get("event"))
                return
            self._fh.write(json.dumps(record, default=str) + "\n")
            self._buffer.append(record)
            if len(self._buffer) > self._max_buffer:
                self._buffer = self._buffer[-self._max_buffer:]

    # ── Public API ────────────────────────────────────────────────────────────

    def log(
        self,
        event_type:    str,
        severity:      str                      = "info",
        deployment_id: Optional[str]            = None,
        phase:         Optional[str]            = None,
        message:       str                      = "",
        data:          Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Append one structured event.

        Raises ValueError if severity is not in SEVERITY_LEVELS.
        """
        if severity not in SEVERITY_LEVELS:
            raise ValueError(
                f"Invalid severity '{severity}'. "
                f"Must be one of: {sorted(SEVERITY_LEVELS)}"
            )

        record: Dict[str, Any] = {
            "ts":            time.time(),
            "ts_iso":        time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "event":         event_type,
            "severity":      severity,
            "deployment_id": deployment_id,
            "phase":         phase,
            "message":       message,
            "data":          data or {},
        }
        self._write(record)

    def shutdown(self) -> None:
        """Flush and close the file handle. Safe to call multiple times."""
        with self._lock:
            try:
                if self._fh and not self._fh.closed:
                    self._fh.flush()
                    self._fh.close()
            except OSError:
                pass

    # ── Read API ──────────────────────────────────────────────────────────────

    def get_recent(
        self,
        limit:         int           = 100,
        deployment_id: Optional[str] = None,
    ) -> List[Dict]:
        """Most-recent-first entries from the buffer. Filters before limiting."""
        with self._lock:
            entries = list(self._buffer)

        if deployment_id:
            entries = [e for e in entries if e.get("deployment_id") == deployment_id]

        return list(reversed(entries[-limit:]))

    def read_all(self) -> List[Dict]:
        """Read every entry from disk."""
        if not self._log_file.exists():
            return []
        entries: List[Dict] = []
        try:
            with open(self._log_file, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(json.loads(line))
                    except json.JSONDecodeError:
                        logger.warning("Skipping malformed journal line")
        except OSError as exc:
            logger.error("read_all: could not read journal: %s", exc)
        return entries

    # ── Convenience wrappers ──────────────────────────────────────────────────

    def deployment_started(
        self,
        deployment_id:  str,
        repository_url: str,
        description:    str,
    ) -> None:
        self.log(
            "DEPLOYMENT_STARTED", "info", deployment_id=deployment_id, phase="initializing",
            message=f"Deployment accepted for {repository_url}",
            data={"repository_url": repository_url, "description": description},
        )

    def phase_changed(
        self,
        deployment_id: str,
        status:        str,
        message:       str            = "",
        data:          Optional[Dict] = None,
    ) -> None:
        self.log(
            "PHASE_CHANGED", "info", deployment_id=deployment_id, phase=status,
            message=f"{status}: {message}" if message else status,
            data=data or {},
        )

    def strategy_decided(
        self,
        deployment_id: str,
        strategy_type: str,
        reasoning:     List[str],
    ) -> None:
        self.log(
            "STRATEGY_DECIDED", "info", deployment_id=deployment_id, phase="analyzing",
            message=f"Strategy: {strategy_type}",
            data={"type": strategy_type, "reasoning": reasoning},
        )

    def provisioning_command(
        self,
        deployment_id: str,
        command:       str,
        returncode:    Optional[int],
        duration:      float,
    ) -> None:
        ok = returncode == 0
        self.log(
            "PROVISIONING_COMMAND", "info" if ok else "warning",
            deployment_id=deployment_id, phase="deploying",
            message=f"{command} exited {returncode} in {duration:.1f}s",
            data={"command": command, "returncode": returncode, "duration_seconds": duration},
        )

    def deployment_complete(
        self,
        deployment_id: str,
        status:        str,
        public_url:    Optional[str],
        duration:      float,
    ) -> None:
        self.log(
            "DEPLOYMENT_COMPLETE", "info", deployment_id=deployment_id, phase=status,
            message=f"Deployment {status} in {duration:.1f}s: {public_url}",
            data={"public_url": public_url, "duration_seconds": duration},
        )

    def deployment_failed(self, deployment_id: str, phase: str, reason: str) -> None:
        self.log(
            "DEPLOYMENT_FAILED", "error", deployment_id=deployment_id, phase=phase,
            message=f"Deployment failed during {phase}: {reason}",
            data={"reason": reason},
        )

    def deployment_destroyed(self, deployment_id: str, had_state: bool) -> None:
        self.log(
            "DEPLOYMENT_DESTROYED", "info", deployment_id=deployment_id, phase="destroy",
            message=(
                "Infrastructure destroyed" if had_state
                else "No provisioning state, artifacts removed"
            ),
            data={"had_state": had_state},
        )

    def deployment_reconciled(
        self,
        deployment_id: str,
        status:        str,
        public_url:    Optional[str],
    ) -> None:
        self.log(
            "DEPLOYMENT_RECONCILED", "warning", deployment_id=deployment_id, phase=status,
            message=f"Record rebuilt from on-disk state ({status})",
            data={"public_url": public_url},
        )


# ── Global singleton ──────────────────────────────────────────────────────────

_audit: Optional[AuditLogger] = None
_audit_lock = threading.Lock()


def get_audit() -> AuditLogger:
    """Return the process-wide AuditLogger singleton, creating it if needed."""
    global _audit
    if _audit is None:
        with _audit_lock:
            if _audit is None:
                _audit = AuditLogger()
    return _audit


def reset_audit(log_file: Optional[Path] = None) -> AuditLogger:
    """
    Replace the singleton with a fresh instance.
    Intended for testing only.
    """
    global _audit
    with _audit_lock:
        if _audit is not None:
            _audit.shutdown()
        _audit = AuditLogger(log_file or LOG_FILE)
        return _audit
