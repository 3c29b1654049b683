"""
Error taxonomy for the deployment engine.

  ValidationError           intake rejected before any record exists
  AnalysisError             codebase / intent collaborator failed
  ProvisioningError         external tool exited non-zero
    ProvisioningTimeoutError  external tool exceeded TERRAFORM_TIMEOUT
  ReconciliationAmbiguous   state on disk, outputs unreadable
  NotFoundError             no memory or filesystem evidence for an id
  DeploymentConflictError   phase sequence already running / record not runnable
"""
from __future__ import annotations

from typing import Any, Optional


class DeploymentError(RuntimeError):
    """Base class for every engine error."""


class ValidationError(DeploymentError):
    """Missing or malformed intake fields."""


class AnalysisError(DeploymentError):
    """A collaborator failed while inspecting code or intent."""


class ProvisioningError(DeploymentError):
    """
    The provisioning tool failed.
    `output` is the captured stderr, or stdout when stderr was empty.
    """

    def __init__(
        self,
        message:    str,
        command:    str           = "",
        returncode: Optional[int] = None,
        output:     str           = "",
    ) -> None:
        super().__init__(message)
        self.command    = command
        self.returncode = returncode
        self.output     = output


class ProvisioningTimeoutError(ProvisioningError):
    """The child process was killed after exceeding its time limit."""


class ReconciliationAmbiguous(DeploymentError):
    """
    Provisioning state exists on disk but its outputs cannot be read.
    Never surfaces to status callers: converted to an `unknown` report.
    """

    def __init__(self, message: str, report: Any = None) -> None:
        super().__init__(message)
        self.report = report


class NotFoundError(DeploymentError):
    """No in-memory record and no on-disk evidence for a deployment id."""


class DeploymentConflictError(DeploymentError):
    """A phase sequence is already running against this deployment id."""
