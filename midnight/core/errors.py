"""
Pipeline Errors
===============
Typed failures raised by job steps. Each carries a ``failure_kind`` from the
error taxonomy so the job base can report it without string matching.

Taxonomy:
    checkout_failure      - source could not be acquired
    audit_finding         - advisory matched a declared dependency
    audit_tool_error      - audit tool crashed or produced no usable report
    provisioning_failure  - package install / bootstrap failed
    artifact_failure      - snapshot download, checksum or extraction failed
    test_failure          - the E2E target exited non-zero
    environment_failure   - the execution environment itself broke
    configuration_error   - invalid pipeline config or execution mode
    internal_error        - anything unexpected (assigned by the job base)

Trigger misses are logged by the scheduler and never raised.
"""
from typing import Optional


class PipelineError(RuntimeError):
    """Base class for job-fatal failures."""

    failure_kind = "internal_error"

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        exit_code: int = 1,
        log: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.step = step
        self.exit_code = exit_code
        self.log = log

    def __str__(self) -> str:
        if self.step:
            return f"[{self.step}] {self.message}"
        return self.message


class CheckoutError(PipelineError):
    failure_kind = "checkout_failure"


class AuditFinding(PipelineError):
    """Raised when the audit report lists at least one advisory."""

    failure_kind = "audit_finding"

    def __init__(self, message: str, advisories: Optional[list] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.advisories = advisories or []


class AuditToolError(PipelineError):
    failure_kind = "audit_tool_error"


class ProvisioningError(PipelineError):
    failure_kind = "provisioning_failure"


class ArtifactError(PipelineError):
    """Snapshot staging failure. ``transient`` marks the retryable class."""

    failure_kind = "artifact_failure"

    def __init__(self, message: str, transient: bool = False, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.transient = transient


class E2ETestFailure(PipelineError):
    failure_kind = "test_failure"


class ExecutionEnvironmentError(PipelineError):
    failure_kind = "environment_failure"


class ConfigurationError(PipelineError):
    failure_kind = "configuration_error"
