"""
Job Execution Model
===================
Pydantic model for one job inside a pipeline run.

Fields:
    job_kind        - deps_audit | e2e_debug
    run_id          - owning PipelineRun
    status          - pending → running → success | failure
    exit_code       - raw exit status surfaced to the hosting platform
    failure_kind    - error taxonomy key (see midnight/core/errors.py), "" on success
    error           - human readable failure message
    output          - captured console output of every step, with stage headers
    steps           - typed per-step outcomes, in execution order
    state_history   - E2E state machine trail (start → ... → success | failure)
    advisories      - audit findings (deps_audit only)
    artifact        - staged snapshot (e2e_debug only)
"""
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel

from .advisory import Advisory
from .staged_artifact import StagedArtifact
from .step_result import StepResult

JobStatus = Literal["pending", "running", "success", "failure"]


class JobExecution(BaseModel):
    job_kind: str
    run_id: str = ""
    status: JobStatus = "pending"
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    exit_code: Optional[int] = None
    failure_kind: str = ""
    error: str = ""
    output: str = ""
    steps: List[StepResult] = []
    state_history: List[str] = []
    advisories: List[Advisory] = []
    artifact: Optional[StagedArtifact] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def duration_seconds(self) -> float:
        if not self.started_at or not self.finished_at:
            return 0.0
        return round((self.finished_at - self.started_at).total_seconds(), 3)
