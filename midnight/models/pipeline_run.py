"""
Pipeline Run Model
Pydantic model for one trigger of the pipeline and the jobs it spawned.
Jobs report independently; ``any_failed`` exists only for process exit codes.
"""
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel

from .job_execution import JobExecution

TriggerKind = Literal["schedule", "catch_up", "manual"]


class PipelineRun(BaseModel):
    run_id: str
    triggered_at: datetime
    trigger: TriggerKind = "schedule"
    finished_at: Optional[datetime] = None
    jobs: List[JobExecution] = []

    def job(self, job_kind: str) -> Optional[JobExecution]:
        for execution in self.jobs:
            if execution.job_kind == job_kind:
                return execution
        return None

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None

    @property
    def any_failed(self) -> bool:
        return any(j.status == "failure" for j in self.jobs)
