"""
Step Result Model
=================
Typed outcome of one step inside a job.

Outcomes:
    success            - step completed, next step may start
    transient_failure  - recoverable class (network download); retried within bounds
    fatal_failure      - deterministic failure; the job stops here
"""
from typing import Literal, Optional
from pydantic import BaseModel

StepOutcome = Literal["success", "transient_failure", "fatal_failure"]


class StepResult(BaseModel):
    name: str
    outcome: StepOutcome = "success"
    exit_code: Optional[int] = None
    attempts: int = 1
    duration_seconds: float = 0.0
    log_excerpt: str = ""
