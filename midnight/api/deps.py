"""
API Dependencies
================
Process-wide orchestrator and scheduler shared by the HTTP endpoints.
"""
from typing import Optional

from midnight.core.pipeline_config import load_schedule
from midnight.pipeline.orchestrator import PipelineOrchestrator, build_orchestrator
from midnight.pipeline.scheduler import Scheduler

_orchestrator: Optional[PipelineOrchestrator] = None
_scheduler: Optional[Scheduler] = None


def get_orchestrator() -> PipelineOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


def get_scheduler() -> Scheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = Scheduler(get_orchestrator(), load_schedule())
    return _scheduler
