"""
/runs
=====
POST /runs              - trigger one manual run (no parameters), returns 202
GET  /runs              - recent runs, newest first
GET  /runs/{run_id}     - one run with per-job status, steps and output
"""
import asyncio
import logging
from typing import List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from midnight.api.deps import get_orchestrator
from midnight.models.pipeline_run import PipelineRun
from midnight.pipeline.orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["Runs"])

# Manual runs in flight (kept referenced until done)
_background: set = set()


class JobSummary(BaseModel):
    job_kind: str
    status: str
    exit_code: Optional[int] = None
    failure_kind: str = ""


class RunSummary(BaseModel):
    run_id: str
    trigger: str
    triggered_at: datetime
    finished_at: Optional[datetime] = None
    jobs: List[JobSummary]


def _summarise(run: PipelineRun) -> RunSummary:
    return RunSummary(
        run_id=run.run_id,
        trigger=run.trigger,
        triggered_at=run.triggered_at,
        finished_at=run.finished_at,
        jobs=[
            JobSummary(
                job_kind=j.job_kind,
                status=j.status,
                exit_code=j.exit_code,
                failure_kind=j.failure_kind,
            )
            for j in run.jobs
        ],
    )


@router.post("", response_model=RunSummary, status_code=202)
async def trigger_run(orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    """Start a manual run in the background and return its initial state."""
    run, jobs = orchestrator.create_run(trigger="manual")
    task = asyncio.create_task(orchestrator.execute(run, jobs))
    _background.add(task)
    task.add_done_callback(_background.discard)
    logger.info("[API] Manual run %s triggered", run.run_id)
    return _summarise(run)


@router.get("", response_model=List[RunSummary])
async def list_runs(orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    return [_summarise(r) for r in orchestrator.list_runs()]


@router.get("/{run_id}", response_model=PipelineRun)
async def get_run(run_id: str, orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    run = orchestrator.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return run
