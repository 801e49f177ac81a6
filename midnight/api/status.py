"""
GET /status
Scheduler state, next trigger instant, missed triggers and the latest run.
"""
from typing import List, Optional
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from midnight.api.deps import get_orchestrator, get_scheduler
from midnight.api.runs import RunSummary, _summarise
from midnight.pipeline.orchestrator import PipelineOrchestrator
from midnight.pipeline.scheduler import Scheduler

router = APIRouter()


class StatusResponse(BaseModel):
    schedule: str
    scheduler_running: bool
    catch_up: bool
    next_fire_at: Optional[datetime] = None
    missed_triggers: List[datetime] = []
    last_run: Optional[RunSummary] = None


@router.get("/status", response_model=StatusResponse)
async def get_status(
    scheduler: Scheduler = Depends(get_scheduler),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    last = orchestrator.last_run
    next_fire = scheduler.next_fire_at
    if next_fire is None:
        next_fire = scheduler.schedule.next_after(datetime.now(timezone.utc))
    return StatusResponse(
        schedule=scheduler.schedule.expression,
        scheduler_running=scheduler.running,
        catch_up=scheduler.catch_up,
        next_fire_at=next_fire,
        missed_triggers=scheduler.missed[-10:],
        last_run=_summarise(last) if last else None,
    )
