"""
Pipeline Orchestrator
=====================
Creates a PipelineRun for each trigger and dispatches its jobs.

Dispatch rules:
    - Jobs start together and run concurrently (one worker thread each; all
      heavy work happens in child processes or containers).
    - Jobs share nothing: separate workspaces, separate environments.
    - A job that crashes is converted into a failed JobExecution here, so
      a sibling job's terminal status never depends on it.
    - Each job's result is written the moment that job finishes.
    - No retry, no cross-job verdict.
"""
import uuid
import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, List, Optional

from midnight.core import config
from midnight.core.constants import JOB_DEPS_AUDIT, JOB_E2E_DEBUG, JOB_KINDS
from midnight.core.pipeline_config import PipelineSettings, load_pipeline_settings
from midnight.jobs.audit_job import DependencyAuditJob
from midnight.jobs.base import Job
from midnight.jobs.e2e_job import E2EJob
from midnight.models.job_execution import JobExecution
from midnight.models.pipeline_run import PipelineRun
from midnight.services.results_writer import ResultsWriter

logger = logging.getLogger(__name__)

# Finished runs kept in memory for the status API
_MAX_RUN_HISTORY = 30

JobFactory = Callable[[str, str], Job]


def new_run_id(triggered_at: datetime) -> str:
    return f"{triggered_at.strftime('%Y%m%dT%H%M%SZ')}-{uuid.uuid4().hex[:6]}"


def default_job_factory(
    settings_loader: Optional[Callable[[], PipelineSettings]] = None,
    **job_kwargs,
) -> JobFactory:
    """
    Build jobs for a run.

    Pipeline settings only shape the E2E job, so they are loaded inside that
    job: an invalid pipeline config fails ``e2e_debug`` with
    ``configuration_error`` and leaves ``deps_audit`` untouched.
    """
    settings_loader = settings_loader or load_pipeline_settings

    def factory(job_kind: str, run_id: str) -> Job:
        if job_kind == JOB_DEPS_AUDIT:
            return DependencyAuditJob(run_id, **job_kwargs)
        if job_kind == JOB_E2E_DEBUG:
            return E2EJob(run_id, settings_loader=settings_loader, **job_kwargs)
        raise ValueError(f"Unknown job kind '{job_kind}'")

    return factory


class PipelineOrchestrator:
    """
    Runs pipeline triggers and keeps a bounded history of runs.

    Parameters
    ----------
    job_factory : callable(job_kind, run_id) -> Job
        Builds a fresh job instance per run.
    job_kinds : list[str]
        Jobs started by each trigger.
    writer : ResultsWriter | None
        Result file writer; None disables result files.
    """

    def __init__(
        self,
        job_factory: Optional[JobFactory] = None,
        job_kinds: Optional[List[str]] = None,
        writer: Optional[ResultsWriter] = None,
    ) -> None:
        self._job_factory = job_factory
        self.job_kinds = list(job_kinds or JOB_KINDS)
        self.writer = writer
        self.runs: "OrderedDict[str, PipelineRun]" = OrderedDict()

    @property
    def job_factory(self) -> JobFactory:
        if self._job_factory is None:
            self._job_factory = default_job_factory()
        return self._job_factory

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------
    def create_run(self, trigger: str = "manual",
                   triggered_at: Optional[datetime] = None) -> tuple[PipelineRun, list[Job]]:
        triggered_at = triggered_at or datetime.now(timezone.utc)
        run = PipelineRun(
            run_id=new_run_id(triggered_at),
            triggered_at=triggered_at,
            trigger=trigger,
        )
        jobs = [self.job_factory(kind, run.run_id) for kind in self.job_kinds]
        run.jobs = [job.execution for job in jobs]
        self._remember(run)
        return run, jobs

    async def run(self, trigger: str = "manual",
                  triggered_at: Optional[datetime] = None) -> PipelineRun:
        """Start every job of a new run concurrently and wait for all of them."""
        run, jobs = self.create_run(trigger, triggered_at)
        return await self.execute(run, jobs)

    async def execute(self, run: PipelineRun, jobs: list[Job]) -> PipelineRun:
        """Dispatch the jobs of an already created run."""
        logger.info(
            "[RUN %s] Triggered (%s) | jobs=%s",
            run.run_id, run.trigger, ", ".join(j.kind for j in jobs),
        )

        executions = await asyncio.gather(
            *(asyncio.to_thread(self._execute_job, job) for job in jobs)
        )
        run.jobs = list(executions)
        run.finished_at = datetime.now(timezone.utc)

        for execution in run.jobs:
            logger.info(
                "[RUN %s] %s: %s (exit %s)",
                run.run_id, execution.job_kind, execution.status.upper(), execution.exit_code,
            )
        if self.writer is not None:
            self.writer.write_run(run)
        return run

    def run_job(self, job_kind: str, trigger: str = "manual") -> JobExecution:
        """Run a single job synchronously in this process."""
        triggered_at = datetime.now(timezone.utc)
        run = PipelineRun(run_id=new_run_id(triggered_at), triggered_at=triggered_at, trigger=trigger)
        job = self.job_factory(job_kind, run.run_id)
        run.jobs = [job.execution]
        self._remember(run)
        execution = self._execute_job(job)
        run.jobs = [execution]
        run.finished_at = datetime.now(timezone.utc)
        return execution

    def _execute_job(self, job: Job) -> JobExecution:
        try:
            execution = job.run()
        except Exception as e:
            # Job.run() never raises by contract
            logger.exception("[%s] Job crashed outside its lifecycle", job.kind)
            execution = job.execution
            execution.status = "failure"
            execution.failure_kind = "internal_error"
            execution.exit_code = execution.exit_code or 1
            execution.error = f"{type(e).__name__}: {e}"
            execution.finished_at = execution.finished_at or datetime.now(timezone.utc)
        if self.writer is not None:
            self.writer.write_job(execution)
        return execution

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def _remember(self, run: PipelineRun) -> None:
        self.runs[run.run_id] = run
        while len(self.runs) > _MAX_RUN_HISTORY:
            self.runs.popitem(last=False)

    def get_run(self, run_id: str) -> Optional[PipelineRun]:
        return self.runs.get(run_id)

    def list_runs(self) -> List[PipelineRun]:
        return list(reversed(self.runs.values()))

    @property
    def last_run(self) -> Optional[PipelineRun]:
        if not self.runs:
            return None
        return next(reversed(self.runs.values()))


def build_orchestrator() -> PipelineOrchestrator:
    """Orchestrator wired with the configured results directory."""
    return PipelineOrchestrator(writer=ResultsWriter(config.RESULTS_DIR))
