"""
Job Base
========
Shared lifecycle for every pipeline job.

Lifecycle:
    1. Resolve job inputs (subclass ``prepare``)
    2. Create a private workspace for (run_id, job_kind)
    3. Open the execution environment
    4. Run the job's steps (subclass ``execute``)
    5. Convert the outcome into a terminal JobExecution
    6. Close the environment and discard the workspace

Failure contract:
    - Steps raise typed PipelineError subclasses.
    - Anything else is caught here and reported as ``internal_error``.
    - run() never raises: the orchestrator must always receive a result,
      and one job's crash must never leak into a sibling job.
    - There is no retry at the job level.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from midnight.core import config
from midnight.core.errors import PipelineError
from midnight.executor.environment import (
    ExecutionEnvironment,
    ExecutionResult,
    create_environment,
    format_stage_header,
)
from midnight.models.job_execution import JobExecution
from midnight.models.step_result import StepResult
from midnight.services import repo_service

logger = logging.getLogger(__name__)

EnvironmentFactory = Callable[[str], ExecutionEnvironment]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Job:
    """
    Base class for deps_audit and e2e_debug.

    Subclasses set ``kind`` and implement ``execute(env)``.
    """

    kind = "job"

    def __init__(
        self,
        run_id: str,
        repo_url: str = config.PROJECT_REPO_URL,
        ref: str = config.PROJECT_REF,
        github_token: Optional[str] = config.GITHUB_TOKEN,
        environment_factory: Optional[EnvironmentFactory] = None,
        workspace_root: str = config.WORKSPACE_ROOT,
        keep_workspace: bool = config.KEEP_WORKSPACE,
    ) -> None:
        self.run_id = run_id
        self.repo_url = repo_url
        self.ref = ref or None
        self.github_token = github_token or ""
        self.environment_factory = environment_factory or (
            lambda path: create_environment(path, name_prefix=f"midnight-{self.kind}")
        )
        self.workspace_root = workspace_root
        self.keep_workspace = keep_workspace
        self.workspace_path = ""
        self.execution = JobExecution(job_kind=self.kind, run_id=run_id)
        self._log_parts: list[str] = []

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def run(self) -> JobExecution:
        execution = self.execution
        execution.status = "running"
        execution.started_at = _utcnow()
        logger.info("[%s] Job started | run=%s", self.kind, self.run_id)

        try:
            self.prepare()
            self.workspace_path = repo_service.create_workspace(
                self.run_id, self.kind, root=self.workspace_root
            )
            with self.environment_factory(self.workspace_path) as env:
                self.execute(env)
            execution.status = "success"
            execution.exit_code = 0
            self.on_success()

        except PipelineError as e:
            execution.status = "failure"
            execution.failure_kind = e.failure_kind
            execution.exit_code = e.exit_code
            execution.error = str(e)
            if e.log and e.log not in "".join(self._log_parts):
                self._log_parts.append(e.log)
            logger.error("[%s] Job failed (%s): %s", self.kind, e.failure_kind, e)
            self.on_failure(e)

        except Exception as e:
            execution.status = "failure"
            execution.failure_kind = "internal_error"
            execution.exit_code = 1
            execution.error = f"Unexpected error: {type(e).__name__}: {e}"
            logger.exception("[%s] %s", self.kind, execution.error)
            self.on_failure(e)

        finally:
            execution.finished_at = _utcnow()
            execution.output = "".join(self._log_parts)
            if not self.keep_workspace:
                repo_service.discard_workspace(self.workspace_path)

        logger.info(
            "[%s] Job finished | status=%s | exit=%s | time=%.2fs",
            self.kind, execution.status, execution.exit_code, execution.duration_seconds,
        )
        return execution

    def prepare(self) -> None:
        """Resolve job inputs before a workspace or environment exists."""

    def execute(self, env: ExecutionEnvironment) -> None:
        raise NotImplementedError

    def on_success(self) -> None:
        pass

    def on_failure(self, error: Exception) -> None:
        pass

    # ------------------------------------------------------------------
    # Step helpers
    # ------------------------------------------------------------------
    def checkout(self) -> str:
        """Clone the project into the workspace (first step of every job)."""
        with self.step("checkout") as step:
            sha = repo_service.checkout_source(
                self.repo_url, self.workspace_path,
                github_token=self.github_token, ref=self.ref,
            )
            self.capture("checkout", f"git clone {self.repo_url}", f"HEAD {sha}\n")
            step.log_excerpt = f"HEAD {sha}"
        return sha

    def step(self, name: str) -> "_StepRecorder":
        return _StepRecorder(self, name)

    def capture(self, label: str, command: str, output: str) -> None:
        self._log_parts.append(format_stage_header(label, command))
        self._log_parts.append(output or "")

    def capture_result(self, result: ExecutionResult) -> None:
        self.capture(result.label, result.command, result.full_log)
        if result.error:
            self._log_parts.append(f">>> STAGE ERROR: {result.error}\n")
        status = "PASSED" if result.succeeded else f"FAILED (exit {result.exit_code})"
        self._log_parts.append(f"\n>>> STAGE {result.label}: {status}\n")


class _StepRecorder:
    """
    Context manager that appends a StepResult for the enclosed block.

    A PipelineError marked ``transient`` is recorded as transient_failure,
    any other exception as fatal_failure. Exceptions always propagate.
    """

    def __init__(self, job: Job, name: str) -> None:
        self.job = job
        self.result = StepResult(name=name)
        self._start: Optional[datetime] = None

    @property
    def log_excerpt(self) -> str:
        return self.result.log_excerpt

    @log_excerpt.setter
    def log_excerpt(self, value: str) -> None:
        self.result.log_excerpt = value

    def __enter__(self) -> "_StepRecorder":
        self._start = _utcnow()
        logger.info("[%s] Step %s started", self.job.kind, self.result.name)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.result.duration_seconds = round((_utcnow() - self._start).total_seconds(), 3)
        if exc is None:
            self.result.outcome = "success"
            if self.result.exit_code is None:
                self.result.exit_code = 0
        else:
            self.result.outcome = (
                "transient_failure" if getattr(exc, "transient", False) else "fatal_failure"
            )
            self.result.exit_code = getattr(exc, "exit_code", 1)
            if not self.result.log_excerpt:
                self.result.log_excerpt = str(exc)
        self.job.execution.steps.append(self.result)
        return False
