"""
Results Writer
==============
Serializes job executions and run summaries to JSON.

Layout:
    <RESULTS_DIR>/<run_id>/<job_kind>.json   - one file per job, written as
                                               soon as that job finishes
    <RESULTS_DIR>/<run_id>/run.json          - trigger metadata + job statuses

Each job file stands on its own; nothing here combines job outcomes into
a single verdict.
"""
import json
import logging
import os

from midnight.core.config import RESULTS_DIR
from midnight.models.job_execution import JobExecution
from midnight.models.pipeline_run import PipelineRun

logger = logging.getLogger(__name__)


class ResultsWriter:
    """Writes result files under ``results_dir``."""

    def __init__(self, results_dir: str = RESULTS_DIR) -> None:
        self.results_dir = results_dir

    def _run_dir(self, run_id: str) -> str:
        path = os.path.join(self.results_dir, run_id)
        os.makedirs(path, exist_ok=True)
        return path

    def write_job(self, execution: JobExecution) -> bool:
        """Write ``<job_kind>.json`` for one finished job."""
        try:
            data = execution.model_dump(mode="json")
            data["duration_seconds"] = execution.duration_seconds
            path = os.path.abspath(
                os.path.join(self._run_dir(execution.run_id), f"{execution.job_kind}.json")
            )
            logger.info("Writing %s result to %s", execution.job_kind, path)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            return True
        except Exception as e:
            logger.error("Failed to write job result: %s", e, exc_info=True)
            return False

    def write_run(self, run: PipelineRun) -> bool:
        """Write ``run.json``: trigger metadata and per-job status lines."""
        try:
            data = {
                "run_id": run.run_id,
                "trigger": run.trigger,
                "triggered_at": run.triggered_at.isoformat(),
                "finished_at": run.finished_at.isoformat() if run.finished_at else None,
                "jobs": [
                    {
                        "job_kind": j.job_kind,
                        "status": j.status,
                        "exit_code": j.exit_code,
                        "failure_kind": j.failure_kind,
                        "error": j.error,
                    }
                    for j in run.jobs
                ],
            }
            path = os.path.abspath(os.path.join(self._run_dir(run.run_id), "run.json"))
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            return True
        except Exception as e:
            logger.error("Failed to write run summary: %s", e, exc_info=True)
            return False
