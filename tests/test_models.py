from datetime import datetime, timedelta, timezone

from midnight.models.job_execution import JobExecution
from midnight.models.pipeline_run import PipelineRun
from midnight.models.staged_artifact import StagedArtifact

NOW = datetime(2026, 10, 18, tzinfo=timezone.utc)


def test_pipeline_run_lookup_and_verdicts():
    run = PipelineRun(run_id="r", triggered_at=NOW, jobs=[
        JobExecution(job_kind="deps_audit", status="failure"),
        JobExecution(job_kind="e2e_debug", status="success"),
    ])
    assert run.job("e2e_debug").succeeded
    assert run.job("unknown") is None
    assert run.any_failed
    assert not run.is_finished


def test_job_duration():
    execution = JobExecution(job_kind="e2e_debug")
    assert execution.duration_seconds == 0.0
    execution.started_at = NOW
    execution.finished_at = NOW + timedelta(seconds=90)
    assert execution.duration_seconds == 90.0


def test_artifact_lifecycle_flag():
    artifact = StagedArtifact(source_url="https://x/s.tar.gz", local_path="/tmp/s.tar.gz")
    assert artifact.state == "pending"
    assert not artifact.is_expanded
    artifact.state = "expanded"
    assert artifact.is_expanded
