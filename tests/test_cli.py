from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from midnight import cli
from midnight.models.job_execution import JobExecution
from midnight.models.pipeline_run import PipelineRun


def test_next_fire(capsys):
    assert cli.main(["--log-dir", "", "next-fire", "--cron", "0 0 * * *", "--count", "2"]) == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 2
    assert all(line.endswith("T00:00:00+00:00") for line in lines)


def test_invalid_cron_returns_2():
    assert cli.main(["--log-dir", "", "next-fire", "--cron", "every night"]) == 2


@patch("midnight.cli.build_orchestrator")
def test_job_exit_code_is_propagated(mock_build, capsys):
    mock_build.return_value.run_job.return_value = JobExecution(
        job_kind="e2e_debug", status="failure", exit_code=101,
        failure_kind="test_failure", error="[e2e] just e2e-debug exited with code 101",
    )

    assert cli.main(["--log-dir", "", "job", "e2e_debug"]) == 101
    mock_build.return_value.run_job.assert_called_once_with("e2e_debug")
    assert "e2e_debug: FAILURE (exit 101)" in capsys.readouterr().out


@patch("midnight.cli.build_orchestrator")
def test_run_reports_each_job(mock_build, capsys):
    run = PipelineRun(
        run_id="r1",
        triggered_at=datetime(2026, 10, 18, tzinfo=timezone.utc),
        trigger="manual",
        jobs=[
            JobExecution(job_kind="deps_audit", status="failure", exit_code=1),
            JobExecution(job_kind="e2e_debug", status="success", exit_code=0),
        ],
    )

    async def fake_run(trigger):
        return run

    mock_build.return_value.run = fake_run

    assert cli.main(["--log-dir", "", "run"]) == 1
    out = capsys.readouterr().out
    assert "deps_audit: FAILURE" in out
    assert "e2e_debug: SUCCESS" in out


def test_next_fire_uses_configured_schedule(tmp_path, monkeypatch, capsys):
    path = tmp_path / "midnight.yml"
    path.write_text("schedule: '30 3 * * *'\n")
    monkeypatch.setattr("midnight.core.config.PIPELINE_CONFIG", str(path))

    assert cli.main(["--log-dir", "", "next-fire", "--count", "2"]) == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert all(line.endswith("T03:30:00+00:00") for line in lines)
