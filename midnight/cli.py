"""
Command line entry point.

    midnight serve                 - HTTP API + scheduler (uvicorn)
    midnight run                   - one run of every job, in this process
    midnight job <deps_audit|e2e_debug>
                                   - exactly one job; exit code = job exit code
    midnight next-fire [--count N] - upcoming trigger instants (UTC)

`job` is what a hosting platform calls when it dispatches each job as its
own process. `run` exits 1 when any job failed so a plain cron host still
notices; the per-job result files carry the individual verdicts.
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from midnight.core.constants import JOB_KINDS
from midnight.core.errors import ConfigurationError
from midnight.core.pipeline_config import load_schedule
from midnight.pipeline.orchestrator import build_orchestrator
from midnight.pipeline.schedule import CronSchedule
from midnight.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _print_job(execution) -> None:
    line = f"{execution.job_kind}: {execution.status.upper()} (exit {execution.exit_code})"
    if execution.error:
        line += f" - {execution.error}"
    print(line)


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("main:app", host=args.host, port=args.port)
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    orchestrator = build_orchestrator()
    run = asyncio.run(orchestrator.run(trigger="manual"))
    print(f"run {run.run_id}")
    for execution in run.jobs:
        _print_job(execution)
    return 1 if run.any_failed else 0


def cmd_job(args: argparse.Namespace) -> int:
    orchestrator = build_orchestrator()
    execution = orchestrator.run_job(args.job_kind)
    _print_job(execution)
    if execution.output and args.show_output:
        sys.stdout.write(execution.output)
    if execution.succeeded:
        return 0
    return execution.exit_code if execution.exit_code and execution.exit_code > 0 else 1


def cmd_next_fire(args: argparse.Namespace) -> int:
    schedule = CronSchedule.parse(args.cron) if args.cron else load_schedule()
    instant = datetime.now(timezone.utc)
    for _ in range(args.count):
        instant = schedule.next_after(instant)
        print(instant.isoformat())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="midnight",
        description="Nightly dependency audit and E2E verification pipeline.",
    )
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-dir", default="logs", help="Empty string disables file logging")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API and the scheduler")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(func=cmd_serve)

    run = sub.add_parser("run", help="Run every job once, concurrently")
    run.set_defaults(func=cmd_run)

    job = sub.add_parser("job", help="Run a single job")
    job.add_argument("job_kind", choices=JOB_KINDS)
    job.add_argument("--show-output", action="store_true", help="Print captured job output")
    job.set_defaults(func=cmd_job)

    next_fire = sub.add_parser("next-fire", help="Print upcoming trigger instants")
    next_fire.add_argument("--cron", help="Defaults to the configured schedule")
    next_fire.add_argument("--count", type=int, default=1)
    next_fire.set_defaults(func=cmd_next_fire)

    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(level=getattr(logging, args.log_level.upper(), logging.INFO),
                  log_dir=args.log_dir)
    try:
        return args.func(args)
    except (ConfigurationError, ValueError) as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
