"""
Dependency Audit Job
====================
Checks the project's locked dependencies against the security advisory
database.

Steps:
    1. checkout    - fresh clone into the job workspace
    2. audit-tool  - keep an installed cargo-audit, otherwise install it
    3. audit       - `cargo audit --json` with the platform token exported

Verdict:
    failure  - the report lists at least one vulnerability (audit_finding)
    failure  - the tool failed without a usable report (audit_tool_error)
    success  - a parseable report with zero vulnerabilities and exit 0

The report is located by scanning the combined output from the end for a
JSON object carrying a ``vulnerabilities`` key, since progress lines from
the tool share the same stream.
"""
import json
import logging
from typing import Any, Optional

from midnight.core.config import AUDIT_COMMAND, AUDIT_BOOTSTRAP_COMMAND
from midnight.core.constants import JOB_DEPS_AUDIT
from midnight.core.errors import AuditFinding, AuditToolError
from midnight.executor.environment import ExecutionEnvironment
from midnight.jobs.base import Job
from midnight.models.advisory import Advisory

logger = logging.getLogger(__name__)


def extract_report(output: str) -> Optional[dict]:
    """Return the last JSON object in ``output`` that looks like an audit report."""
    for line in reversed(output.splitlines()):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            data = json.loads(line)
        except ValueError:
            continue
        if isinstance(data, dict) and "vulnerabilities" in data:
            return data
    return None


def parse_advisories(report: dict) -> list[Advisory]:
    """Convert the report's vulnerability list into Advisory models."""
    vulns: Any = report.get("vulnerabilities") or {}
    advisories: list[Advisory] = []
    for entry in vulns.get("list", []) or []:
        advisory = entry.get("advisory") or {}
        package = entry.get("package") or {}
        versions = entry.get("versions") or {}
        advisories.append(Advisory(
            id=advisory.get("id", "UNKNOWN"),
            package=package.get("name") or advisory.get("package", ""),
            version=str(package.get("version", "")),
            title=advisory.get("title", ""),
            url=advisory.get("url") or "",
            patched_versions=list(versions.get("patched") or []),
        ))
    return advisories


def report_has_findings(report: dict, advisories: list[Advisory]) -> bool:
    vulns = report.get("vulnerabilities") or {}
    return bool(vulns.get("found")) or int(vulns.get("count") or 0) > 0 or bool(advisories)


class DependencyAuditJob(Job):
    """Checkout → ensure audit tool → audit."""

    kind = JOB_DEPS_AUDIT

    def __init__(
        self,
        run_id: str,
        audit_command: str = AUDIT_COMMAND,
        bootstrap_command: str = AUDIT_BOOTSTRAP_COMMAND,
        **kwargs,
    ) -> None:
        super().__init__(run_id, **kwargs)
        self.audit_command = audit_command
        self.bootstrap_command = bootstrap_command

    def execute(self, env: ExecutionEnvironment) -> None:
        self.checkout()

        if self.bootstrap_command:
            with self.step("audit-tool") as step:
                result = env.run(self.bootstrap_command, label="audit-tool")
                self.capture_result(result)
                step.result.exit_code = result.exit_code
                if not result.succeeded:
                    raise AuditToolError(
                        f"Audit tool bootstrap failed (exit {result.exit_code})",
                        step="audit-tool",
                        exit_code=result.exit_code if result.exit_code > 0 else 1,
                    )

        with self.step("audit") as step:
            token_env = {"GITHUB_TOKEN": self.github_token} if self.github_token else {}
            result = env.run(self.audit_command, label="audit", env=token_env)
            self.capture_result(result)
            step.result.exit_code = result.exit_code
            self.evaluate(result.full_log, result.exit_code, result.error)
            step.log_excerpt = "0 advisories"

    def evaluate(self, output: str, exit_code: int, error: Optional[str] = None) -> None:
        """Turn tool output into success or a typed failure."""
        report = extract_report(output)
        if report is None:
            reason = error or f"exit code {exit_code}"
            raise AuditToolError(
                f"Audit tool produced no report ({reason})",
                step="audit",
                exit_code=exit_code if exit_code > 0 else 1,
            )

        advisories = parse_advisories(report)
        self.execution.advisories = advisories

        if report_has_findings(report, advisories):
            ids = ", ".join(f"{a.id} ({a.package} {a.version})".strip() for a in advisories)
            logger.warning("[AUDIT] %d advisories: %s", len(advisories), ids)
            raise AuditFinding(
                f"{len(advisories)} advisories match locked dependencies: {ids}",
                advisories=advisories,
                step="audit",
                exit_code=exit_code if exit_code > 0 else 1,
            )

        if exit_code != 0:
            raise AuditToolError(
                f"Audit tool exited with code {exit_code} despite a clean report",
                step="audit",
                exit_code=exit_code,
            )

        dep_count = (report.get("lockfile") or {}).get("dependency-count")
        logger.info("[AUDIT] Clean report (%s dependencies scanned)", dep_count or "?")
