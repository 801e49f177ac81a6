"""
Environment Provisioner
=======================
Brings a bare execution environment to "can build and run the node".

Steps (all inside the job's environment):
    1. apt-get update
    2. apt-get install -y <every package in EnvironmentSpec>   (one transaction)
    3. build tool bootstrap: keep an existing `just`, otherwise install it
    4. verify the build tool resolves on PATH

All-or-nothing: the first non-zero step raises ProvisioningError and the
E2E job aborts. There is no partial-environment fallback and no retry.
"""
import logging
import shlex
from typing import Optional

from midnight.core.errors import ProvisioningError
from midnight.executor.environment import ExecutionEnvironment, ExecutionResult
from midnight.models.environment_spec import EnvironmentSpec

logger = logging.getLogger(__name__)


def build_install_command(spec: EnvironmentSpec, prefix: str = "") -> str:
    """apt-get install for the whole package set. Package order is normalised by EnvironmentSpec."""
    packages = " ".join(shlex.quote(p) for p in spec.packages)
    return f"{prefix}apt-get install -y -qq --no-install-recommends {packages}"


def build_bootstrap_command(spec: EnvironmentSpec) -> str:
    return f"command -v {spec.build_tool} || ({spec.build_tool_bootstrap})"


def build_verify_command(spec: EnvironmentSpec) -> str:
    return (
        f'export PATH="$PATH:{spec.build_tool_dir}" && '
        f"{spec.build_tool} --version"
    )


class EnvironmentProvisioner:
    """
    Installs the EnvironmentSpec into an execution environment.

    The provisioner is stateless apart from the results it records, so the
    same instance can be reused for tests against fake environments.
    """

    def __init__(self, spec: Optional[EnvironmentSpec] = None) -> None:
        self.spec = spec or EnvironmentSpec()
        self.results: list[ExecutionResult] = []

    def plan(self, env: ExecutionEnvironment) -> list[tuple[str, str]]:
        """Return the ordered (label, command) pairs that provisioning runs."""
        prefix = env.privileged_prefix
        return [
            ("apt-update", f"{prefix}apt-get update -y -qq"),
            ("apt-install", build_install_command(self.spec, prefix)),
            (f"bootstrap-{self.spec.build_tool}", build_bootstrap_command(self.spec)),
            (f"verify-{self.spec.build_tool}", build_verify_command(self.spec)),
        ]

    def provision(self, env: ExecutionEnvironment, on_result=None) -> list[ExecutionResult]:
        """
        Run every provisioning command in order.

        Parameters
        ----------
        env : ExecutionEnvironment
            The job's environment.
        on_result : callable | None
            Called with each ExecutionResult (used by the job to capture logs).

        Raises
        ------
        ProvisioningError
            On the first failing command; later commands are not run.
        """
        logger.info(
            "[PROVISION] Installing %d packages: %s",
            len(self.spec.packages), ", ".join(self.spec.packages),
        )
        self.results = []
        for label, command in self.plan(env):
            result = env.run(command, label=label)
            self.results.append(result)
            if on_result is not None:
                on_result(result)
            if not result.succeeded:
                reason = result.error or f"exit code {result.exit_code}"
                logger.error("[PROVISION] %s failed: %s", label, reason)
                raise ProvisioningError(
                    f"{label} failed ({reason})",
                    step="provision",
                    exit_code=result.exit_code if result.exit_code > 0 else 1,
                )
        logger.info("[PROVISION] Environment ready")
        return self.results
