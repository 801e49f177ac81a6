"""
Execution Environment
=====================
Runs job commands inside an isolated, disposable environment and returns
structured execution results (logs, exit code, timing).

BOUNDARY RULES:
    - Environments ONLY execute commands and capture what happened.
    - Environments NEVER interpret exit codes. Jobs turn results into
      typed failures.
    - run() never raises for a failing command; infrastructure problems
      are reported through ExecutionResult.error with exit_code -1.

MODES:
    local   - commands run as child processes in the job workspace on the
              host runner (the hosting platform's ephemeral VM).
    docker  - one container per job, created on enter and force-removed on
              exit. The workspace is mounted at /workspace so files staged
              on the host (checkout, snapshot) are visible to the commands.
              Installed packages persist across steps of the same job only.
              On exit the workspace is chowned back to the host user so the
              job can discard it.
"""
import os
import time
import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Optional

import docker
from docker.errors import ImageNotFound, APIError, DockerException

from midnight.core.config import DOCKER_IMAGE, DEFAULT_EXECUTION_TIMEOUT, EXECUTION_MODE
from midnight.core.errors import ExecutionEnvironmentError, ConfigurationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Execution Result
# ---------------------------------------------------------------------------
@dataclass
class ExecutionResult:
    """
    Structured output from a single command.

    Fields
    ------
    label : str
        Step label the command was run under.
    command : str
        The shell command as executed.
    exit_code : int
        Process exit code (0 = success, non-zero = failure, -1 = not run).
    full_log : str
        Combined stdout + stderr.
    log_excerpt : str
        Abbreviated log (first + last N lines) for reports.
    execution_time_seconds : float
        Wall clock duration.
    environment_metadata : dict
        Mode, image, container ID, timeout applied.
    error : str | None
        Infrastructure error message (not command failures).
    """
    label: str = ""
    command: str = ""
    exit_code: int = -1
    full_log: str = ""
    log_excerpt: str = ""
    execution_time_seconds: float = 0.0
    environment_metadata: dict = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and self.error is None


# ---------------------------------------------------------------------------
# Log Excerpt Helper
# ---------------------------------------------------------------------------
_EXCERPT_HEAD_LINES = 30
_EXCERPT_TAIL_LINES = 30


def create_log_excerpt(full_log: str,
                       head: int = _EXCERPT_HEAD_LINES,
                       tail: int = _EXCERPT_TAIL_LINES) -> str:
    """
    Create an abbreviated log showing the first and last N lines.

    Returns the log unchanged when it is short enough.
    """
    lines = full_log.splitlines()
    total = len(lines)

    if total <= head + tail:
        return full_log

    omitted = total - head - tail
    return "\n".join(
        lines[:head]
        + [f"\n... ({omitted} lines omitted) ...\n"]
        + lines[-tail:]
    )


def format_stage_header(label: str, command: str) -> str:
    return f"\n{'='*60}\n>>> STAGE: {label}\n>>> COMMAND: {command}\n{'='*60}\n"


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class ExecutionEnvironment:
    """
    Context-managed execution sandbox bound to one job workspace.

    Usage:
        with LocalEnvironment(workspace) as env:
            result = env.run("cmake --version", label="cmake-version")
    """

    mode = "base"

    def __init__(self, workspace_path: str,
                 timeout_seconds: int = DEFAULT_EXECUTION_TIMEOUT) -> None:
        self.workspace_path = os.path.abspath(workspace_path)
        self.timeout_seconds = timeout_seconds
        self.history: list[ExecutionResult] = []

    # -- lifecycle -----------------------------------------------------
    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def __enter__(self) -> "ExecutionEnvironment":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -- execution -----------------------------------------------------
    @property
    def privileged_prefix(self) -> str:
        """Prefix for commands that need root (package installs)."""
        return ""

    def run(self, command: str, label: str = "",
            env: Optional[dict] = None) -> ExecutionResult:
        result = ExecutionResult(label=label or command.split()[0], command=command)
        start_time = time.monotonic()

        logger.info("[%s] %s", result.label, command)
        self._execute(result, env or {})

        result.execution_time_seconds = round(time.monotonic() - start_time, 3)
        result.log_excerpt = create_log_excerpt(result.full_log)
        self.history.append(result)

        logger.info(
            "[%s] exit=%d | time=%.2fs | mode=%s",
            result.label, result.exit_code, result.execution_time_seconds, self.mode,
        )
        return result

    def _execute(self, result: ExecutionResult, env: dict) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Local (host runner)
# ---------------------------------------------------------------------------
class LocalEnvironment(ExecutionEnvironment):
    """Runs commands with bash in the workspace directory on this host."""

    mode = "local"

    @property
    def privileged_prefix(self) -> str:
        if hasattr(os, "geteuid") and os.geteuid() != 0:
            return "sudo "
        return ""

    def open(self) -> None:
        os.makedirs(self.workspace_path, exist_ok=True)

    def _execute(self, result: ExecutionResult, env: dict) -> None:
        timeout = self.timeout_seconds or None
        result.environment_metadata = {
            "mode": self.mode,
            "cwd": self.workspace_path,
            "timeout_applied": self.timeout_seconds,
        }
        try:
            completed = subprocess.run(
                ["bash", "-c", result.command],
                cwd=self.workspace_path,
                env={**os.environ, "CI": "true", **env},
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                timeout=timeout,
            )
            result.exit_code = completed.returncode
            result.full_log = completed.stdout or ""
        except subprocess.TimeoutExpired as e:
            result.error = f"Command timed out after {self.timeout_seconds}s"
            result.exit_code = -1
            output = e.output or ""
            result.full_log = output.decode("utf-8", errors="replace") if isinstance(output, bytes) else output
            logger.error("[%s] %s", result.label, result.error)
        except OSError as e:
            result.error = f"Failed to start command: {e}"
            result.exit_code = -1
            logger.error("[%s] %s", result.label, result.error)


# ---------------------------------------------------------------------------
# Docker (ephemeral container)
# ---------------------------------------------------------------------------
# Docker resource limits
_MEMORY_LIMIT = "8g"
_CPU_COUNT = 2
_CONTAINER_WORKDIR = "/workspace"


class DockerEnvironment(ExecutionEnvironment):
    """
    One long-lived container per job. Each command is an ``exec`` inside it,
    so packages installed by the provisioner survive until the job ends and
    nothing survives after it.
    """

    mode = "docker"

    def __init__(self, workspace_path: str,
                 timeout_seconds: int = DEFAULT_EXECUTION_TIMEOUT,
                 docker_image: str = DOCKER_IMAGE,
                 name_prefix: str = "midnight") -> None:
        super().__init__(workspace_path, timeout_seconds)
        self.docker_image = docker_image
        self.name_prefix = name_prefix
        self.container = None

    def open(self) -> None:
        os.makedirs(self.workspace_path, exist_ok=True)
        try:
            client = docker.from_env()
            logger.info("Starting container | image=%s | workspace=%s",
                        self.docker_image, self.workspace_path)
            self.container = client.containers.run(
                image=self.docker_image,
                command=["sleep", "infinity"],
                volumes={self.workspace_path: {"bind": _CONTAINER_WORKDIR, "mode": "rw"}},
                environment={"CI": "true", "DEBIAN_FRONTEND": "noninteractive"},
                working_dir=_CONTAINER_WORKDIR,
                mem_limit=_MEMORY_LIMIT,
                nano_cpus=_CPU_COUNT * 1_000_000_000,
                name=f"{self.name_prefix}-{int(time.time() * 1000)}",
                labels={"project": "midnight-check", "role": "job-sandbox"},
                detach=True,
            )
        except ImageNotFound as e:
            raise ExecutionEnvironmentError(
                f"Docker image '{self.docker_image}' not found", step="environment"
            ) from e
        except (APIError, DockerException) as e:
            raise ExecutionEnvironmentError(
                f"Docker unavailable: {e}", step="environment"
            ) from e

    def close(self) -> None:
        if self.container is None:
            return
        try:
            self._release_workspace()
        except APIError:
            logger.warning("Failed to hand workspace back to the host user", exc_info=True)
        try:
            self.container.remove(force=True)
            logger.info("Container %s destroyed", self.container.short_id)
        except Exception:
            logger.warning("Failed to remove container", exc_info=True)
        finally:
            self.container = None

    def _release_workspace(self) -> None:
        """Hand files written as root in the container back to the host user."""
        if not hasattr(os, "getuid") or os.getuid() == 0:
            return
        owner = f"{os.getuid()}:{os.getgid()}"
        exit_code, output = self.container.exec_run(
            ["chown", "-R", owner, _CONTAINER_WORKDIR], user="root",
        )
        if exit_code != 0:
            logger.warning(
                "Could not chown %s to %s: %s",
                self.workspace_path, owner, (output or b"").decode("utf-8", errors="replace"),
            )

    def _execute(self, result: ExecutionResult, env: dict) -> None:
        result.environment_metadata = {
            "mode": self.mode,
            "image": self.docker_image,
            "container_id": self.container.short_id if self.container else "",
            "memory_limit": _MEMORY_LIMIT,
            "cpu_count": _CPU_COUNT,
        }
        if self.container is None:
            result.error = "Container not started"
            result.exit_code = -1
            return

        command = result.command
        if self.timeout_seconds:
            # exec_run has no timeout of its own
            command = f"timeout {self.timeout_seconds} bash -c {shlex.quote(command)}"

        try:
            exit_code, output = self.container.exec_run(
                ["bash", "-c", command],
                workdir=_CONTAINER_WORKDIR,
                environment={"CI": "true", **env},
            )
            result.exit_code = exit_code if exit_code is not None else -1
            result.full_log = (output or b"").decode("utf-8", errors="replace")
        except APIError as e:
            result.error = f"Docker API error: {e}"
            result.exit_code = -1
            logger.error("[%s] %s", result.label, result.error)


def create_environment(workspace_path: str, mode: str = EXECUTION_MODE,
                       name_prefix: str = "midnight") -> ExecutionEnvironment:
    """Build the execution environment for a job workspace."""
    if mode == "local":
        return LocalEnvironment(workspace_path)
    if mode == "docker":
        return DockerEnvironment(workspace_path, name_prefix=name_prefix)
    raise ConfigurationError(f"Unknown EXECUTION_MODE '{mode}'", step="environment")
