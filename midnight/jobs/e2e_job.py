"""
E2E Debug Job
=============
Provisions the environment, restores the storage snapshot and runs the
debug end-to-end test.

State machine:
    start → checkout → provisioned → state_loaded → tests_run → success
    (any state) → failure

Each arrow is a strict precondition for the next. Any step failure moves
straight to ``failure`` and skips every remaining step, so the test target
is never invoked unless provisioning and state loading both completed.
"""
import logging
from enum import Enum
from typing import Callable, Optional

from midnight.core.constants import JOB_E2E_DEBUG
from midnight.core.errors import ArtifactError
from midnight.core.pipeline_config import PipelineSettings
from midnight.executor.environment import ExecutionEnvironment
from midnight.jobs.base import Job
from midnight.jobs.provisioner import EnvironmentProvisioner
from midnight.jobs.state_loader import PersistentStateLoader
from midnight.jobs.test_runner import E2ETestRunner

logger = logging.getLogger(__name__)


class E2EState(str, Enum):
    START = "start"
    CHECKOUT = "checkout"
    PROVISIONED = "provisioned"
    STATE_LOADED = "state_loaded"
    TESTS_RUN = "tests_run"
    SUCCESS = "success"
    FAILURE = "failure"


class E2EJob(Job):
    """Checkout → Provision → Load state → Run E2E target."""

    kind = JOB_E2E_DEBUG

    def __init__(
        self,
        run_id: str,
        provisioner: Optional[EnvironmentProvisioner] = None,
        state_loader: Optional[PersistentStateLoader] = None,
        test_runner: Optional[E2ETestRunner] = None,
        settings_loader: Optional[Callable[[], PipelineSettings]] = None,
        **kwargs,
    ) -> None:
        super().__init__(run_id, **kwargs)
        self.settings_loader = settings_loader
        self.provisioner = provisioner or EnvironmentProvisioner()
        self.state_loader = state_loader or PersistentStateLoader()
        self.test_runner = test_runner or E2ETestRunner()
        self.state = E2EState.START
        self.execution.state_history.append(self.state.value)

    def _transition(self, new_state: E2EState) -> None:
        logger.info("[E2E] %s → %s", self.state.value, new_state.value)
        self.state = new_state
        self.execution.state_history.append(new_state.value)

    def prepare(self) -> None:
        """Build the job components from pipeline settings, when a loader was given."""
        if self.settings_loader is None:
            return
        with self.step("configure") as step:
            settings = self.settings_loader()
            self.provisioner = EnvironmentProvisioner(settings.environment)
            self.state_loader = PersistentStateLoader(settings.snapshot)
            self.test_runner = E2ETestRunner(target=settings.e2e_target)
            step.log_excerpt = f"snapshot {settings.snapshot.resolved_url}"

    def execute(self, env: ExecutionEnvironment) -> None:
        self.checkout()
        self._transition(E2EState.CHECKOUT)

        with self.step("provision") as step:
            results = self.provisioner.provision(env, on_result=self.capture_result)
            step.result.exit_code = results[-1].exit_code if results else 0
        self._transition(E2EState.PROVISIONED)

        with self.step("load_state") as step:
            artifact = self.state_loader.new_artifact(self.workspace_path)
            self.execution.artifact = artifact
            try:
                self.state_loader.load(self.workspace_path, artifact)
            finally:
                step.result.attempts = max(1, artifact.download_attempts)
                self.capture(
                    "load_state",
                    f"GET {artifact.source_url}",
                    f"state={artifact.state} bytes={artifact.size_bytes} "
                    f"sha256={artifact.sha256 or '-'} attempts={artifact.download_attempts} "
                    f"entries={len(artifact.members)}\n",
                )
            if not artifact.is_expanded:
                raise ArtifactError("Snapshot was not fully expanded", step="load_state")
            step.log_excerpt = f"{len(artifact.members)} entries from {artifact.source_url}"
        self._transition(E2EState.STATE_LOADED)

        with self.step("e2e") as step:
            try:
                result = self.test_runner.run(env)
            finally:
                if env.history:
                    self.capture_result(env.history[-1])
            step.result.exit_code = result.exit_code
            step.log_excerpt = result.log_excerpt
        self._transition(E2EState.TESTS_RUN)

    def on_success(self) -> None:
        self._transition(E2EState.SUCCESS)

    def on_failure(self, error: Exception) -> None:
        self._transition(E2EState.FAILURE)
