import pytest

from midnight.core.errors import E2ETestFailure
from midnight.jobs.test_runner import E2ETestRunner

from tests.helpers import FakeEnvironment


def test_runs_target_once(tmp_path):
    env = FakeEnvironment(str(tmp_path), default=(0, "test result: ok\n"))

    result = E2ETestRunner().run(env)

    assert result.exit_code == 0
    assert len(env.history) == 1
    assert env.commands[0].endswith("just e2e-debug")
    assert 'export PATH="$PATH:$HOME/.cargo/bin"' in env.commands[0]
    assert "~" not in env.commands[0]


def test_failure_carries_exit_code_and_log(tmp_path):
    env = FakeEnvironment(str(tmp_path), outcomes={"just-e2e-debug": (2, "error: recipe failed\n")})

    with pytest.raises(E2ETestFailure) as exc:
        E2ETestRunner().run(env)

    assert exc.value.exit_code == 2
    assert exc.value.log == "error: recipe failed\n"
    assert len(env.history) == 1


def test_custom_target(tmp_path):
    env = FakeEnvironment(str(tmp_path))
    E2ETestRunner(target="e2e-release").run(env)
    assert env.labels == ["just-e2e-release"]
