import pytest
from unittest.mock import patch

from tests.helpers import SNAPSHOT_FILES, make_archive


@pytest.fixture
def snapshot_archive():
    return make_archive(SNAPSHOT_FILES)


@pytest.fixture
def fake_checkout():
    with patch("midnight.services.repo_service.checkout_source", return_value="0123456789abcdef") as m:
        yield m


@pytest.fixture
def workspace_root(tmp_path):
    root = tmp_path / "workspaces"
    root.mkdir()
    return str(root)
