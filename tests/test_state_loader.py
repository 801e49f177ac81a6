import os
import hashlib
import pytest
import httpx
from unittest.mock import MagicMock

from midnight.core.errors import ArtifactError
from midnight.jobs.state_loader import PersistentStateLoader, expand_archive, sha256_of
from midnight.models.environment_spec import SnapshotReference

from tests.helpers import SNAPSHOT_FILES, make_archive, serving_client

URL = "https://snapshots.test/witnet-rust-testnet-5-tests-storage.tar.gz"


def loader_for(client, sha256=None, retry_limit=3):
    sleep = MagicMock()
    loader = PersistentStateLoader(
        SnapshotReference(url=URL, sha256=sha256),
        retry_limit=retry_limit,
        client=client,
        sleep=sleep,
    )
    return loader, sleep


def test_load_downloads_and_expands(tmp_path, snapshot_archive):
    loader, sleep = loader_for(serving_client(snapshot_archive))

    artifact = loader.load(str(tmp_path))

    assert artifact.state == "expanded"
    assert artifact.size_bytes == len(snapshot_archive)
    assert artifact.sha256 == hashlib.sha256(snapshot_archive).hexdigest()
    assert artifact.download_attempts == 1
    assert sorted(artifact.members) == sorted(SNAPSHOT_FILES)
    assert (tmp_path / ".witnet" / "storage" / "CURRENT").read_bytes() == b"MANIFEST-000042\n"
    assert not (tmp_path / "storage.tar.gz.part").exists()
    sleep.assert_not_called()


def test_not_found_is_fatal_without_retry(tmp_path):
    client = serving_client(b"", status=404)
    loader, sleep = loader_for(client)
    artifact = loader.new_artifact(str(tmp_path))

    with pytest.raises(ArtifactError) as exc:
        loader.load(str(tmp_path), artifact)

    assert exc.value.transient is False
    assert exc.value.step == "download"
    assert len(client.calls) == 1
    assert artifact.state == "pending"
    sleep.assert_not_called()


def test_server_errors_are_retried_with_backoff(tmp_path, snapshot_archive):
    client = serving_client(sequence=[(502, b""), (503, b""), (200, snapshot_archive)])
    loader, sleep = loader_for(client)

    artifact = loader.load(str(tmp_path))

    assert artifact.state == "expanded"
    assert artifact.download_attempts == 3
    assert [c.args[0] for c in sleep.call_args_list] == [2.0, 4.0]


def test_retry_limit_exhausted(tmp_path):
    client = serving_client(b"", status=503)
    loader, sleep = loader_for(client, retry_limit=2)

    with pytest.raises(ArtifactError) as exc:
        loader.load(str(tmp_path))

    assert exc.value.transient is True
    assert len(client.calls) == 2
    assert sleep.call_count == 1


def test_transport_error_is_transient(tmp_path, snapshot_archive):
    request = httpx.Request("GET", URL)
    client = serving_client(sequence=[httpx.ConnectError("connection reset", request=request),
                                      (200, snapshot_archive)])
    loader, _ = loader_for(client)

    artifact = loader.load(str(tmp_path))

    assert artifact.download_attempts == 2
    assert artifact.state == "expanded"


def test_checksum_mismatch(tmp_path, snapshot_archive):
    loader, _ = loader_for(serving_client(snapshot_archive), sha256="ab" * 32)
    artifact = loader.new_artifact(str(tmp_path))

    with pytest.raises(ArtifactError) as exc:
        loader.load(str(tmp_path), artifact)

    assert exc.value.step == "verify"
    assert artifact.state == "downloaded"
    assert not (tmp_path / ".witnet").exists()


def test_checksum_match(tmp_path, snapshot_archive):
    digest = hashlib.sha256(snapshot_archive).hexdigest().upper()
    loader, _ = loader_for(serving_client(snapshot_archive), sha256=digest)

    artifact = loader.load(str(tmp_path))

    assert artifact.integrity_checked is True
    assert artifact.state == "expanded"


def test_no_checksum_skips_verification(tmp_path, snapshot_archive):
    loader, _ = loader_for(serving_client(snapshot_archive))

    artifact = loader.load(str(tmp_path))

    assert artifact.integrity_checked is False


def test_corrupt_archive_is_fatal(tmp_path):
    loader, _ = loader_for(serving_client(b"<html>rate limited</html>"))
    artifact = loader.new_artifact(str(tmp_path))

    with pytest.raises(ArtifactError) as exc:
        loader.load(str(tmp_path), artifact)

    assert exc.value.step == "expand"
    assert exc.value.transient is False
    assert artifact.state != "expanded"


def test_unsafe_member_rejected(tmp_path):
    archive = tmp_path / "evil.tar.gz"
    archive.write_bytes(make_archive({"../escape.txt": b"x"}))
    dest = tmp_path / "ws"
    dest.mkdir()

    with pytest.raises(ArtifactError):
        expand_archive(str(archive), str(dest))
    assert not (tmp_path / "escape.txt").exists()


def test_expansion_is_deterministic(tmp_path, snapshot_archive):
    archive = tmp_path / "storage.tar.gz"
    archive.write_bytes(snapshot_archive)
    first, second = tmp_path / "a", tmp_path / "b"
    first.mkdir()
    second.mkdir()

    expand_archive(str(archive), str(first))
    expand_archive(str(archive), str(second))

    for name in SNAPSHOT_FILES:
        assert (first / name).read_bytes() == (second / name).read_bytes()


def test_expansion_overwrites_existing_files(tmp_path, snapshot_archive):
    archive = tmp_path / "storage.tar.gz"
    archive.write_bytes(snapshot_archive)
    current = tmp_path / "ws" / ".witnet" / "storage" / "CURRENT"
    current.parent.mkdir(parents=True)
    current.write_bytes(b"stale")

    expand_archive(str(archive), str(tmp_path / "ws"))

    assert current.read_bytes() == b"MANIFEST-000042\n"


def test_sha256_of(tmp_path):
    path = tmp_path / "blob"
    path.write_bytes(b"midnight")
    assert sha256_of(str(path)) == hashlib.sha256(b"midnight").hexdigest()


def test_snapshot_url_is_versioned():
    ref = SnapshotReference(base_url="https://github.com/witnet/witnet-rust/releases/download/",
                            release_tag="0.5.0-rc1", asset_name="storage.tar.gz", url=None)
    assert ref.resolved_url == (
        "https://github.com/witnet/witnet-rust/releases/download/0.5.0-rc1/storage.tar.gz"
    )


def test_snapshot_digest_validated():
    with pytest.raises(ValueError):
        SnapshotReference(sha256="not-a-digest")
