"""
Persistent State Loader
=======================
Stages the pre-captured node storage snapshot into the E2E workspace.

Steps:
    1. Download   - stream the archive to <workspace>/storage.tar.gz
                    (written as .part, renamed once complete)
    2. Verify     - compare SHA-256 with the configured digest, if any
    3. Expand     - extract the gzip tarball in place, overwriting files
                    with the same relative path

Failure classes:
    transient - transport errors, HTTP 5xx, HTTP 429.
                Retried up to ``retry_limit`` attempts with doubling backoff.
    fatal     - any other HTTP status (404, 403, ...), checksum mismatch,
                corrupt / non-gzip archive, unsafe member paths.

The artifact only reaches the ``expanded`` state after every member was
extracted; an extraction error leaves it in its previous state and raises.
"""
import os
import time
import hashlib
import logging
import tarfile
import zlib
from typing import Optional

import httpx

from midnight.core.config import DOWNLOAD_RETRY_LIMIT
from midnight.core.constants import SNAPSHOT_ARCHIVE_NAME
from midnight.core.errors import ArtifactError
from midnight.models.environment_spec import SnapshotReference
from midnight.models.staged_artifact import StagedArtifact

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024
_INITIAL_BACKOFF = 2.0
_MAX_BACKOFF = 30.0
_TRANSIENT_STATUS = {429, 500, 502, 503, 504}


def sha256_of(path: str) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def expand_archive(archive_path: str, dest_dir: str) -> list[str]:
    """
    Extract a gzip tarball into ``dest_dir``.

    Uses the ``data`` extraction filter, which rejects absolute paths,
    ``..`` traversal and links escaping the destination.

    Returns
    -------
    list[str]
        Relative member names, in archive order.

    Raises
    ------
    ArtifactError
        If the archive is not a valid gzip tarball or any member fails.
    """
    try:
        with tarfile.open(archive_path, mode="r:gz") as archive:
            members = archive.getmembers()
            archive.extractall(dest_dir, filter="data")
    except (tarfile.TarError, EOFError, zlib.error, OSError) as e:
        raise ArtifactError(
            f"Cannot expand {os.path.basename(archive_path)}: {type(e).__name__}: {e}",
            step="expand",
        ) from e
    return [m.name for m in members]


class PersistentStateLoader:
    """
    Downloads and expands the storage snapshot.

    Parameters
    ----------
    reference : SnapshotReference
        Versioned snapshot location and optional digest.
    retry_limit : int
        Maximum download attempts for transient failures (>= 1).
    client : httpx.Client | None
        Injected client (tests pass one with a MockTransport).
    sleep : callable
        Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        reference: Optional[SnapshotReference] = None,
        retry_limit: int = DOWNLOAD_RETRY_LIMIT,
        client: Optional[httpx.Client] = None,
        sleep=time.sleep,
    ) -> None:
        self.reference = reference or SnapshotReference()
        self.retry_limit = max(1, retry_limit)
        self._client = client
        self._sleep = sleep

    # ------------------------------------------------------------------
    def load(self, workspace_path: str, artifact: Optional[StagedArtifact] = None) -> StagedArtifact:
        """Run download → verify → expand. Returns the expanded artifact."""
        if artifact is None:
            artifact = self.new_artifact(workspace_path)
        self.download(artifact)
        self.verify(artifact)
        self.expand(artifact, workspace_path)
        return artifact

    def new_artifact(self, workspace_path: str) -> StagedArtifact:
        return StagedArtifact(
            source_url=self.reference.resolved_url,
            local_path=os.path.join(workspace_path, SNAPSHOT_ARCHIVE_NAME),
        )

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------
    def download(self, artifact: StagedArtifact) -> StagedArtifact:
        backoff = _INITIAL_BACKOFF
        last_error: Optional[ArtifactError] = None

        for attempt in range(1, self.retry_limit + 1):
            artifact.download_attempts = attempt
            try:
                self._download_once(artifact)
                artifact.state = "downloaded"
                logger.info(
                    "[STATE] Downloaded %s (%d bytes, attempt %d)",
                    artifact.source_url, artifact.size_bytes, attempt,
                )
                return artifact
            except ArtifactError as e:
                last_error = e
                if not e.transient:
                    raise
                if attempt < self.retry_limit:
                    logger.warning(
                        "[STATE] Transient download failure (attempt %d/%d): %s, retrying in %.0fs",
                        attempt, self.retry_limit, e.message, backoff,
                    )
                    self._sleep(backoff)
                    backoff = min(backoff * 2, _MAX_BACKOFF)

        logger.error("[STATE] Download failed after %d attempts", self.retry_limit)
        raise last_error

    def _download_once(self, artifact: StagedArtifact) -> None:
        part_path = artifact.local_path + ".part"
        client = self._client or httpx.Client(follow_redirects=True, timeout=60.0)
        try:
            with client.stream("GET", artifact.source_url) as response:
                if response.status_code >= 400:
                    transient = response.status_code in _TRANSIENT_STATUS
                    raise ArtifactError(
                        f"HTTP {response.status_code} fetching {artifact.source_url}",
                        step="download",
                        transient=transient,
                    )
                digest = hashlib.sha256()
                size = 0
                with open(part_path, "wb") as f:
                    for chunk in response.iter_bytes(_CHUNK_SIZE):
                        f.write(chunk)
                        digest.update(chunk)
                        size += len(chunk)
            os.replace(part_path, artifact.local_path)
            artifact.sha256 = digest.hexdigest()
            artifact.size_bytes = size
        except httpx.TransportError as e:
            raise ArtifactError(
                f"Network error fetching {artifact.source_url}: {type(e).__name__}: {e}",
                step="download",
                transient=True,
            ) from e
        finally:
            if os.path.exists(part_path):
                os.remove(part_path)
            if self._client is None:
                client.close()

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------
    def verify(self, artifact: StagedArtifact) -> StagedArtifact:
        expected = self.reference.sha256
        if not expected:
            logger.warning(
                "[STATE] No SNAPSHOT_SHA256 configured, %s is not integrity-checked",
                os.path.basename(artifact.local_path),
            )
            return artifact

        actual = artifact.sha256 or sha256_of(artifact.local_path)
        if actual != expected:
            raise ArtifactError(
                f"Checksum mismatch: expected {expected}, got {actual}",
                step="verify",
            )
        artifact.integrity_checked = True
        artifact.state = "verified"
        logger.info("[STATE] Checksum verified (%s)", actual[:12])
        return artifact

    # ------------------------------------------------------------------
    # Expand
    # ------------------------------------------------------------------
    def expand(self, artifact: StagedArtifact, workspace_path: str) -> StagedArtifact:
        members = expand_archive(artifact.local_path, workspace_path)
        artifact.members = members
        artifact.state = "expanded"
        logger.info("[STATE] Expanded %d entries into %s", len(members), workspace_path)
        return artifact
