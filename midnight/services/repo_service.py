"""
Repo Service
============
Acquires the project source tree and manages per-job workspaces.

Philosophy:
    - Every job gets its OWN workspace: <WORKSPACE_ROOT>/<run_id>-<job_kind>/
    - Workspaces are never reused across jobs or runs.
    - Workspaces are discarded when the job ends (unless KEEP_WORKSPACE).
"""
import os
import shutil
import subprocess
import logging
from typing import Optional

from midnight.core.config import WORKSPACE_ROOT
from midnight.core.errors import CheckoutError

logger = logging.getLogger(__name__)


def get_repo_name(repo_url: str) -> str:
    """Extract repository name from URL."""
    name = repo_url.rstrip("/").split("/")[-1]
    if name.endswith(".git"):
        name = name[:-4]
    return name


def authenticated_url(repo_url: str, github_token: str = "") -> str:
    """Embed the token into an https GitHub URL."""
    if github_token and "github.com" in repo_url and repo_url.startswith("https://"):
        return repo_url.replace("https://", f"https://x-access-token:{github_token}@", 1)
    return repo_url


def create_workspace(run_id: str, job_kind: str, root: str = WORKSPACE_ROOT) -> str:
    """
    Create a fresh, empty workspace for one job.

    An existing directory with the same name is wiped first so no state
    leaks in from an earlier attempt.
    """
    path = os.path.abspath(os.path.join(root, f"{run_id}-{job_kind}"))
    if os.path.exists(path):
        logger.warning("Stale workspace found at %s, removing", path)
        shutil.rmtree(path)
    os.makedirs(path)
    return path


def discard_workspace(path: str) -> None:
    """Remove a job workspace. Missing directories are ignored."""
    if path and os.path.isdir(path):
        logger.info("Discarding workspace %s", path)
        shutil.rmtree(path, ignore_errors=True)
        if os.path.exists(path):
            logger.warning("Workspace %s could not be fully removed", path)


def checkout_source(
    repo_url: str,
    dest_path: str,
    github_token: str = "",
    ref: Optional[str] = None,
) -> str:
    """
    Clone the repository into ``dest_path`` (which must be empty or absent).

    Parameters
    ----------
    repo_url : str
        The repository URL to clone.
    dest_path : str
        Target directory; becomes the job's working directory.
    github_token : str
        Optional token for authenticated clones.
    ref : str | None
        Branch or tag to check out. None means the remote default branch.

    Returns
    -------
    str
        The HEAD commit SHA of the checkout.

    Raises
    ------
    CheckoutError
        If git fails. The token is scrubbed from the reported message.
    """
    cmd = ["git", "clone", "--depth", "1"]
    if ref:
        cmd += ["--branch", ref]
    cmd += [authenticated_url(repo_url, github_token), dest_path]

    logger.info("Cloning %s%s into %s", repo_url, f"@{ref}" if ref else "", dest_path)
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
        head = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=dest_path,
            check=True,
            capture_output=True,
            text=True,
        )
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").replace(github_token, "***") if github_token else (e.stderr or "")
        logger.error("Failed to clone repository: %s", stderr)
        raise CheckoutError(f"Cloning failed: {stderr.strip()}", step="checkout",
                            exit_code=e.returncode or 1, log=stderr)
    except OSError as e:
        raise CheckoutError(f"git is not available: {e}", step="checkout")

    sha = head.stdout.strip()
    logger.info("Checked out %s at %s", get_repo_name(repo_url), sha[:12])
    return sha
