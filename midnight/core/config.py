"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    GITHUB_TOKEN                    - Platform credential (checkout + audit tool)
    PROJECT_REPO_URL                - Repository checked out by every job
    PROJECT_REF                     - Branch / tag to check out (default: repo default)
    SCHEDULE_CRON                   - Trigger expression (default: midnight daily, UTC)
    SCHEDULE_MISFIRE_GRACE_SECONDS  - Late wake-up tolerance before a trigger is skipped
    SCHEDULE_CATCH_UP               - Fire one catch-up run for a missed trigger (default: false)
    ENABLE_SCHEDULER                - Start the scheduler with the HTTP server (default: true)
    EXECUTION_MODE                  - "local" (host runner) or "docker" (ephemeral container)
    DOCKER_IMAGE                    - Base image for docker execution mode (needs cargo)
    SNAPSHOT_*                      - Versioned storage snapshot reference
    DOWNLOAD_RETRY_LIMIT            - Attempts for transient snapshot download failures
    PIPELINE_CONFIG                 - Optional YAML file overriding schedule / packages / snapshot

Snapshot Reference:
    The snapshot URL is composed from SNAPSHOT_BASE_URL / SNAPSHOT_RELEASE_TAG /
    SNAPSHOT_ASSET so that rotating the release tag never touches pipeline code.
    SNAPSHOT_URL overrides the composed value entirely. SNAPSHOT_SHA256 enables
    integrity verification of the downloaded archive.

Execution Timeout:
    DEFAULT_EXECUTION_TIMEOUT bounds a single command in seconds. 0 disables it
    and leaves the ceiling to the hosting platform.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


GITHUB_TOKEN = os.getenv("GITHUB_TOKEN")
PROJECT_REPO_URL = os.getenv("PROJECT_REPO_URL", "https://github.com/witnet/witnet-rust")
PROJECT_REF = os.getenv("PROJECT_REF", "")

# Scheduling
SCHEDULE_CRON = os.getenv("SCHEDULE_CRON", "0 0 * * *")
SCHEDULE_MISFIRE_GRACE_SECONDS = int(os.getenv("SCHEDULE_MISFIRE_GRACE_SECONDS", 300))
SCHEDULE_CATCH_UP = _env_flag("SCHEDULE_CATCH_UP")
ENABLE_SCHEDULER = _env_flag("ENABLE_SCHEDULER", "true")

# Execution environment
EXECUTION_MODE = os.getenv("EXECUTION_MODE", "local")
# Rust toolchain on Debian bullseye, whose package index still carries g++-9
DOCKER_IMAGE = os.getenv("DOCKER_IMAGE", "rust:1-bullseye")
DEFAULT_EXECUTION_TIMEOUT = int(os.getenv("DEFAULT_EXECUTION_TIMEOUT", 0))

# Workspaces and reporting
WORKSPACE_ROOT = os.getenv(
    "WORKSPACE_ROOT",
    os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "workspace"),
)
KEEP_WORKSPACE = _env_flag("KEEP_WORKSPACE")
RESULTS_DIR = os.getenv("RESULTS_DIR", "results")
RUN_LEDGER_PATH = os.getenv("RUN_LEDGER_PATH", os.path.join(RESULTS_DIR, "ledger.json"))

# Storage snapshot
SNAPSHOT_BASE_URL = os.getenv(
    "SNAPSHOT_BASE_URL", "https://github.com/witnet/witnet-rust/releases/download"
)
SNAPSHOT_RELEASE_TAG = os.getenv("SNAPSHOT_RELEASE_TAG", "0.5.0-rc1")
SNAPSHOT_ASSET = os.getenv("SNAPSHOT_ASSET", "witnet-rust-testnet-5-tests-storage.tar.gz")
SNAPSHOT_URL = os.getenv("SNAPSHOT_URL", "")
SNAPSHOT_SHA256 = os.getenv("SNAPSHOT_SHA256", "")
DOWNLOAD_RETRY_LIMIT = int(os.getenv("DOWNLOAD_RETRY_LIMIT", 3))

# External tools
AUDIT_COMMAND = os.getenv("AUDIT_COMMAND", "cargo audit --json")
AUDIT_BOOTSTRAP_COMMAND = os.getenv(
    "AUDIT_BOOTSTRAP_COMMAND",
    "cargo audit --version || cargo install cargo-audit --locked",
)
E2E_TARGET = os.getenv("E2E_TARGET", "e2e-debug")

# Optional YAML overrides (see midnight/core/pipeline_config.py)
PIPELINE_CONFIG = os.getenv("PIPELINE_CONFIG", "")
