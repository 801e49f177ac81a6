"""
Constants
Centralised storage for job names, the provisioning package set and the
build-tool bootstrap.
"""
JOB_DEPS_AUDIT = "deps_audit"
JOB_E2E_DEBUG = "e2e_debug"
JOB_KINDS = [JOB_DEPS_AUDIT, JOB_E2E_DEBUG]

# Toolchain needed to build the node and its storage-engine bindings
SYSTEM_PACKAGES = [
    "g++-9",
    "cmake",
    "libcurl4-openssl-dev",
    "libelf-dev",
    "libdw-dev",
    "gcc",
    "binutils-dev",
    "protobuf-compiler",
    "librocksdb-dev",
    "curl",
]

BUILD_TOOL = "just"
BUILD_TOOL_BOOTSTRAP = (
    "curl -LSfs https://japaric.github.io/trust/install.sh | "
    "sh -s -- --git casey/just --target x86_64-unknown-linux-musl --to \"$HOME/.cargo/bin\""
)
BUILD_TOOL_DIR = "$HOME/.cargo/bin"

SNAPSHOT_ARCHIVE_NAME = "storage.tar.gz"
