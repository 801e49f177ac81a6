"""
Test doubles: a scripted execution environment, in-memory snapshot
archives and an httpx client backed by MockTransport.
"""
import io
import json
import os
import tarfile
import httpx

from midnight.executor.environment import ExecutionEnvironment


class FakeEnvironment(ExecutionEnvironment):
    """
    Records every command. Outcomes are looked up by step label:
        outcomes = {"apt-install": (100, "E: Unable to locate package g++-9")}
    Unlisted labels succeed with ``default``.
    """

    mode = "fake"

    def __init__(self, workspace_path, outcomes=None, default=(0, "ok\n"), prefix=""):
        super().__init__(workspace_path, timeout_seconds=0)
        self.outcomes = outcomes or {}
        self.default = default
        self.prefix = prefix
        self.opened = False
        self.closed = False
        self.envs = []

    @property
    def privileged_prefix(self):
        return self.prefix

    def open(self):
        os.makedirs(self.workspace_path, exist_ok=True)
        self.opened = True

    def close(self):
        self.closed = True

    def _execute(self, result, env):
        self.envs.append(env)
        result.environment_metadata = {"mode": self.mode}
        exit_code, log = self.outcomes.get(result.label, self.default)
        result.exit_code = exit_code
        result.full_log = log

    @property
    def labels(self):
        return [r.label for r in self.history]

    @property
    def commands(self):
        return [r.command for r in self.history]


def make_archive(files: dict) -> bytes:
    """Build a gzip tarball in memory from {relative_path: bytes}."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


SNAPSHOT_FILES = {
    ".witnet/storage/CURRENT": b"MANIFEST-000042\n",
    ".witnet/storage/000041.sst": b"\x00\x01rocksdb-block" * 16,
    ".witnet/config/witnet.toml": b"[connections]\nserver_addr = \"0.0.0.0:21337\"\n",
}


def serving_client(body: bytes = b"", status: int = 200, sequence=None):
    """
    httpx.Client backed by a MockTransport.

    ``sequence`` is a list of (status, body) or Exception items, consumed
    one per request; otherwise every request gets (status, body).
    """
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        if sequence is not None:
            item = sequence[min(len(calls), len(sequence)) - 1]
            if isinstance(item, Exception):
                raise item
            code, payload = item
            return httpx.Response(code, content=payload)
        return httpx.Response(status, content=body)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    client.calls = calls
    return client




CLEAN_REPORT = {
    "database": {"advisory-count": 612},
    "lockfile": {"dependency-count": 412},
    "vulnerabilities": {"found": False, "count": 0, "list": []},
    "warnings": {},
}

VULNERABLE_REPORT = {
    "database": {"advisory-count": 612},
    "lockfile": {"dependency-count": 412},
    "vulnerabilities": {
        "found": True,
        "count": 1,
        "list": [
            {
                "advisory": {
                    "id": "RUSTSEC-2020-0071",
                    "package": "time",
                    "title": "Potential segfault in the time crate",
                    "url": "https://github.com/time-rs/time/issues/293",
                },
                "versions": {"patched": [">=0.2.23"], "unaffected": ["=0.2.0"]},
                "package": {"name": "time", "version": "0.1.44"},
            }
        ],
    },
    "warnings": {},
}


def audit_output(report):
    """Progress lines on the shared stream followed by the JSON report."""
    return (
        "    Fetching advisory database from `https://github.com/RustSec/advisory-db.git`\n"
        "      Loaded 612 security advisories (from ~/.cargo/advisory-db)\n"
        "    Scanning Cargo.lock for vulnerabilities (412 crate dependencies)\n"
        + json.dumps(report) + "\n"
    )
