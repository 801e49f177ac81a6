"""
Environment Spec Models
=======================
Declarative inputs of the E2E job.

EnvironmentSpec:
    The named system packages that must be present before any build step
    runs, plus the fallback bootstrap for the build automation tool.
    Package order is irrelevant and duplicates collapse, so the install
    command is identical for any permutation of the same set.

SnapshotReference:
    Versioned pointer to the storage snapshot archive. The URL is derived
    from base_url / release_tag / asset_name unless ``url`` overrides it.
"""
from typing import List, Optional
from pydantic import BaseModel, field_validator

from midnight.core import config
from midnight.core.constants import (
    SYSTEM_PACKAGES,
    BUILD_TOOL,
    BUILD_TOOL_BOOTSTRAP,
    BUILD_TOOL_DIR,
)


class EnvironmentSpec(BaseModel):
    packages: List[str] = list(SYSTEM_PACKAGES)
    build_tool: str = BUILD_TOOL
    build_tool_bootstrap: str = BUILD_TOOL_BOOTSTRAP
    build_tool_dir: str = BUILD_TOOL_DIR

    @field_validator("packages")
    @classmethod
    def normalise_packages(cls, v: List[str]) -> List[str]:
        cleaned = sorted({p.strip() for p in v if p and p.strip()})
        if not cleaned:
            raise ValueError("EnvironmentSpec requires at least one package")
        return cleaned


class SnapshotReference(BaseModel):
    base_url: str = config.SNAPSHOT_BASE_URL
    release_tag: str = config.SNAPSHOT_RELEASE_TAG
    asset_name: str = config.SNAPSHOT_ASSET
    url: Optional[str] = config.SNAPSHOT_URL or None
    sha256: Optional[str] = config.SNAPSHOT_SHA256 or None

    @field_validator("sha256")
    @classmethod
    def normalise_digest(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        v = v.strip().lower()
        if len(v) != 64 or any(c not in "0123456789abcdef" for c in v):
            raise ValueError("sha256 must be a 64 character hex digest")
        return v

    @property
    def resolved_url(self) -> str:
        if self.url:
            return self.url
        return f"{self.base_url.rstrip('/')}/{self.release_tag}/{self.asset_name}"
