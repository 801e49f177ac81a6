"""
Staged Artifact Model
=====================
The storage snapshot downloaded into an E2E workspace.

Lifecycle:
    pending → downloaded → verified → expanded

``verified`` is only reached when an expected SHA-256 was configured.
Without one the artifact goes straight from ``downloaded`` to ``expanded``
and ``integrity_checked`` stays False.
"""
from typing import List, Literal
from pydantic import BaseModel

ArtifactState = Literal["pending", "downloaded", "verified", "expanded"]


class StagedArtifact(BaseModel):
    source_url: str
    local_path: str
    state: ArtifactState = "pending"
    sha256: str = ""
    integrity_checked: bool = False
    size_bytes: int = 0
    download_attempts: int = 0
    members: List[str] = []

    @property
    def is_expanded(self) -> bool:
        return self.state == "expanded"
