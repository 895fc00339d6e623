"""Manifest document model: the contract consumed by installers.

The shape is versioned by ``schema_version`` and must stay stable across
releases.  The manifest deliberately carries no wall-clock timestamps so
that building it twice from the same inputs yields identical bytes.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

MANIFEST_SCHEMA_VERSION = "1"


class ManifestArtifact(BaseModel):
    """One artifact entry in a manifest."""

    model_config = ConfigDict(frozen=True)

    name: str
    target: str
    path: str  # production key, relative to the distribution root
    size: int
    sha256: str
    signature_path: str
    signature_key_id: str
    signature: str


class Manifest(BaseModel):
    """A release's full artifact listing plus channel metadata."""

    model_config = ConfigDict(frozen=True)

    schema_version: str = MANIFEST_SCHEMA_VERSION
    channel: str
    release: str
    version: str
    date: str | None = None
    components: list[str] = []
    artifacts: list[ManifestArtifact] = []

    def artifact(self, name: str, target: str) -> ManifestArtifact | None:
        """Return the entry for (*name*, *target*), or None."""
        for entry in self.artifacts:
            if entry.name == name and entry.target == target:
                return entry
        return None
