"""Manifest Builder: the per-release document installers fetch first.

Output is deterministic.  Entries are sorted by (name, target, path), keys
are sorted, and there are no wall-clock fields, so building twice from the
same verified and signed artifacts yields byte-identical documents.
"""

from __future__ import annotations

import json
import logging

from pydantic import BaseModel, ConfigDict

from promote_release.core.hasher import document_json_bytes, sha256_hex
from promote_release.errors import IncompleteRelease, IntegrityViolation
from promote_release.models.artifacts import Artifact
from promote_release.models.manifest import Manifest, ManifestArtifact
from promote_release.models.release import ReleaseCandidate
from promote_release.storage.layout import MANIFEST_NAME, StoreLayout

logger = logging.getLogger(__name__)


class BuiltManifest(BaseModel):
    """A manifest together with its serialized bytes and their digest."""

    model_config = ConfigDict(frozen=True)

    manifest: Manifest
    data: bytes
    sha256: str


class ManifestBuilder:
    """Builds and parses manifest documents.

    Parameters
    ----------
    layout:
        Key layout; manifest paths are relative to the production prefix.
    """

    def __init__(self, layout: StoreLayout | None = None) -> None:
        self._layout = layout or StoreLayout()

    def build(self, candidate: ReleaseCandidate, artifacts: list[Artifact]) -> BuiltManifest:
        """Build the manifest for *candidate* from verified, signed *artifacts*.

        Raises
        ------
        IncompleteRelease
            Any artifact is unverified or unsigned, or the list is empty.
        """
        missing = sorted(
            a.file_name for a in artifacts if not a.verified or a.signature is None
        )
        if missing or not artifacts:
            raise IncompleteRelease(candidate.release, missing or ["<no artifacts>"])

        channel, release = candidate.channel, candidate.release
        entries = [
            ManifestArtifact(
                name=a.name,
                target=a.target,
                path=self._layout.relative(
                    self._layout.artifact_key(channel, release, a.file_name)
                ),
                size=a.size_bytes,
                sha256=a.sha256,
                signature_path=self._layout.relative(
                    self._layout.signature_key(channel, release, a.file_name, a.signature.key_id)
                ),
                signature_key_id=a.signature.key_id,
                signature=a.signature.value,
            )
            for a in artifacts
        ]
        entries.sort(key=lambda e: (e.name, e.target, e.path))

        manifest = Manifest(
            channel=channel,
            release=release,
            version=candidate.version,
            date=candidate.date,
            components=sorted({a.name for a in artifacts}),
            artifacts=entries,
        )
        data = self.serialize(manifest)
        digest = sha256_hex(data)
        logger.info(
            "Built manifest for %s/%s: %d artifact(s), sha256 %s",
            channel,
            release,
            len(entries),
            digest,
        )
        return BuiltManifest(manifest=manifest, data=data, sha256=digest)

    @staticmethod
    def serialize(manifest: Manifest) -> bytes:
        return document_json_bytes(manifest.model_dump(mode="json"))

    @staticmethod
    def parse(data: bytes) -> Manifest:
        """Read a published manifest back.  Raises ``ValueError`` if malformed."""
        return Manifest.model_validate(json.loads(data))

    def reconcile(self, built: BuiltManifest, published: bytes) -> BuiltManifest:
        """Settle on the manifest of a release that is already sealed.

        The published bytes win: a sealed release keeps its manifest even
        when this run signs with another key.  They are only accepted if
        they list exactly the artifacts this run verified.

        Raises
        ------
        IntegrityViolation
            The published manifest is unreadable or describes different
            artifacts.
        """
        if published == built.data:
            return built
        channel, release = built.manifest.channel, built.manifest.release
        try:
            existing = self.parse(published)
        except ValueError as exc:
            raise IntegrityViolation(
                MANIFEST_NAME,
                reason=f"published manifest of {channel}/{release} is malformed: {exc}",
            ) from exc
        if _contents(existing) != _contents(built.manifest):
            raise IntegrityViolation(
                MANIFEST_NAME,
                reason=(
                    f"{channel}/{release} is already published with different "
                    "contents; publish a new release instead"
                ),
            )
        digest = sha256_hex(published)
        logger.info("Keeping the published manifest of %s/%s (sha256 %s)", channel, release, digest)
        return BuiltManifest(manifest=existing, data=published, sha256=digest)


def _contents(manifest: Manifest) -> tuple:
    return (
        manifest.channel,
        manifest.release,
        sorted((a.name, a.target, a.path, a.size, a.sha256) for a in manifest.artifacts),
    )
