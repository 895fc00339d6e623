"""Post-deploy check of a live channel.

Walks everything an installer would touch: the pointer, the manifest and
its signature, and every artifact with its detached signature.  Problems
are collected into a report rather than raised, so one run shows them all.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from promote_release.core.hasher import sha256_hex
from promote_release.core.manifest_builder import ManifestBuilder
from promote_release.core.publisher import Publisher
from promote_release.core.retry import RetryPolicy
from promote_release.core.signer import Signer, artifact_payload, parse_signature
from promote_release.core.verifier import measure_object
from promote_release.errors import NotFound, ObjectNotFoundError
from promote_release.models.artifacts import Artifact, SignedKind
from promote_release.models.manifest import ManifestArtifact
from promote_release.models.reports import ArtifactCheck, ChannelVerificationReport
from promote_release.storage.base import ObjectStore
from promote_release.storage.layout import StoreLayout, signature_suffix

logger = logging.getLogger(__name__)


class ChannelVerifier:
    """Re-checks a published channel against its own manifest.

    Parameters
    ----------
    production:
        The production store.
    publisher:
        Used to read the channel pointer.
    signer:
        Used to check signatures under the configured public key.
    layout:
        Key layout.
    retry:
        Policy for transient store failures.
    """

    def __init__(
        self,
        production: ObjectStore,
        publisher: Publisher,
        signer: Signer,
        layout: StoreLayout | None = None,
        *,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._production = production
        self._publisher = publisher
        self._signer = signer
        self._layout = layout or StoreLayout()
        self._retry = retry or RetryPolicy()

    def _full_key(self, relative_path: str) -> str:
        prefix = self._layout.production_prefix.strip("/")
        return f"{prefix}/{relative_path}" if prefix else relative_path

    def _read(self, key: str) -> bytes | None:
        try:
            _, data = self._retry.call(lambda: self._production.fetch(key), op=f"get {key}")
        except ObjectNotFoundError:
            return None
        return data

    def verify(self, channel: str) -> ChannelVerificationReport:
        """Check the release *channel* currently points at.

        Raises ``NotFound`` if the channel has never been published.
        """
        observed = self._publisher.read_pointer(channel)
        pointer = observed.pointer
        if pointer is None:
            raise NotFound(channel, detail="channel has no published pointer")

        report = {
            "channel": channel,
            "release": pointer.release,
            "version": pointer.version,
            "manifest_key": pointer.manifest_key,
        }
        problems: list[str] = []

        manifest_bytes = self._read(pointer.manifest_key)
        if manifest_bytes is None:
            problems.append(f"manifest {pointer.manifest_key} is missing")
            return ChannelVerificationReport(**report, problems=problems)

        manifest_ok = sha256_hex(manifest_bytes) == pointer.manifest_sha256
        if not manifest_ok:
            problems.append("manifest sha256 does not match the channel pointer")

        manifest_signature_ok = False
        sig_bytes = self._read(pointer.manifest_signature_key)
        signature = parse_signature(sig_bytes) if sig_bytes is not None else None
        if signature is None:
            problems.append("manifest signature is missing or unreadable")
        else:
            manifest_signature_ok = signature.kind == SignedKind.MANIFEST and self._signer.verify(
                manifest_bytes, signature
            )
            if not manifest_signature_ok:
                problems.append("manifest signature does not verify")

        try:
            manifest = ManifestBuilder.parse(manifest_bytes)
        except (ValueError, ValidationError) as exc:
            problems.append(f"manifest is malformed: {exc}")
            return ChannelVerificationReport(
                **report,
                manifest_ok=False,
                manifest_signature_ok=manifest_signature_ok,
                problems=problems,
            )

        if manifest.release != pointer.release or manifest.channel != channel:
            problems.append(
                f"manifest describes {manifest.channel}/{manifest.release}, "
                f"pointer says {channel}/{pointer.release}"
            )

        key_id = self._signer.key_id
        checks = [self._check_artifact(entry, key_id) for entry in manifest.artifacts]
        failed = sum(1 for c in checks if not c.ok)
        logger.info(
            "Verified channel %s at %s: %d artifact(s), %d failing",
            channel,
            pointer.release,
            len(checks),
            failed,
        )
        return ChannelVerificationReport(
            **report,
            manifest_ok=manifest_ok,
            manifest_signature_ok=manifest_signature_ok,
            artifacts=checks,
            problems=problems,
        )

    def _check_artifact(self, entry: ManifestArtifact, key_id: str) -> ArtifactCheck:
        problems: list[str] = []
        key = self._full_key(entry.path)

        checksum_ok = False
        try:
            digest, size = measure_object(self._production, key, retry=self._retry)
        except ObjectNotFoundError:
            problems.append("artifact is missing")
        else:
            checksum_ok = digest == entry.sha256 and size == entry.size
            if not checksum_ok:
                problems.append(f"checksum mismatch: sha256 {digest}, {size} bytes")

        payload = artifact_payload(
            Artifact(
                name=entry.name,
                target=entry.target,
                file_name=entry.path.rsplit("/", 1)[-1],
                staging_key="",
                size_bytes=entry.size,
                sha256=entry.sha256,
            )
        )
        # Releases sealed under an earlier key carry the current key's
        # signature next to the one the manifest names.
        if entry.signature_key_id == key_id:
            sig_key, expected_value = self._full_key(entry.signature_path), entry.signature
        else:
            sig_key, expected_value = self._full_key(entry.path) + signature_suffix(key_id), None

        signature_ok = False
        sig_bytes = self._read(sig_key)
        signature = parse_signature(sig_bytes) if sig_bytes is not None else None
        if signature is None:
            problems.append("detached signature is missing or unreadable")
        elif expected_value is not None and signature.value != expected_value:
            problems.append("detached signature differs from the manifest")
        else:
            signature_ok = self._signer.verify(payload, signature)
            if not signature_ok:
                problems.append("signature does not verify")

        return ArtifactCheck(
            name=entry.name,
            target=entry.target,
            path=entry.path,
            checksum_ok=checksum_ok,
            signature_ok=signature_ok,
            problems=problems,
        )
