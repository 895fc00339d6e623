"""Signer: detached Ed25519 signatures for artifacts and manifests.

An artifact signature covers a canonical JSON payload that binds the
artifact's identity to its verified digest::

    {"kind": "artifact", "name": ..., "sha256": ..., "size": ..., "target": ...}

so signing never re-reads the archive.  A manifest signature covers the
exact manifest bytes.

Signing is idempotent: when production already holds a detached signature
by the configured key for the same payload, and it verifies, it is reused.
Signatures are stored per key id, so a new key never replaces an old one.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from functools import partial

from pydantic import ValidationError

from promote_release.core.hasher import canonical_json_bytes, document_json_bytes, sha256_hex
from promote_release.core.retry import RetryPolicy
from promote_release.errors import IncompleteRelease, ObjectNotFoundError
from promote_release.models.artifacts import Artifact, Signature, SignedKind
from promote_release.signing.backend import SigningBackend
from promote_release.signing.crypto import SIGNATURE_ALGORITHM
from promote_release.storage.base import ObjectStore
from promote_release.storage.layout import StoreLayout

logger = logging.getLogger(__name__)


def artifact_payload(artifact: Artifact) -> bytes:
    """Canonical bytes an artifact signature covers."""
    return canonical_json_bytes(
        {
            "kind": SignedKind.ARTIFACT.value,
            "name": artifact.name,
            "target": artifact.target,
            "sha256": artifact.sha256,
            "size": artifact.size_bytes,
        }
    )


def signature_document(signature: Signature) -> bytes:
    """Serialized form of a detached ``.sig`` file."""
    return document_json_bytes(signature.model_dump(mode="json"))


def parse_signature(data: bytes) -> Signature | None:
    """Parse a detached signature file, or None if it is not one."""
    try:
        return Signature.model_validate(json.loads(data))
    except (ValueError, ValidationError):
        return None


class Signer:
    """Produces or reuses detached signatures.

    Parameters
    ----------
    backend:
        Signing backend holding the key.
    production:
        Production store, consulted for existing signatures.  May be None,
        in which case every call signs.
    layout:
        Key layout used to find existing signatures.
    retry:
        Policy for ``SigningUnavailable`` and transient store reads.
    """

    def __init__(
        self,
        backend: SigningBackend,
        production: ObjectStore | None = None,
        layout: StoreLayout | None = None,
        *,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._backend = backend
        self._production = production
        self._layout = layout or StoreLayout()
        self._retry = retry or RetryPolicy()
        self.reused = 0
        self.signed = 0

    @property
    def key_id(self) -> str:
        return self._backend.key_id

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def sign_artifact(
        self, artifact: Artifact, channel: str, *, release: str | None = None
    ) -> Artifact:
        """Return a copy of *artifact* carrying its signature.

        Raises ``IncompleteRelease`` for an artifact that was never verified.
        """
        if not artifact.verified:
            raise IncompleteRelease(release or "", [artifact.file_name])

        signature = self._sign(
            artifact_payload(artifact),
            kind=SignedKind.ARTIFACT,
            subject=artifact.file_name,
            channel=channel,
            existing_key=(
                partial(self._layout.signature_key, channel, release, artifact.file_name)
                if release
                else None
            ),
        )
        return artifact.model_copy(update={"signature": signature})

    def sign_manifest(
        self, manifest_bytes: bytes, channel: str, *, release: str | None = None
    ) -> Signature:
        """Sign the exact bytes of a manifest document."""
        manifest_key = (
            self._layout.manifest_key(channel, release) if release else "manifest.json"
        )
        return self._sign(
            manifest_bytes,
            kind=SignedKind.MANIFEST,
            subject=self._layout.relative(manifest_key),
            channel=channel,
            existing_key=(
                partial(self._layout.manifest_signature_key, channel, release)
                if release
                else None
            ),
        )

    def verify(self, payload: bytes, signature: Signature) -> bool:
        """Check *signature* against *payload* and the configured key."""
        return (
            signature.algorithm == SIGNATURE_ALGORITHM
            and signature.payload_sha256 == sha256_hex(payload)
            and self._backend.verify(payload, signature.value)
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _sign(
        self,
        payload: bytes,
        *,
        kind: SignedKind,
        subject: str,
        channel: str,
        existing_key: Callable[[str], str] | None,
    ) -> Signature:
        self._backend.authorize(channel)
        key_id = self._retry.call(lambda: self._backend.key_id, op="load signing key")
        if existing_key is not None:
            key = existing_key(key_id)
            reusable = self._existing(key, payload, kind, key_id)
            if reusable is not None:
                self.reused += 1
                logger.debug("Reusing signature %s", key)
                return reusable

        value = self._retry.call(
            lambda: self._backend.sign(payload, channel=channel),
            op=f"sign {subject}",
        )
        self.signed += 1
        return Signature(
            kind=kind,
            subject=subject,
            algorithm=SIGNATURE_ALGORITHM,
            key_id=key_id,
            value=value,
            payload_sha256=sha256_hex(payload),
        )

    def _existing(
        self, key: str, payload: bytes, kind: SignedKind, key_id: str
    ) -> Signature | None:
        if self._production is None:
            return None
        try:
            _, raw = self._retry.call(lambda: self._production.fetch(key), op=f"get {key}")
        except ObjectNotFoundError:
            return None
        signature = parse_signature(raw)
        if signature is None:
            logger.warning("Ignoring unparseable signature file %s", key)
            return None
        if signature.kind != kind or signature.key_id != key_id:
            return None
        if not self.verify(payload, signature):
            logger.warning("Existing signature %s does not verify; re-signing", key)
            return None
        return signature
