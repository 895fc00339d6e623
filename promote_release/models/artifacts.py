"""Artifact and signature models.

Artifacts are immutable: verification and signing return updated copies
(``model_copy``) rather than mutating the staged record.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class SignedKind(str, Enum):
    """What a signature covers."""

    ARTIFACT = "artifact"
    MANIFEST = "manifest"


class Signature(BaseModel):
    """A detached Ed25519 signature plus the key that produced it.

    ``payload_sha256`` is the digest of the exact bytes that were signed, so
    a stored signature can be matched against new content without re-signing.
    """

    model_config = ConfigDict(frozen=True)

    kind: SignedKind
    subject: str  # artifact file name or manifest key
    algorithm: str = "ed25519"
    key_id: str
    value: str  # hex-encoded signature
    payload_sha256: str


class Artifact(BaseModel):
    """A single staged toolchain component archive.

    ``sha256`` and ``size_bytes`` are the values *declared* by the staging
    store.  ``verified`` flips to True only once the Integrity Verifier has
    streamed the bytes and matched both.
    """

    model_config = ConfigDict(frozen=True)

    name: str  # component, e.g. "rustc"
    target: str  # platform triple, e.g. "x86_64-unknown-linux-gnu"
    file_name: str  # e.g. "rustc-x86_64-unknown-linux-gnu.tar.gz"
    staging_key: str
    size_bytes: int
    sha256: str
    verified: bool = False
    signature: Signature | None = None

    @property
    def is_signed(self) -> bool:
        return self.signature is not None
