"""Ed25519 signing for release artifacts and manifests."""

from promote_release.signing.backend import LocalKeyBackend, SigningBackend
from promote_release.signing.crypto import (
    SIGNATURE_ALGORITHM,
    generate_keypair,
    key_fingerprint,
    public_key_for,
    sign_data,
    verify_data,
)

__all__ = [
    "SIGNATURE_ALGORITHM",
    "LocalKeyBackend",
    "SigningBackend",
    "generate_keypair",
    "key_fingerprint",
    "public_key_for",
    "sign_data",
    "verify_data",
]
