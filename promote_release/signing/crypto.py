"""Ed25519 primitives over PyNaCl (libsodium).

Keys and signatures travel as hex strings so they can sit in environment
variables, key files and JSON documents unchanged.
"""

from __future__ import annotations

import hashlib
import logging

import nacl.signing
from nacl.exceptions import BadSignatureError, CryptoError

logger = logging.getLogger(__name__)

SIGNATURE_ALGORITHM = "ed25519"


def generate_keypair() -> tuple[str, str]:
    """Generate a signing key-pair.

    Returns
    -------
    tuple[str, str]
        ``(private_key_hex, public_key_hex)``.  The private key is the
        32-byte Ed25519 seed.
    """
    sk = nacl.signing.SigningKey.generate()
    return sk.encode().hex(), sk.verify_key.encode().hex()


def public_key_for(private_key: str) -> str:
    """Derive the hex public key from a hex private key (seed).

    Raises ``ValueError`` if the key is not 32 bytes of valid hex.
    """
    try:
        sk = nacl.signing.SigningKey(bytes.fromhex(private_key.strip()))
    except (ValueError, TypeError, CryptoError) as exc:
        raise ValueError(f"Malformed Ed25519 private key: {exc}") from exc
    return sk.verify_key.encode().hex()


def sign_data(data: bytes, private_key: str) -> str:
    """Sign *data* with *private_key* and return the hex-encoded signature.

    Parameters
    ----------
    data:
        Raw bytes to sign (a canonical signing payload or a manifest).
    private_key:
        Hex-encoded private key (seed) returned by ``generate_keypair()``.

    Returns
    -------
    str
        Hex-encoded signature (128 hex chars = 64 bytes for Ed25519).
        Ed25519 is deterministic: the same key and data always give the
        same signature.
    """
    sk = nacl.signing.SigningKey(bytes.fromhex(private_key.strip()))
    return sk.sign(data).signature.hex()


def verify_data(data: bytes, signature: str, public_key: str) -> bool:
    """Verify that *signature* is valid for *data* under *public_key*.

    Returns ``False`` for an empty or malformed signature or key as well
    as for a cryptographic mismatch.
    """
    if not signature or not public_key:
        return False
    try:
        vk = nacl.signing.VerifyKey(bytes.fromhex(public_key))
        vk.verify(data, bytes.fromhex(signature))
    except BadSignatureError:
        return False
    except (ValueError, TypeError, CryptoError):
        # malformed hex or wrong byte length
        logger.debug("verify_data: malformed signature or public key")
        return False
    return True


def key_fingerprint(public_key: str) -> str:
    """Compute a short fingerprint of a public key.

    Returns the first 16 hex characters of SHA-256(public_key).  Used as
    the key id recorded in signatures and manifests.
    """
    if not public_key:
        return ""
    digest = hashlib.sha256(public_key.encode("utf-8")).hexdigest()
    return digest[:16]
