"""Signing backends.

``SigningBackend`` is what the Signer talks to.  ``LocalKeyBackend`` holds
an Ed25519 key loaded from configuration (hex seed) or from a key file.

Failure mapping
---------------
- Key not configured, key file missing/unreadable, malformed key:
  ``SigningUnavailable`` (retryable; a key file on a mounted secret volume
  may appear late).
- Loaded key does not match the expected public key, or the channel is not
  permitted for this key: ``SigningRejected`` (fatal).
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from promote_release.errors import SigningRejected, SigningUnavailable
from promote_release.signing.crypto import (
    key_fingerprint,
    public_key_for,
    sign_data,
    verify_data,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class SigningBackend(Protocol):
    """Produces and checks detached signatures."""

    @property
    def key_id(self) -> str:
        """Fingerprint of the public key signatures verify under."""
        ...

    @property
    def public_key(self) -> str:
        ...

    def authorize(self, channel: str) -> None:
        """Raise ``SigningRejected`` if *channel* may not be signed for."""
        ...

    def sign(self, payload: bytes, *, channel: str) -> str:
        """Return a hex signature over *payload* for *channel*."""
        ...

    def verify(self, payload: bytes, signature: str) -> bool:
        ...


class LocalKeyBackend:
    """Ed25519 signing with a locally held key.

    The key is loaded lazily on first use and cached.  Verification only
    needs the public key, so ``verify()`` works even when the private key
    is unavailable as long as ``expected_public_key`` is set.

    Parameters
    ----------
    private_key:
        Hex-encoded 32-byte seed.  Takes precedence over *key_path*.
    key_path:
        File containing the hex seed (surrounding whitespace ignored).
    expected_public_key:
        If set, the loaded key must derive to this public key.
    allowed_channels:
        If non-empty, only these channels may be signed for.
    """

    def __init__(
        self,
        private_key: str = "",
        key_path: Path | None = None,
        expected_public_key: str = "",
        allowed_channels: list[str] | None = None,
    ) -> None:
        self._private_key = private_key.strip()
        self._key_path = Path(key_path) if key_path else None
        self._expected_public_key = expected_public_key.strip().lower()
        self._allowed_channels = list(allowed_channels or [])
        self._loaded: tuple[str, str] | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg) -> LocalKeyBackend:
        return cls(
            private_key=cfg.signing_key,
            key_path=cfg.signing_key_path,
            expected_public_key=cfg.signing_public_key,
            allowed_channels=cfg.signing_allowed_channels,
        )

    # ------------------------------------------------------------------
    # Key loading
    # ------------------------------------------------------------------

    def _read_seed(self) -> str:
        if self._private_key:
            return self._private_key
        if self._key_path is None:
            raise SigningUnavailable(
                "No signing key configured; set PROMOTE_RELEASE_SIGNING_KEY "
                "or PROMOTE_RELEASE_SIGNING_KEY_PATH"
            )
        try:
            return self._key_path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise SigningUnavailable(
                f"Cannot read signing key {self._key_path}: {exc}"
            ) from exc

    def _load(self) -> tuple[str, str]:
        with self._lock:
            if self._loaded is not None:
                return self._loaded
            seed = self._read_seed()
            try:
                public = public_key_for(seed)
            except ValueError as exc:
                raise SigningUnavailable(str(exc)) from exc
            if self._expected_public_key and public != self._expected_public_key:
                logger.error(
                    "Signing key %s does not match expected key %s",
                    key_fingerprint(public),
                    key_fingerprint(self._expected_public_key),
                )
                raise SigningRejected(
                    "Loaded signing key does not match the configured public key"
                )
            self._loaded = (seed, public)
            logger.info("Loaded signing key %s", key_fingerprint(public))
            return self._loaded

    # ------------------------------------------------------------------
    # SigningBackend
    # ------------------------------------------------------------------

    @property
    def public_key(self) -> str:
        if self._expected_public_key:
            return self._expected_public_key
        return self._load()[1]

    @property
    def key_id(self) -> str:
        return key_fingerprint(self.public_key)

    def authorize(self, channel: str) -> None:
        if self._allowed_channels and channel not in self._allowed_channels:
            raise SigningRejected(
                f"Signing key is not permitted for channel {channel!r}"
            )

    def sign(self, payload: bytes, *, channel: str) -> str:
        self.authorize(channel)
        seed, _ = self._load()
        return sign_data(payload, seed)

    def verify(self, payload: bytes, signature: str) -> bool:
        return verify_data(payload, signature, self.public_key)
