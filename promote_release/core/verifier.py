"""Integrity Verifier: streams artifact bytes and checks size and SHA-256.

A mismatch is decided outside the retry loop, so a corrupted artifact is
reported as ``IntegrityViolation`` on the first attempt and never retried.
Only the read itself is retried, and a retried read restarts the stream.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from promote_release.core.hasher import sha256_stream
from promote_release.core.retry import RetryPolicy
from promote_release.errors import IntegrityViolation, ObjectNotFoundError
from promote_release.models.artifacts import Artifact
from promote_release.storage.base import DEFAULT_CHUNK_SIZE, ObjectStore

logger = logging.getLogger(__name__)


def measure_object(
    store: ObjectStore,
    key: str,
    *,
    retry: RetryPolicy,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> tuple[str, int]:
    """Return ``(sha256_hex, size)`` of an object, streaming it once.

    Raises ``ObjectNotFoundError`` if the object is missing.
    """
    return retry.call(
        lambda: sha256_stream(store.iter_chunks(key, chunk_size)),
        op=f"read {store.name}/{key}",
    )


class IntegrityVerifier:
    """Recomputes checksums of staged artifacts.

    Parameters
    ----------
    staging:
        Store the artifacts are read from.
    retry:
        Policy for transient read failures.
    chunk_size:
        Stream chunk size in bytes.
    """

    def __init__(
        self,
        staging: ObjectStore,
        *,
        retry: RetryPolicy | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._staging = staging
        self._retry = retry or RetryPolicy()
        self._chunk_size = chunk_size

    def verify(self, artifact: Artifact) -> Artifact:
        """Return a ``verified=True`` copy of *artifact*.

        Raises
        ------
        IntegrityViolation
            The bytes do not match the declared size or checksum, or the
            object vanished from staging.
        StoreTransientError
            Reads kept failing after the retry budget.
        """
        try:
            digest, size = measure_object(
                self._staging,
                artifact.staging_key,
                retry=self._retry,
                chunk_size=self._chunk_size,
            )
        except ObjectNotFoundError:
            raise IntegrityViolation(
                artifact.file_name, reason="object missing from staging"
            ) from None

        if size != artifact.size_bytes:
            raise IntegrityViolation(
                artifact.file_name,
                reason=f"expected {artifact.size_bytes} bytes, got {size}",
            )
        if digest != artifact.sha256:
            raise IntegrityViolation(
                artifact.file_name, expected=artifact.sha256, actual=digest
            )

        logger.debug("Verified %s (%d bytes, sha256 %s)", artifact.file_name, size, digest)
        return artifact.model_copy(update={"verified": True})

    def verify_all(self, artifacts: Iterable[Artifact]) -> list[Artifact]:
        """Verify every artifact in order; the first failure aborts."""
        verified = [self.verify(a) for a in artifacts]
        logger.info("Verified %d artifact(s)", len(verified))
        return verified
