"""Publisher: copies a release into production and cuts the channel over.

Write order
-----------
1. every artifact, its ``.sha256`` sidecar and its ``.{key_id}.sig``
2. ``manifest.json`` and ``manifest.json.{key_id}.sig``
3. the channel pointer (cutover)

Artifacts are written under a release-scoped prefix nobody references
until cutover, so a run that stops anywhere before step 3 leaves the live
channel untouched.  Each step skips objects already present with the
expected bytes, so a rerun after a partial publish resumes where the last
one stopped.

Once ``manifest.json`` exists the release is sealed: later runs only add
objects that are missing (a new key's signatures, a lost file) and refuse
to replace anything already there.

Archives are copied server-side when both stores allow it and streamed
otherwise; they are never buffered whole.

Cutover is the only write that changes what installers see.  It is a
compare-and-swap on the pointer's ETag: the write only lands if the pointer
is still the one observed when the run started.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections.abc import Iterator

from pydantic import ValidationError

from promote_release.core.hasher import document_json_bytes
from promote_release.core.manifest_builder import BuiltManifest
from promote_release.core.retry import RetryPolicy
from promote_release.core.signer import signature_document
from promote_release.core.verifier import measure_object
from promote_release.errors import (
    CutoverConflict,
    IntegrityViolation,
    ObjectNotFoundError,
    PreconditionFailedError,
    PromotionError,
    RunCancelled,
)
from promote_release.models.artifacts import Artifact, Signature
from promote_release.models.channels import ChannelPointer, ObservedPointer
from promote_release.models.reports import PublishResult
from promote_release.storage.base import DEFAULT_CHUNK_SIZE, ObjectStore
from promote_release.storage.layout import StoreLayout

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
ARCHIVE_CONTENT_TYPE = "application/octet-stream"


def checksum_document(sha256: str, file_name: str) -> bytes:
    """``sha256sum``-compatible sidecar contents."""
    return f"{sha256}  {file_name}\n".encode("utf-8")


class Publisher:
    """Writes releases to the production store.

    Parameters
    ----------
    staging:
        Store artifacts are copied from.
    production:
        Store artifacts are copied to.
    layout:
        Key layout for both stores.
    retry:
        Policy for transient store failures.
    chunk_size:
        Stream chunk size used when copying and re-verifying.
    """

    def __init__(
        self,
        staging: ObjectStore,
        production: ObjectStore,
        layout: StoreLayout | None = None,
        *,
        retry: RetryPolicy | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._staging = staging
        self._production = production
        self._layout = layout or StoreLayout()
        self._retry = retry or RetryPolicy()
        self._chunk_size = chunk_size

    def _read(self, key: str) -> bytes | None:
        try:
            _, data = self._retry.call(lambda: self._production.fetch(key), op=f"get {key}")
        except ObjectNotFoundError:
            return None
        return data

    # ------------------------------------------------------------------
    # Pointer
    # ------------------------------------------------------------------

    def read_pointer(self, channel: str) -> ObservedPointer:
        """Read the channel pointer and its version token in one request.

        A missing pointer yields ``ObservedPointer(pointer=None, etag=None)``.
        """
        key = self._layout.pointer_key(channel)
        try:
            info, raw = self._retry.call(lambda: self._production.fetch(key), op=f"get {key}")
        except ObjectNotFoundError:
            return ObservedPointer(channel=channel)
        try:
            pointer = ChannelPointer.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as exc:
            raise PromotionError(f"Channel pointer {key} is malformed: {exc}") from exc
        return ObservedPointer(channel=channel, pointer=pointer, etag=info.etag)

    @staticmethod
    def pointer_document(pointer: ChannelPointer) -> bytes:
        return document_json_bytes(pointer.model_dump(mode="json"))

    def published_manifest(self, channel: str, release: str) -> bytes | None:
        """Bytes of the release's manifest if the release is already sealed."""
        return self._read(self._layout.manifest_key(channel, release))

    # ------------------------------------------------------------------
    # Publish (everything but the pointer)
    # ------------------------------------------------------------------

    def publish(
        self,
        channel: str,
        release: str,
        artifacts: list[Artifact],
        built: BuiltManifest,
        manifest_signature: Signature,
        *,
        cancel: threading.Event | None = None,
    ) -> PublishResult:
        """Copy artifacts, sidecars, signatures and the manifest.

        Raises
        ------
        IntegrityViolation
            Staging bytes changed since verification, a production copy
            did not read back with the expected checksum, or an object of a
            sealed release differs from what this run would write.
        RunCancelled
            *cancel* was set between two artifacts.
        """
        writes = skipped = 0
        keys: list[str] = []
        manifest_key = self._layout.manifest_key(channel, release)
        sealed = (
            self._retry.call(lambda: self._production.head(manifest_key), op=f"head {manifest_key}")
            is not None
        )
        if sealed:
            logger.info("%s/%s is already sealed; adding missing objects only", channel, release)

        for artifact in artifacts:
            if cancel is not None and cancel.is_set():
                raise RunCancelled(f"Cancelled while publishing {channel}/{release}")
            if artifact.signature is None:
                raise PromotionError(f"{artifact.file_name} reached publishing unsigned")

            key = self._layout.artifact_key(channel, release, artifact.file_name)
            wrote = self.copy_artifact(artifact, key, immutable=sealed)
            writes, skipped = writes + wrote, skipped + (not wrote)
            keys.append(key)

            for sidecar_key, data, content_type in (
                (
                    self._layout.checksum_key(channel, release, artifact.file_name),
                    checksum_document(artifact.sha256, artifact.file_name),
                    TEXT_CONTENT_TYPE,
                ),
                (
                    self._layout.signature_key(
                        channel, release, artifact.file_name, artifact.signature.key_id
                    ),
                    signature_document(artifact.signature),
                    JSON_CONTENT_TYPE,
                ),
            ):
                wrote = self.put_if_changed(
                    sidecar_key, data, content_type=content_type, immutable=sealed
                )
                writes, skipped = writes + wrote, skipped + (not wrote)
                keys.append(sidecar_key)

        wrote = self.put_if_changed(
            manifest_key, built.data, content_type=JSON_CONTENT_TYPE, immutable=sealed
        )
        writes, skipped = writes + wrote, skipped + (not wrote)
        if wrote:
            self._verify_copy(manifest_key, built.sha256, len(built.data), label="manifest.json")
        keys.append(manifest_key)

        sig_key = self._layout.manifest_signature_key(channel, release, manifest_signature.key_id)
        wrote = self.put_if_changed(
            sig_key,
            signature_document(manifest_signature),
            content_type=JSON_CONTENT_TYPE,
            immutable=sealed,
        )
        writes, skipped = writes + wrote, skipped + (not wrote)
        keys.append(sig_key)

        logger.info(
            "Published %s/%s: %d write(s), %d skipped", channel, release, writes, skipped
        )
        return PublishResult(writes=writes, skipped=skipped, keys=keys)

    def copy_artifact(self, artifact: Artifact, dest_key: str, *, immutable: bool = False) -> bool:
        """Copy one artifact and re-verify the copy.

        Returns True if a write happened, False if production already held
        the same bytes.  With *immutable*, a different object already at
        *dest_key* is an ``IntegrityViolation`` rather than something to
        replace.
        """
        if self._matches(dest_key, artifact.sha256, artifact.size_bytes):
            logger.debug("Skipping %s: already published", dest_key)
            return False
        if immutable and self._retry.call(
            lambda: self._production.head(dest_key), op=f"head {dest_key}"
        ) is not None:
            raise IntegrityViolation(
                artifact.file_name,
                reason=f"{dest_key} belongs to a published release and differs from the "
                "verified artifact; publish a new release instead",
            )

        src = artifact.staging_key
        metadata = {"sha256": artifact.sha256, "size": str(artifact.size_bytes)}
        try:
            copied = self._retry.call(
                lambda: self._production.server_copy(
                    self._staging,
                    src,
                    dest_key,
                    metadata=metadata,
                    content_type=ARCHIVE_CONTENT_TYPE,
                ),
                op=f"copy {src}",
            )
            if copied is None:
                digest, size = self._retry.call(
                    lambda: self._stream_copy(src, dest_key, metadata), op=f"put {dest_key}"
                )
                if digest != artifact.sha256 or size != artifact.size_bytes:
                    self._retry.call(
                        lambda: self._production.delete(dest_key), op=f"delete {dest_key}"
                    )
                    raise IntegrityViolation(
                        artifact.file_name,
                        reason=(
                            f"staging bytes changed since verification "
                            f"(sha256 {digest}, {size} bytes)"
                        ),
                    )
        except ObjectNotFoundError:
            raise IntegrityViolation(
                artifact.file_name, reason="object missing from staging"
            ) from None

        self._verify_copy(dest_key, artifact.sha256, artifact.size_bytes, label=artifact.file_name)
        return True

    def _stream_copy(self, src: str, dest_key: str, metadata: dict[str, str]) -> tuple[str, int]:
        """Stream *src* into production, hashing the bytes on the way through."""
        h = hashlib.sha256()
        size = 0

        def chunks() -> Iterator[bytes]:
            nonlocal size
            for chunk in self._staging.iter_chunks(src, self._chunk_size):
                h.update(chunk)
                size += len(chunk)
                yield chunk

        self._production.put_stream(
            dest_key, chunks(), metadata=metadata, content_type=ARCHIVE_CONTENT_TYPE
        )
        return h.hexdigest(), size

    def put_if_changed(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str = JSON_CONTENT_TYPE,
        immutable: bool = False,
    ) -> bool:
        """Write a small object unless production already holds these bytes.

        With *immutable*, the write only lands on an absent key and
        different bytes already there raise ``IntegrityViolation``.
        """
        current = self._read(key)
        if current == data:
            return False
        if not immutable:
            self._retry.call(
                lambda: self._production.put(key, data, content_type=content_type),
                op=f"put {key}",
            )
            return True

        if current is None:
            try:
                self._retry.call(
                    lambda: self._production.put(
                        key, data, content_type=content_type, if_none_match=True
                    ),
                    op=f"put {key}",
                )
                return True
            except PreconditionFailedError:
                # A retried write that already landed
                current = self._read(key)
                if current == data:
                    return False
        raise IntegrityViolation(
            key.rsplit("/", 1)[-1],
            reason=f"{key} belongs to a published release and holds different bytes; "
            "publish a new release instead",
        )

    def _matches(self, key: str, sha256: str, size: int) -> bool:
        info = self._retry.call(lambda: self._production.head(key), op=f"head {key}")
        if info is None or info.size != size:
            return False
        try:
            digest, measured = measure_object(
                self._production, key, retry=self._retry, chunk_size=self._chunk_size
            )
        except ObjectNotFoundError:
            return False
        return digest == sha256 and measured == size

    def _verify_copy(self, key: str, sha256: str, size: int, *, label: str) -> None:
        try:
            digest, measured = measure_object(
                self._production, key, retry=self._retry, chunk_size=self._chunk_size
            )
        except ObjectNotFoundError:
            raise IntegrityViolation(label, reason=f"{key} missing right after write") from None
        if digest == sha256 and measured == size:
            return
        logger.error("Corrupt copy at %s (sha256 %s); deleting", key, digest)
        self._retry.call(lambda: self._production.delete(key), op=f"delete {key}")
        raise IntegrityViolation(
            label,
            reason=f"in-transit corruption: expected sha256 {sha256}, production has {digest}",
        )

    # ------------------------------------------------------------------
    # Cutover
    # ------------------------------------------------------------------

    def cutover(self, pointer: ChannelPointer, observed: ObservedPointer) -> None:
        """Point the channel at the new release.

        Raises ``CutoverConflict`` if the pointer is no longer the one
        *observed* at discovery.  The previous pointer is never overwritten
        in that case.
        """
        channel = pointer.channel
        key = self._layout.pointer_key(channel)

        current = self._retry.call(lambda: self._production.head(key), op=f"head {key}")
        current_etag = current.etag if current is not None else None
        if current_etag != observed.etag:
            raise CutoverConflict(channel, observed.release, self.read_pointer(channel).release)

        data = self.pointer_document(pointer)

        def _write() -> None:
            try:
                self._production.put(
                    key,
                    data,
                    content_type=JSON_CONTENT_TYPE,
                    if_match=observed.etag,
                    if_none_match=observed.etag is None,
                )
            except PreconditionFailedError:
                # A retried write that already landed looks like a lost race.
                landed = self.read_pointer(channel).pointer
                if landed is not None and self._same_target(landed, pointer):
                    return
                raise CutoverConflict(
                    channel,
                    observed.release,
                    landed.release if landed is not None else None,
                ) from None

        self._retry.call(_write, op=f"cutover {key}")
        logger.info(
            "Cutover: %s now points at %s (was %s)",
            channel,
            pointer.release,
            observed.release or "<none>",
        )

    @staticmethod
    def _same_target(a: ChannelPointer, b: ChannelPointer) -> bool:
        return a.release == b.release and a.manifest_sha256 == b.manifest_sha256
