"""Tests for the Publisher: copy, skip, corruption handling and cutover."""

from __future__ import annotations

import threading
from types import SimpleNamespace

import pytest

from promote_release.core.locator import ArtifactLocator
from promote_release.core.manifest_builder import ManifestBuilder
from promote_release.core.publisher import Publisher, checksum_document
from promote_release.core.signer import Signer
from promote_release.core.verifier import IntegrityVerifier
from promote_release.errors import (
    CutoverConflict,
    IntegrityViolation,
    PreconditionFailedError,
    PromotionError,
    RunCancelled,
)
from promote_release.models.channels import ChannelPointer, ObservedPointer

RELEASE = "2026-10-17"
FILES = ["cargo-x86_64.tar.gz", "rustc-x86_64.tar.gz"]


@pytest.fixture
def publisher(staging_store, production_store, layout, fast_retry) -> Publisher:
    return Publisher(staging_store, production_store, layout, retry=fast_retry, chunk_size=16)


@pytest.fixture
def prepared(stage_release, staging_store, production_store, layout, fast_retry, signing_backend):
    """A located, verified, signed release with its built manifest."""
    stage_release(files=FILES)
    candidate = ArtifactLocator(staging_store, layout, ["nightly"], retry=fast_retry).locate(
        "nightly"
    )
    verified = IntegrityVerifier(staging_store, retry=fast_retry).verify_all(candidate.artifacts)
    signer = Signer(signing_backend, production_store, layout, retry=fast_retry)
    signed = [signer.sign_artifact(a, "nightly", release=RELEASE) for a in verified]
    built = ManifestBuilder(layout).build(candidate, signed)
    manifest_sig = signer.sign_manifest(built.data, "nightly", release=RELEASE)
    return SimpleNamespace(artifacts=signed, built=built, manifest_sig=manifest_sig)


def _pointer(layout, release: str = RELEASE, manifest_sha256: str = "ff" * 32) -> ChannelPointer:
    return ChannelPointer(
        channel="nightly",
        release=release,
        version=release,
        manifest_key=layout.manifest_key("nightly", release),
        manifest_sha256=manifest_sha256,
        manifest_signature_key=layout.manifest_signature_key("nightly", release, "0" * 16),
    )


def _publish(publisher, prepared, **kwargs):
    return publisher.publish(
        "nightly", RELEASE, prepared.artifacts, prepared.built, prepared.manifest_sig, **kwargs
    )


class TestPublish:
    def test_writes_every_object(self, publisher, prepared, production_store, layout):
        result = _publish(publisher, prepared)
        # 2 artifacts x (archive, .sha256, .sig) + manifest + manifest.sig
        assert result.writes == 8
        assert result.skipped == 0
        assert len(result.keys) == 8
        for name in FILES:
            assert production_store.inner.head(layout.artifact_key("nightly", RELEASE, name))
        assert production_store.inner.get(layout.manifest_key("nightly", RELEASE)) == prepared.built.data

    def test_sidecar_is_sha256sum_format(self, publisher, prepared, production_store, layout):
        _publish(publisher, prepared)
        artifact = prepared.artifacts[0]
        sidecar = production_store.inner.get(
            layout.checksum_key("nightly", RELEASE, artifact.file_name)
        )
        assert sidecar == checksum_document(artifact.sha256, artifact.file_name)
        assert sidecar.decode().split() == [artifact.sha256, artifact.file_name]

    def test_republish_writes_nothing(self, publisher, prepared, production_store):
        _publish(publisher, prepared)
        before = production_store.writes
        result = _publish(publisher, prepared)
        assert result.writes == 0
        assert result.skipped == 8
        assert production_store.writes == before

    def test_does_not_touch_pointer(self, publisher, prepared, production_store, layout):
        _publish(publisher, prepared)
        assert production_store.inner.head(layout.pointer_key("nightly")) is None

    def test_cancel_before_first_artifact(self, publisher, prepared, production_store):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(RunCancelled):
            _publish(publisher, prepared, cancel=cancel)
        assert production_store.writes == 0

    def test_unsigned_artifact_refused(self, publisher, prepared):
        unsigned = [a.model_copy(update={"signature": None}) for a in prepared.artifacts]
        with pytest.raises(PromotionError, match="unsigned"):
            publisher.publish(
                "nightly", RELEASE, unsigned, prepared.built, prepared.manifest_sig
            )


class TestIntegrity:
    def test_staging_changed_after_verification(
        self, publisher, prepared, staging_store, production_store, layout
    ):
        artifact = prepared.artifacts[0]
        staging_store.inner.put(artifact.staging_key, b"swapped after verification")
        with pytest.raises(IntegrityViolation, match="staging bytes changed"):
            _publish(publisher, prepared)
        key = layout.artifact_key("nightly", RELEASE, artifact.file_name)
        assert production_store.inner.head(key) is None
        assert key in production_store.deletes

    def test_in_transit_corruption_is_removed(
        self, publisher, prepared, production_store, layout
    ):
        production_store.corrupt("rustc-x86_64.tar.gz")
        with pytest.raises(IntegrityViolation, match="in-transit corruption"):
            _publish(publisher, prepared)
        key = layout.artifact_key("nightly", RELEASE, "rustc-x86_64.tar.gz")
        assert key in production_store.deletes
        assert production_store.inner.head(key) is None

    def test_partial_copy_is_replaced(self, publisher, prepared, production_store, layout):
        artifact = prepared.artifacts[0]
        key = layout.artifact_key("nightly", RELEASE, artifact.file_name)
        production_store.inner.put(key, b"truncated")
        _publish(publisher, prepared)
        assert len(production_store.inner.get(key)) == artifact.size_bytes

    def test_transient_put_is_retried(self, publisher, prepared, production_store):
        production_store.fail("put", match="cargo-x86_64.tar.gz", times=2)
        assert _publish(publisher, prepared).writes == 8


class TestReadPointer:
    def test_absent(self, publisher):
        observed = publisher.read_pointer("nightly")
        assert observed.pointer is None
        assert observed.etag is None

    def test_malformed(self, publisher, production_store, layout):
        production_store.inner.put(layout.pointer_key("nightly"), b"garbage")
        with pytest.raises(PromotionError, match="malformed"):
            publisher.read_pointer("nightly")


class TestCutover:
    def test_first_cutover(self, publisher, layout):
        publisher.cutover(_pointer(layout), ObservedPointer(channel="nightly"))
        observed = publisher.read_pointer("nightly")
        assert observed.release == RELEASE
        assert observed.etag

    def test_cutover_over_previous(self, publisher, layout):
        publisher.cutover(_pointer(layout, "2026-10-16"), ObservedPointer(channel="nightly"))
        observed = publisher.read_pointer("nightly")
        publisher.cutover(_pointer(layout), observed)
        assert publisher.read_pointer("nightly").release == RELEASE

    def test_pointer_moved_since_discovery(self, publisher, production_store, layout):
        observed = publisher.read_pointer("nightly")
        production_store.inner.put(
            layout.pointer_key("nightly"),
            Publisher.pointer_document(_pointer(layout, "2026-10-18")),
        )
        with pytest.raises(CutoverConflict, match="2026-10-18"):
            publisher.cutover(_pointer(layout), observed)
        assert publisher.read_pointer("nightly").release == "2026-10-18"

    def test_lost_race_at_write(self, publisher, production_store, layout):
        key = layout.pointer_key("nightly")
        rival = Publisher.pointer_document(_pointer(layout, "2026-10-18"))

        def rival_lands_first():
            production_store.inner.put(key, rival)
            return PreconditionFailedError(key)

        production_store.fail("put", match="channel-nightly", exc=rival_lands_first)
        with pytest.raises(CutoverConflict):
            publisher.cutover(_pointer(layout), ObservedPointer(channel="nightly"))
        assert production_store.inner.get(key) == rival

    def test_own_write_landed_before_retry(self, publisher, production_store, layout):
        key = layout.pointer_key("nightly")
        ours = _pointer(layout)

        def ours_landed():
            production_store.inner.put(key, Publisher.pointer_document(ours))
            return PreconditionFailedError(key)

        production_store.fail("put", match="channel-nightly", exc=ours_landed)
        publisher.cutover(ours, ObservedPointer(channel="nightly"))
        assert publisher.read_pointer("nightly").release == RELEASE

    def test_etag_comes_from_the_same_read_as_the_body(
        self, publisher, production_store, layout
    ):
        publisher.cutover(_pointer(layout), ObservedPointer(channel="nightly"))
        heads = production_store.calls.get("head", 0)
        observed = publisher.read_pointer("nightly")
        assert production_store.calls.get("head", 0) == heads
        assert observed.etag == production_store.inner.head(layout.pointer_key("nightly")).etag
        assert observed.release == RELEASE


class TestSealedRelease:
    """Once manifest.json is in production, existing objects never change."""

    def test_published_manifest(self, publisher, prepared):
        assert publisher.published_manifest("nightly", RELEASE) is None
        _publish(publisher, prepared)
        assert publisher.published_manifest("nightly", RELEASE) == prepared.built.data

    def test_differing_sidecar_is_refused(self, publisher, prepared, production_store, layout):
        _publish(publisher, prepared)
        key = layout.checksum_key("nightly", RELEASE, prepared.artifacts[0].file_name)
        production_store.inner.put(key, b"not the original sidecar\n")
        before = production_store.writes
        with pytest.raises(IntegrityViolation, match="published release"):
            _publish(publisher, prepared)
        assert production_store.writes == before
        assert production_store.inner.get(key) == b"not the original sidecar\n"

    def test_differing_archive_is_refused(self, publisher, prepared, production_store, layout):
        _publish(publisher, prepared)
        key = layout.artifact_key("nightly", RELEASE, prepared.artifacts[0].file_name)
        production_store.inner.put(key, b"replaced")
        before = production_store.writes
        with pytest.raises(IntegrityViolation, match="publish a new release"):
            _publish(publisher, prepared)
        assert production_store.writes == before
        assert production_store.inner.get(key) == b"replaced"

    def test_differing_manifest_is_refused(self, publisher, prepared, production_store, layout):
        _publish(publisher, prepared)
        key = layout.manifest_key("nightly", RELEASE)
        production_store.inner.put(key, b"{}")
        before = production_store.writes
        with pytest.raises(IntegrityViolation):
            _publish(publisher, prepared)
        assert production_store.writes == before
        assert production_store.inner.get(key) == b"{}"

    def test_missing_signature_is_added(self, publisher, prepared, production_store, layout):
        _publish(publisher, prepared)
        artifact = prepared.artifacts[0]
        key = layout.signature_key(
            "nightly", RELEASE, artifact.file_name, artifact.signature.key_id
        )
        production_store.inner.delete(key)
        result = _publish(publisher, prepared)
        assert result.writes == 1
        assert production_store.puts[-1] == key
        assert production_store.inner.head(key) is not None


class TestServerCopy:
    def test_filesystem_stores_copy_without_streaming(
        self, prepared, staging_store, production_store, layout, fast_retry, monkeypatch
    ):
        staging, production = staging_store.inner, production_store.inner

        def no_streaming(*args, **kwargs):
            raise AssertionError("archive was streamed instead of copied")

        monkeypatch.setattr(production, "put_stream", no_streaming)
        publisher = Publisher(staging, production, layout, retry=fast_retry)
        result = _publish(publisher, prepared)
        assert result.writes == 8
        for artifact in prepared.artifacts:
            key = layout.artifact_key("nightly", RELEASE, artifact.file_name)
            assert production.get(key) == staging.get(artifact.staging_key)
            assert production.head(key).metadata["sha256"] == artifact.sha256

    def test_staging_swap_is_caught_after_copy(
        self, prepared, staging_store, production_store, layout, fast_retry
    ):
        staging, production = staging_store.inner, production_store.inner
        artifact = prepared.artifacts[0]
        staging.put(artifact.staging_key, b"swapped after verification")
        publisher = Publisher(staging, production, layout, retry=fast_retry)
        with pytest.raises(IntegrityViolation, match="in-transit corruption"):
            _publish(publisher, prepared)
        key = layout.artifact_key("nightly", RELEASE, artifact.file_name)
        assert production.head(key) is None
