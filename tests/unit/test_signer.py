"""Tests for the Signer."""

from __future__ import annotations

import pytest

from promote_release.core.signer import (
    Signer,
    artifact_payload,
    parse_signature,
    signature_document,
)
from promote_release.errors import (
    IncompleteRelease,
    ObjectNotFoundError,
    SigningRejected,
    SigningUnavailable,
)
from promote_release.models.artifacts import Artifact, SignedKind
from promote_release.signing import LocalKeyBackend, generate_keypair

RELEASE = "2026-10-17"


def _artifact(verified: bool = True) -> Artifact:
    return Artifact(
        name="rustc",
        target="x86_64",
        file_name="rustc-x86_64.tar.gz",
        staging_key=f"staging/nightly/{RELEASE}/rustc-x86_64.tar.gz",
        size_bytes=128,
        sha256="cd" * 32,
        verified=verified,
    )


class FlakyBackend(LocalKeyBackend):
    """Signing backend whose sign() is unavailable for the first *n* calls."""

    def __init__(self, private_key: str, failures: int) -> None:
        super().__init__(private_key=private_key)
        self.failures = failures
        self.sign_calls = 0

    def sign(self, payload: bytes, *, channel: str) -> str:
        self.sign_calls += 1
        if self.sign_calls <= self.failures:
            raise SigningUnavailable("signing service warming up")
        return super().sign(payload, channel=channel)


@pytest.fixture
def signer(signing_backend, production_store, layout, fast_retry) -> Signer:
    return Signer(signing_backend, production_store, layout, retry=fast_retry)


class TestArtifactSignatures:
    def test_signs_verified_artifact(self, signer):
        signed = signer.sign_artifact(_artifact(), "nightly", release=RELEASE)
        sig = signed.signature
        assert sig is not None
        assert sig.kind == SignedKind.ARTIFACT
        assert sig.subject == "rustc-x86_64.tar.gz"
        assert sig.key_id == signer.key_id
        assert signer.verify(artifact_payload(signed), sig)
        assert signer.signed == 1

    def test_payload_binds_digest(self, signer):
        signed = signer.sign_artifact(_artifact(), "nightly", release=RELEASE)
        tampered = signed.model_copy(update={"sha256": "ef" * 32})
        assert not signer.verify(artifact_payload(tampered), signed.signature)

    def test_unverified_artifact_is_refused(self, signer):
        with pytest.raises(IncompleteRelease):
            signer.sign_artifact(_artifact(verified=False), "nightly", release=RELEASE)

    def test_deterministic(self, signer):
        a = signer.sign_artifact(_artifact(), "nightly", release=RELEASE)
        b = signer.sign_artifact(_artifact(), "nightly", release=RELEASE)
        assert a.signature == b.signature


class TestReuse:
    def test_existing_signature_is_reused(self, signer, production_store, layout):
        first = signer.sign_artifact(_artifact(), "nightly", release=RELEASE)
        key = layout.signature_key("nightly", RELEASE, "rustc-x86_64.tar.gz", signer.key_id)
        production_store.inner.put(key, signature_document(first.signature))

        second = signer.sign_artifact(_artifact(), "nightly", release=RELEASE)
        assert second.signature == first.signature
        assert signer.reused == 1
        assert signer.signed == 1

    def test_foreign_signature_under_our_key_id_is_not_reused(
        self, signer, production_store, layout
    ):
        other = Signer(LocalKeyBackend(private_key=generate_keypair()[0]))
        foreign = other.sign_artifact(_artifact(), "nightly")
        key = layout.signature_key("nightly", RELEASE, "rustc-x86_64.tar.gz", signer.key_id)
        production_store.inner.put(key, signature_document(foreign.signature))

        mine = signer.sign_artifact(_artifact(), "nightly", release=RELEASE)
        assert mine.signature.key_id == signer.key_id
        assert signer.reused == 0

    def test_garbage_signature_file_is_ignored(self, signer, production_store, layout):
        key = layout.signature_key("nightly", RELEASE, "rustc-x86_64.tar.gz", signer.key_id)
        production_store.inner.put(key, b"not json")
        assert signer.sign_artifact(_artifact(), "nightly", release=RELEASE).is_signed
        assert signer.signed == 1

    def test_other_keys_signatures_are_left_alone(self, signer, production_store, layout):
        other = Signer(LocalKeyBackend(private_key=generate_keypair()[0]))
        old = other.sign_artifact(_artifact(), "nightly").signature
        old_key = layout.signature_key("nightly", RELEASE, "rustc-x86_64.tar.gz", old.key_id)
        production_store.inner.put(old_key, signature_document(old))

        mine = signer.sign_artifact(_artifact(), "nightly", release=RELEASE)
        assert mine.signature.key_id != old.key_id
        assert signer.signed == 1
        assert production_store.inner.get(old_key) == signature_document(old)
        assert production_store.writes == 0

    def test_signature_vanishing_mid_read_means_sign_again(
        self, signer, production_store, layout
    ):
        key = layout.signature_key("nightly", RELEASE, "rustc-x86_64.tar.gz", signer.key_id)
        production_store.inner.put(key, b"{}")
        production_store.fail("get", match=key, exc=lambda: ObjectNotFoundError(key))
        assert signer.sign_artifact(_artifact(), "nightly", release=RELEASE).is_signed
        assert signer.signed == 1


class TestManifestSignatures:
    def test_signs_exact_bytes(self, signer):
        data = b'{"release": "2026-10-17"}\n'
        sig = signer.sign_manifest(data, "nightly", release=RELEASE)
        assert sig.kind == SignedKind.MANIFEST
        assert sig.subject == f"nightly/{RELEASE}/manifest.json"
        assert signer.verify(data, sig)
        assert not signer.verify(data + b" ", sig)


class TestFailures:
    def test_unavailable_backend_is_retried(self, keypair, fast_retry):
        backend = FlakyBackend(keypair[0], failures=2)
        signer = Signer(backend, retry=fast_retry)
        assert signer.sign_artifact(_artifact(), "nightly").is_signed
        assert backend.sign_calls == 3

    def test_unavailable_backend_exhausts(self, keypair, fast_retry):
        backend = FlakyBackend(keypair[0], failures=10)
        with pytest.raises(SigningUnavailable):
            Signer(backend, retry=fast_retry).sign_artifact(_artifact(), "nightly")
        assert backend.sign_calls == 3

    def test_rejection_is_not_retried(self, keypair, fast_retry):
        backend = LocalKeyBackend(private_key=keypair[0], allowed_channels=["nightly"])
        with pytest.raises(SigningRejected):
            Signer(backend, retry=fast_retry).sign_artifact(_artifact(), "stable")


class TestSignatureDocument:
    def test_parse_round_trip(self, signer):
        sig = signer.sign_artifact(_artifact(), "nightly").signature
        assert parse_signature(signature_document(sig)) == sig

    @pytest.mark.parametrize("raw", [b"", b"[]", b'{"kind": "artifact"}'])
    def test_parse_rejects_malformed(self, raw):
        assert parse_signature(raw) is None
