"""Tests for the Manifest Builder."""

from __future__ import annotations

import json

import pytest

from promote_release.core.manifest_builder import ManifestBuilder
from promote_release.errors import IncompleteRelease, IntegrityViolation
from promote_release.models.artifacts import Artifact, Signature, SignedKind
from promote_release.models.release import ReleaseCandidate


def _artifact(
    name: str,
    target: str,
    *,
    verified: bool = True,
    signed: bool = True,
    key_id: str = "0123456789abcdef",
    sha256: str = "cc" * 32,
) -> Artifact:
    file_name = f"{name}-{target}.tar.gz"
    signature = (
        Signature(
            kind=SignedKind.ARTIFACT,
            subject=file_name,
            key_id=key_id,
            value="aa" * 64,
            payload_sha256="bb" * 32,
        )
        if signed
        else None
    )
    return Artifact(
        name=name,
        target=target,
        file_name=file_name,
        staging_key=f"staging/nightly/2026-10-17/{file_name}",
        size_bytes=len(file_name),
        sha256=sha256,
        verified=verified,
        signature=signature,
    )


def _candidate(artifacts: list[Artifact]) -> ReleaseCandidate:
    return ReleaseCandidate(
        channel="nightly",
        release="2026-10-17",
        version="1.84.0-nightly",
        date="2026-10-17",
        artifacts=artifacts,
    )


@pytest.fixture
def builder(layout) -> ManifestBuilder:
    return ManifestBuilder(layout)


class TestBuild:
    def test_entries_and_paths(self, builder):
        artifacts = [_artifact("rustc", "x86_64")]
        built = builder.build(_candidate(artifacts), artifacts)
        [entry] = built.manifest.artifacts
        assert entry.path == "nightly/2026-10-17/rustc-x86_64.tar.gz"
        assert entry.signature_path == "nightly/2026-10-17/rustc-x86_64.tar.gz.0123456789abcdef.sig"
        assert entry.signature_key_id == "0123456789abcdef"
        assert built.manifest.version == "1.84.0-nightly"
        assert built.manifest.components == ["rustc"]

    def test_deterministic_regardless_of_input_order(self, builder):
        a = [_artifact("rustc", "x86_64"), _artifact("cargo", "aarch64"), _artifact("cargo", "x86_64")]
        b = list(reversed(a))
        first = builder.build(_candidate(a), a)
        second = builder.build(_candidate(b), b)
        assert first.data == second.data
        assert first.sha256 == second.sha256
        assert [(e.name, e.target) for e in first.manifest.artifacts] == [
            ("cargo", "aarch64"),
            ("cargo", "x86_64"),
            ("rustc", "x86_64"),
        ]

    def test_no_wall_clock_fields(self, builder):
        artifacts = [_artifact("rustc", "x86_64")]
        doc = json.loads(builder.build(_candidate(artifacts), artifacts).data)
        assert set(doc) == {
            "schema_version",
            "channel",
            "release",
            "version",
            "date",
            "components",
            "artifacts",
        }

    def test_parse_round_trip(self, builder):
        artifacts = [_artifact("rustc", "x86_64")]
        built = builder.build(_candidate(artifacts), artifacts)
        assert ManifestBuilder.parse(built.data) == built.manifest

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            ManifestBuilder.parse(b"{}")


class TestIncomplete:
    def test_unsigned_artifact(self, builder):
        artifacts = [_artifact("rustc", "x86_64"), _artifact("cargo", "x86_64", signed=False)]
        with pytest.raises(IncompleteRelease, match="cargo-x86_64.tar.gz"):
            builder.build(_candidate(artifacts), artifacts)

    def test_unverified_artifact(self, builder):
        artifacts = [_artifact("rustc", "x86_64", verified=False)]
        with pytest.raises(IncompleteRelease) as excinfo:
            builder.build(_candidate(artifacts), artifacts)
        assert excinfo.value.missing == ["rustc-x86_64.tar.gz"]

    def test_empty_release(self, builder):
        with pytest.raises(IncompleteRelease):
            builder.build(_candidate([]), [])


class TestReconcile:
    def test_identical_bytes_keep_the_build(self, builder):
        artifacts = [_artifact("rustc", "x86_64")]
        built = builder.build(_candidate(artifacts), artifacts)
        assert builder.reconcile(built, built.data) is built

    def test_published_manifest_from_older_key_wins(self, builder):
        old = [_artifact("rustc", "x86_64", key_id="aaaaaaaaaaaaaaaa")]
        published = builder.build(_candidate(old), old)
        new = [_artifact("rustc", "x86_64", key_id="bbbbbbbbbbbbbbbb")]
        rebuilt = builder.build(_candidate(new), new)
        assert rebuilt.data != published.data

        settled = builder.reconcile(rebuilt, published.data)
        assert settled.data == published.data
        assert settled.sha256 == published.sha256
        assert settled.manifest.artifacts[0].signature_key_id == "aaaaaaaaaaaaaaaa"

    def test_different_contents_are_refused(self, builder):
        published = builder.build(
            _candidate([_artifact("rustc", "x86_64")]), [_artifact("rustc", "x86_64")]
        )
        changed = [_artifact("rustc", "x86_64", sha256="dd" * 32)]
        rebuilt = builder.build(_candidate(changed), changed)
        with pytest.raises(IntegrityViolation, match="publish a new release"):
            builder.reconcile(rebuilt, published.data)

    def test_extra_artifact_is_refused(self, builder):
        one = [_artifact("rustc", "x86_64")]
        two = [_artifact("rustc", "x86_64"), _artifact("cargo", "x86_64")]
        published = builder.build(_candidate(one), one)
        with pytest.raises(IntegrityViolation):
            builder.reconcile(builder.build(_candidate(two), two), published.data)

    def test_malformed_published_manifest(self, builder):
        artifacts = [_artifact("rustc", "x86_64")]
        built = builder.build(_candidate(artifacts), artifacts)
        with pytest.raises(IntegrityViolation, match="malformed"):
            builder.reconcile(built, b"not json")
