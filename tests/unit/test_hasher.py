"""Tests for the canonical hashing helpers."""

from __future__ import annotations

import hashlib

from promote_release.core.hasher import (
    canonical_json_bytes,
    compute_entry_hash,
    document_json_bytes,
    normalize_digest,
    sha256_hex,
    sha256_stream,
)


class TestCanonicalJson:
    def test_sorted_and_compact(self):
        assert canonical_json_bytes({"b": 1, "a": [1, 2]}) == b'{"a":[1,2],"b":1}'

    def test_key_order_does_not_matter(self):
        assert canonical_json_bytes({"x": 1, "y": 2}) == canonical_json_bytes({"y": 2, "x": 1})

    def test_ascii_only(self):
        assert canonical_json_bytes({"k": "é"}) == b'{"k":"\\u00e9"}'


class TestDocumentJson:
    def test_indented_with_trailing_newline(self):
        data = document_json_bytes({"b": 1, "a": 2})
        assert data == b'{\n  "a": 2,\n  "b": 1\n}\n'


class TestDigests:
    def test_sha256_hex(self):
        assert sha256_hex(b"abc") == hashlib.sha256(b"abc").hexdigest()

    def test_stream_matches_one_shot(self):
        chunks = [b"a" * 10, b"b" * 5, b""]
        digest, total = sha256_stream(chunks)
        assert digest == sha256_hex(b"a" * 10 + b"b" * 5)
        assert total == 15

    def test_stream_empty(self):
        digest, total = sha256_stream([])
        assert digest == sha256_hex(b"")
        assert total == 0

    def test_normalize_digest(self):
        assert normalize_digest("sha256:ABCDEF") == "abcdef"
        assert normalize_digest("  abc \n") == "abc"


class TestEntryHash:
    def test_ignores_entry_hash_field(self):
        base = {"run_id": "r", "state_transition": "a->b"}
        assert compute_entry_hash({**base, "entry_hash": "x"}) == compute_entry_hash(base)

    def test_changes_with_content(self):
        assert compute_entry_hash({"a": 1}) != compute_entry_hash({"a": 2})
