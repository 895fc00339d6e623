"""Canonical hashing helpers for checksums, signing payloads and the ledger."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes used for hashing and signing.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def document_json_bytes(obj: Any) -> bytes:
    """Deterministic, human-readable JSON for published documents.

    Same key ordering guarantees as ``canonical_json_bytes`` but indented,
    with a trailing newline, since installers and operators read these.
    """
    return (
        json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=True) + "\n"
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_stream(chunks: Iterable[bytes]) -> tuple[str, int]:
    """Hash an iterable of byte chunks.

    Returns ``(hex_digest, total_bytes)`` so callers can check size and
    checksum in one pass.
    """
    h = hashlib.sha256()
    total = 0
    for chunk in chunks:
        h.update(chunk)
        total += len(chunk)
    return h.hexdigest(), total


def normalize_digest(value: str) -> str:
    """Strip an optional ``sha256:`` prefix and lowercase the hex."""
    return value.strip().removeprefix("sha256:").lower()


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of a ledger entry (excluding the entry_hash field itself).

    This is the seal that makes each entry tamper-evident.
    """
    d = {k: v for k, v in entry_dict.items() if k != "entry_hash"}
    return sha256_hex(canonical_json_bytes(d))
