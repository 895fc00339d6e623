"""Shared test fixtures for promote-release."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import Any

import pytest

from promote_release.config import PromoteConfig
from promote_release.core.orchestrator import PromotionOrchestrator
from promote_release.core.retry import RetryPolicy
from promote_release.core.run_ledger import RunLedger
from promote_release.errors import StoreTransientError
from promote_release.signing.backend import LocalKeyBackend
from promote_release.signing.crypto import generate_keypair
from promote_release.storage.base import DEFAULT_CHUNK_SIZE, ObjectInfo
from promote_release.storage.filesystem import FilesystemObjectStore
from promote_release.storage.layout import StoreLayout

RELEASE_ID = "2026-10-17"


# ---------------------------------------------------------------------------
# Fault-injecting store wrapper
# ---------------------------------------------------------------------------


def _flip_first_byte(chunks: Iterable[bytes]) -> Iterator[bytes]:
    flipped = False
    for chunk in chunks:
        if not flipped and chunk:
            chunk = bytes([chunk[0] ^ 0xFF]) + chunk[1:]
            flipped = True
        yield chunk


class FaultyStore:
    """Wraps an object store, counting writes and injecting failures.

    ``fail(op, match, times, exc)`` makes the next *times* calls of *op* on
    keys containing *match* raise *exc*.  ``corrupt(match)`` flips a byte in
    every body written to a matching key.
    """

    def __init__(self, inner: Any) -> None:
        self.inner = inner
        self.name = f"faulty:{inner.name}"
        self.puts: list[str] = []
        self.deletes: list[str] = []
        self.calls: dict[str, int] = {}
        self._faults: list[dict[str, Any]] = []
        self._corrupt: list[str] = []

    def fail(
        self,
        op: str,
        match: str = "",
        times: int = 1,
        exc: Callable[[], Exception] = lambda: StoreTransientError("injected"),
    ) -> None:
        self._faults.append({"op": op, "match": match, "remaining": times, "exc": exc})

    def corrupt(self, match: str) -> None:
        self._corrupt.append(match)

    def _check(self, op: str, key: str) -> None:
        self.calls[op] = self.calls.get(op, 0) + 1
        for fault in self._faults:
            if fault["op"] == op and fault["match"] in key and fault["remaining"] > 0:
                fault["remaining"] -= 1
                raise fault["exc"]()

    @property
    def writes(self) -> int:
        return len(self.puts) + len(self.deletes)

    def list_keys(self, prefix: str) -> list[str]:
        self._check("list", prefix)
        return self.inner.list_keys(prefix)

    def head(self, key: str) -> ObjectInfo | None:
        self._check("head", key)
        return self.inner.head(key)

    def get(self, key: str) -> bytes:
        self._check("get", key)
        return self.inner.get(key)

    def fetch(self, key: str) -> tuple[ObjectInfo, bytes]:
        self._check("get", key)
        return self.inner.fetch(key)

    def iter_chunks(self, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        self._check("iter_chunks", key)
        yield from self.inner.iter_chunks(key, chunk_size)

    def put(self, key: str, data: bytes, **kwargs: Any) -> ObjectInfo:
        self._check("put", key)
        if any(m in key for m in self._corrupt):
            data = bytes([data[0] ^ 0xFF]) + data[1:]
        self.puts.append(key)
        return self.inner.put(key, data, **kwargs)

    def put_stream(self, key: str, chunks: Iterable[bytes], **kwargs: Any) -> ObjectInfo:
        self._check("put", key)
        if any(m in key for m in self._corrupt):
            chunks = _flip_first_byte(chunks)
        self.puts.append(key)
        return self.inner.put_stream(key, chunks, **kwargs)

    def server_copy(self, source: Any, src_key: str, dest_key: str, **kwargs: Any) -> None:
        # Always stream, so injected faults and corruption reach archive copies
        return None

    def delete(self, key: str) -> None:
        self._check("delete", key)
        self.deletes.append(key)
        self.inner.delete(key)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def layout() -> StoreLayout:
    return StoreLayout()


@pytest.fixture
def staging_store(tmp_dir: Path) -> FaultyStore:
    """Staging bucket: a directory-backed store behind a fault injector."""
    return FaultyStore(FilesystemObjectStore(tmp_dir / "buckets" / "dev-static"))


@pytest.fixture
def production_store(tmp_dir: Path) -> FaultyStore:
    """Production bucket: a directory-backed store behind a fault injector."""
    return FaultyStore(FilesystemObjectStore(tmp_dir / "buckets" / "static"))


@pytest.fixture
def keypair() -> tuple[str, str]:
    """A fresh Ed25519 ``(private_hex, public_hex)`` pair."""
    return generate_keypair()


@pytest.fixture
def signing_backend(keypair: tuple[str, str]) -> LocalKeyBackend:
    private_key, public_key = keypair
    return LocalKeyBackend(private_key=private_key, expected_public_key=public_key)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Three attempts, no delay, no jitter, no sleeping."""
    return RetryPolicy(
        max_attempts=3, initial_delay_ms=0, jitter=False, sleep=lambda _seconds: None
    )


@pytest.fixture
def config(tmp_dir: Path, keypair: tuple[str, str]) -> PromoteConfig:
    """A development config pointing at temp buckets and ledger."""
    private_key, public_key = keypair
    return PromoteConfig(
        _env_file=None,
        environment="development",
        store_backend="filesystem",
        filesystem_root=tmp_dir / "buckets",
        ledger_path=tmp_dir / "ledger.db",
        signing_key=private_key,
        signing_public_key=public_key,
        retry_max_attempts=3,
        retry_initial_delay_ms=0,
        retry_jitter=False,
    )


@pytest.fixture
def orchestrator(
    config: PromoteConfig,
    staging_store: FaultyStore,
    production_store: FaultyStore,
    signing_backend: LocalKeyBackend,
    ledger: RunLedger,
    fast_retry: RetryPolicy,
) -> PromotionOrchestrator:
    """Orchestrator wired to the fault-injecting temp stores."""
    return PromotionOrchestrator(
        config,
        staging=staging_store,
        production=production_store,
        signing_backend=signing_backend,
        ledger=ledger,
        retry=fast_retry,
    )


# ---------------------------------------------------------------------------
# Staging factory
# ---------------------------------------------------------------------------


def archive_bytes(file_name: str, release: str = RELEASE_ID) -> bytes:
    """Deterministic stand-in for a toolchain archive."""
    return f"archive:{file_name}:{release}\n".encode("utf-8") * 64


@pytest.fixture
def stage_release(
    staging_store: FaultyStore, layout: StoreLayout
) -> Callable[..., dict[str, bytes]]:
    """Factory fixture: put a release into staging.

    By default each file gets a ``.sha256`` sidecar.  ``use_metadata=True``
    declares the checksum through object metadata instead.  ``descriptor``
    writes ``release.json``.  Returns ``{file_name: bytes}``.
    """

    def _factory(
        channel: str = "nightly",
        release: str = RELEASE_ID,
        files: list[str] | dict[str, bytes] | None = None,
        *,
        use_metadata: bool = False,
        sidecar: bool = True,
        descriptor: dict[str, Any] | None = None,
    ) -> dict[str, bytes]:
        if files is None:
            files = ["rustc-x86_64.tar.gz"]
        if isinstance(files, list):
            files = {name: archive_bytes(name, release) for name in files}
        prefix = layout.staging_release_prefix(channel, release)
        for name, data in files.items():
            digest = hashlib.sha256(data).hexdigest()
            metadata = {"sha256": digest} if use_metadata else None
            staging_store.inner.put(prefix + name, data, metadata=metadata)
            if sidecar and not use_metadata:
                staging_store.inner.put(
                    prefix + name + ".sha256", f"{digest}  {name}\n".encode("utf-8")
                )
        if descriptor is not None:
            staging_store.inner.put(
                layout.staging_descriptor(channel, release),
                json.dumps(descriptor).encode("utf-8"),
            )
        return dict(files)

    return _factory
