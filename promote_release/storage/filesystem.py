"""Directory-backed object store for the local harness and tests.

Storage layout: ``{root}/{key}`` holds the body and
``{root}/.meta/{key}.json`` holds ``{"etag", "metadata", "content_type"}``.
Writes go to a temp file and are renamed into place, so readers never see a
partial object.  The ETag is the SHA-256 of the body.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import threading
from collections.abc import Iterable, Iterator
from pathlib import Path

from promote_release.core.hasher import sha256_hex, sha256_stream
from promote_release.errors import ObjectNotFoundError, PreconditionFailedError
from promote_release.storage.base import DEFAULT_CHUNK_SIZE, ObjectInfo, ObjectStore

logger = logging.getLogger(__name__)

_META_DIR = ".meta"


class FilesystemObjectStore:
    """Object store rooted at a local directory.

    Conditional writes are serialized by a per-store lock, which gives the
    same compare-and-swap semantics S3 offers for concurrent threads in one
    process.

    Parameters
    ----------
    root:
        Directory acting as the bucket.  Created if missing.
    name:
        Label used in log messages.
    """

    def __init__(self, root: Path, name: str = "") -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self.name = name or self._root.name
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _body_path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if not path.is_relative_to(self._root.resolve()) or key.startswith(_META_DIR):
            raise ValueError(f"Invalid object key: {key!r}")
        return path

    def _meta_path(self, key: str) -> Path:
        return self._root / _META_DIR / f"{key}.json"

    def _read_meta(self, key: str) -> dict:
        meta_path = self._meta_path(key)
        if meta_path.exists():
            return json.loads(meta_path.read_text(encoding="utf-8"))
        return {}

    @staticmethod
    def _tmp_path(path: Path) -> Path:
        return path.with_name(f".{path.name}.{threading.get_ident()}.tmp")

    @classmethod
    def _atomic_write(cls, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = cls._tmp_path(path)
        tmp.write_bytes(data)
        os.replace(tmp, path)

    def _write_meta(
        self, key: str, etag: str, metadata: dict[str, str] | None, content_type: str
    ) -> None:
        self._atomic_write(
            self._meta_path(key),
            json.dumps(
                {"etag": etag, "metadata": metadata or {}, "content_type": content_type},
                sort_keys=True,
            ).encode("utf-8"),
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def list_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        for path in self._root.rglob("*"):
            if not path.is_file():
                continue
            rel = path.relative_to(self._root).as_posix()
            if rel.startswith(f"{_META_DIR}/") or path.name.endswith(".tmp"):
                continue
            if rel.startswith(prefix):
                keys.append(rel)
        return sorted(keys)

    def head(self, key: str) -> ObjectInfo | None:
        path = self._body_path(key)
        if not path.is_file():
            return None
        meta = self._read_meta(key)
        return ObjectInfo(
            key=key,
            size=path.stat().st_size,
            etag=meta.get("etag") or sha256_hex(path.read_bytes()),
            metadata=meta.get("metadata", {}),
        )

    def get(self, key: str) -> bytes:
        path = self._body_path(key)
        if not path.is_file():
            raise ObjectNotFoundError(key)
        return path.read_bytes()

    def fetch(self, key: str) -> tuple[ObjectInfo, bytes]:
        path = self._body_path(key)
        # Body and meta are replaced together under the lock
        with self._lock:
            if not path.is_file():
                raise ObjectNotFoundError(key)
            data = path.read_bytes()
            meta = self._read_meta(key)
        info = ObjectInfo(
            key=key,
            size=len(data),
            etag=meta.get("etag") or sha256_hex(data),
            metadata=meta.get("metadata", {}),
        )
        return info, data

    def iter_chunks(self, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        path = self._body_path(key)
        if not path.is_file():
            raise ObjectNotFoundError(key)
        with path.open("rb") as f:
            for chunk in iter(lambda: f.read(chunk_size), b""):
                yield chunk

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def put(
        self,
        key: str,
        data: bytes,
        *,
        metadata: dict[str, str] | None = None,
        content_type: str = "application/octet-stream",
        if_match: str | None = None,
        if_none_match: bool = False,
    ) -> ObjectInfo:
        path = self._body_path(key)
        etag = sha256_hex(data)
        with self._lock:
            if if_match is not None or if_none_match:
                current = self.head(key)
                current_etag = current.etag if current else None
                if if_none_match and current is not None:
                    raise PreconditionFailedError(key, current_etag)
                if if_match is not None and current_etag != if_match:
                    raise PreconditionFailedError(key, current_etag)

            self._atomic_write(path, data)
            self._write_meta(key, etag, metadata, content_type)
        logger.debug("%s: wrote %s (%d bytes)", self.name, key, len(data))
        return ObjectInfo(key=key, size=len(data), etag=etag, metadata=metadata or {})

    def put_stream(
        self,
        key: str,
        chunks: Iterable[bytes],
        *,
        metadata: dict[str, str] | None = None,
        content_type: str = "application/octet-stream",
    ) -> ObjectInfo:
        path = self._body_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._tmp_path(path)
        h = hashlib.sha256()
        size = 0
        try:
            with tmp.open("wb") as f:
                for chunk in chunks:
                    h.update(chunk)
                    size += len(chunk)
                    f.write(chunk)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        etag = h.hexdigest()
        with self._lock:
            os.replace(tmp, path)
            self._write_meta(key, etag, metadata, content_type)
        logger.debug("%s: streamed %s (%d bytes)", self.name, key, size)
        return ObjectInfo(key=key, size=size, etag=etag, metadata=metadata or {})

    def server_copy(
        self,
        source: ObjectStore,
        src_key: str,
        dest_key: str,
        *,
        metadata: dict[str, str] | None = None,
        content_type: str = "application/octet-stream",
    ) -> ObjectInfo | None:
        if not isinstance(source, FilesystemObjectStore):
            return None
        src = source._body_path(src_key)
        if not src.is_file():
            raise ObjectNotFoundError(src_key)
        path = self._body_path(dest_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._tmp_path(path)
        shutil.copyfile(src, tmp)
        with tmp.open("rb") as f:
            etag, size = sha256_stream(iter(lambda: f.read(DEFAULT_CHUNK_SIZE), b""))
        with self._lock:
            os.replace(tmp, path)
            self._write_meta(dest_key, etag, metadata, content_type)
        logger.debug("%s: copied %s/%s to %s", self.name, source.name, src_key, dest_key)
        return ObjectInfo(key=dest_key, size=size, etag=etag, metadata=metadata or {})

    def delete(self, key: str) -> None:
        with self._lock:
            self._body_path(key).unlink(missing_ok=True)
            self._meta_path(key).unlink(missing_ok=True)
        logger.debug("%s: deleted %s", self.name, key)
