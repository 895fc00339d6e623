"""Object store protocol shared by the staging and production stores.

The promotion core only ever talks to stores through this interface, so the
same pipeline runs against S3, a local MinIO, or a directory tree.

Error contract
--------------
- Missing keys: ``head()`` returns None; ``get()``, ``fetch()`` and
  ``iter_chunks()`` raise ``ObjectNotFoundError``.
- Network or service hiccups: ``StoreTransientError`` (retried by callers).
- Rejected conditional write: ``PreconditionFailedError``.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

DEFAULT_CHUNK_SIZE = 1024 * 1024


class ObjectInfo(BaseModel):
    """Metadata returned by ``head()`` and ``put()``."""

    model_config = ConfigDict(frozen=True)

    key: str
    size: int
    etag: str
    metadata: dict[str, str] = {}


@runtime_checkable
class ObjectStore(Protocol):
    """Minimal S3-style object store."""

    name: str

    def list_keys(self, prefix: str) -> list[str]:
        """Return every key under *prefix*, sorted."""
        ...

    def head(self, key: str) -> ObjectInfo | None:
        """Return object metadata, or None if the key does not exist."""
        ...

    def get(self, key: str) -> bytes:
        """Return the full object body."""
        ...

    def fetch(self, key: str) -> tuple[ObjectInfo, bytes]:
        """Return metadata and body from a single read.

        The ETag describes exactly the returned bytes, unlike a ``head()``
        followed by ``get()``.
        """
        ...

    def iter_chunks(self, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        """Stream the object body in chunks."""
        ...

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
        """Write an object.

        ``if_match`` makes the write conditional on the current ETag;
        ``if_none_match`` makes it conditional on the key being absent.
        """
        ...

    def put_stream(
        self,
        key: str,
        chunks: Iterable[bytes],
        *,
        metadata: dict[str, str] | None = None,
        content_type: str = "application/octet-stream",
    ) -> ObjectInfo:
        """Write an object from a stream of chunks without buffering it whole."""
        ...

    def server_copy(
        self,
        source: ObjectStore,
        src_key: str,
        dest_key: str,
        *,
        metadata: dict[str, str] | None = None,
        content_type: str = "application/octet-stream",
    ) -> ObjectInfo | None:
        """Copy *src_key* of *source* to *dest_key* inside the service.

        Returns None when the two stores cannot copy between each other
        directly; callers then fall back to ``put_stream``.
        """
        ...

    def delete(self, key: str) -> None:
        """Remove an object.  Missing keys are ignored."""
        ...
