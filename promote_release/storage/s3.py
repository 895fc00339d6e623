"""S3-compatible object store backed by boto3.

Works against AWS S3 and self-hosted S3 emulators (MinIO) via
``endpoint_url``.  botocore's own retry loop is disabled: transient errors
surface as ``StoreTransientError`` so the promotion retry policy owns the
attempt budget.

Large objects never sit in memory whole: ``put_stream`` uploads in parts of
``part_size`` bytes, and ``server_copy`` asks the service to copy between
buckets of the same endpoint without the bytes passing through this process.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, CredentialRetrievalError
from botocore.exceptions import ConnectionError as BotoConnectionError
from botocore.exceptions import (
    HTTPClientError,
    IncompleteReadError,
    NoCredentialsError,
    PartialCredentialsError,
)

from promote_release.errors import (
    ConfigurationError,
    ObjectNotFoundError,
    PreconditionFailedError,
    PromotionError,
    StoreTransientError,
)
from promote_release.storage.base import DEFAULT_CHUNK_SIZE, ObjectInfo, ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_PART_SIZE = 8 * 1024 * 1024
# Largest object a single CopyObject request accepts
MAX_SERVER_COPY_SIZE = 5 * 1024**3

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_PRECONDITION_CODES = {"412", "PreconditionFailed", "ConditionalRequestConflict", "409"}
_TRANSIENT_CODES = {
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "InternalError",
    "ServiceUnavailable",
    "503",
    "500",
}
# Connection, timeout and mid-stream failures; ReadTimeoutError,
# ConnectionClosedError and ResponseStreamingError are HTTPClientErrors.
_TRANSIENT_BOTOCORE_ERRORS = (BotoConnectionError, HTTPClientError, IncompleteReadError)
_CREDENTIAL_ERRORS = (NoCredentialsError, PartialCredentialsError, CredentialRetrievalError)


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _status(exc: ClientError) -> int:
    return int(exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0)


def _strip_etag(etag: str) -> str:
    return etag.strip('"')


class S3ObjectStore:
    """One bucket of an S3-compatible service.

    Parameters
    ----------
    bucket:
        Bucket name.
    client:
        A boto3 S3 client.  Use ``S3ObjectStore.from_settings`` to build one
        with explicit timeouts.
    part_size:
        Part size for multipart uploads.  Streams shorter than one part go
        up in a single ``PutObject``.
    """

    def __init__(self, bucket: str, client: Any, *, part_size: int = DEFAULT_PART_SIZE) -> None:
        self.bucket = bucket
        self.name = f"s3://{bucket}"
        self._client = client
        self._part_size = part_size

    @classmethod
    def from_settings(
        cls,
        bucket: str,
        *,
        endpoint_url: str | None = None,
        region: str = "us-east-1",
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        addressing_style: str = "auto",
        connect_timeout: float = 10.0,
        read_timeout: float = 60.0,
        part_size: int = DEFAULT_PART_SIZE,
    ) -> S3ObjectStore:
        """Build a store with explicit timeouts and no botocore retries."""
        client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                retries={"max_attempts": 1, "mode": "standard"},
                s3={"addressing_style": addressing_style},
            ),
        )
        return cls(bucket, client, part_size=part_size)

    @property
    def endpoint_url(self) -> str:
        return str(self._client.meta.endpoint_url)

    def ensure_bucket(self) -> None:
        """Create the bucket if it does not exist (local harness only)."""
        try:
            self._client.head_bucket(Bucket=self.bucket)
            return
        except ClientError as exc:
            if _status(exc) != 404 and _error_code(exc) not in _NOT_FOUND_CODES | {"NoSuchBucket"}:
                raise self._map_client_error("head_bucket", self.bucket, exc) from exc
        except BotoCoreError as exc:
            raise self._map_botocore_error("head_bucket", self.bucket, exc) from exc
        logger.info("Creating bucket %s", self.bucket)
        self._call("create_bucket", self.bucket, "create_bucket", Bucket=self.bucket)

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    def _transient(self, op: str, key: str, exc: Exception) -> StoreTransientError:
        logger.warning("%s: transient failure during %s %s: %s", self.name, op, key, exc)
        return StoreTransientError(f"{self.name}: {op} {key} failed: {exc}")

    def _map_client_error(self, op: str, key: str, exc: ClientError) -> Exception:
        code = _error_code(exc)
        status = _status(exc)
        if code in _NOT_FOUND_CODES or status == 404:
            return ObjectNotFoundError(key)
        if code in _PRECONDITION_CODES or status in (409, 412):
            return PreconditionFailedError(key)
        if code in _TRANSIENT_CODES or status >= 500:
            return self._transient(op, key, exc)
        return PromotionError(f"{self.name}: {op} {key} failed: {exc}")

    def _map_botocore_error(self, op: str, key: str, exc: BotoCoreError) -> Exception:
        if isinstance(exc, _TRANSIENT_BOTOCORE_ERRORS):
            return self._transient(op, key, exc)
        if isinstance(exc, _CREDENTIAL_ERRORS):
            return ConfigurationError(f"{self.name}: no usable credentials for {op} {key}: {exc}")
        return PromotionError(f"{self.name}: {op} {key} failed: {exc}")

    def _call(self, op: str, key: str, method: str, **kwargs: Any) -> Any:
        try:
            return getattr(self._client, method)(**kwargs)
        except ClientError as exc:
            raise self._map_client_error(op, key, exc) from exc
        except BotoCoreError as exc:
            raise self._map_botocore_error(op, key, exc) from exc

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def list_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except ClientError as exc:
            raise self._map_client_error("list", prefix, exc) from exc
        except BotoCoreError as exc:
            raise self._map_botocore_error("list", prefix, exc) from exc
        return sorted(keys)

    def head(self, key: str) -> ObjectInfo | None:
        try:
            resp = self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            mapped = self._map_client_error("head", key, exc)
            if isinstance(mapped, ObjectNotFoundError):
                return None
            raise mapped from exc
        except BotoCoreError as exc:
            raise self._map_botocore_error("head", key, exc) from exc
        return ObjectInfo(
            key=key,
            size=int(resp.get("ContentLength", 0)),
            etag=_strip_etag(resp.get("ETag", "")),
            metadata=dict(resp.get("Metadata", {})),
        )

    def get(self, key: str) -> bytes:
        return b"".join(self.iter_chunks(key))

    def fetch(self, key: str) -> tuple[ObjectInfo, bytes]:
        try:
            resp = self._client.get_object(Bucket=self.bucket, Key=key)
            body = resp["Body"]
            try:
                data = body.read()
            finally:
                body.close()
        except ClientError as exc:
            raise self._map_client_error("get", key, exc) from exc
        except BotoCoreError as exc:
            raise self._map_botocore_error("get", key, exc) from exc
        info = ObjectInfo(
            key=key,
            size=len(data),
            etag=_strip_etag(resp.get("ETag", "")),
            metadata=dict(resp.get("Metadata", {})),
        )
        return info, data

    def iter_chunks(self, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        try:
            resp = self._client.get_object(Bucket=self.bucket, Key=key)
            body = resp["Body"]
            try:
                yield from body.iter_chunks(chunk_size=chunk_size)
            finally:
                body.close()
        except ClientError as exc:
            raise self._map_client_error("get", key, exc) from exc
        except BotoCoreError as exc:
            raise self._map_botocore_error("get", key, exc) from exc

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
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
            "Metadata": metadata or {},
        }
        if if_match is not None:
            kwargs["IfMatch"] = f'"{if_match}"'
        if if_none_match:
            kwargs["IfNoneMatch"] = "*"
        resp = self._call("put", key, "put_object", **kwargs)
        logger.debug("%s: wrote %s (%d bytes)", self.name, key, len(data))
        return ObjectInfo(
            key=key,
            size=len(data),
            etag=_strip_etag(resp.get("ETag", "")),
            metadata=metadata or {},
        )

    def put_stream(
        self,
        key: str,
        chunks: Iterable[bytes],
        *,
        metadata: dict[str, str] | None = None,
        content_type: str = "application/octet-stream",
    ) -> ObjectInfo:
        buffer = bytearray()
        size = 0
        upload_id: str | None = None
        parts: list[dict[str, Any]] = []
        try:
            for chunk in chunks:
                buffer += chunk
                size += len(chunk)
                while len(buffer) >= self._part_size:
                    if upload_id is None:
                        upload_id = self._call(
                            "put",
                            key,
                            "create_multipart_upload",
                            Bucket=self.bucket,
                            Key=key,
                            ContentType=content_type,
                            Metadata=metadata or {},
                        )["UploadId"]
                    parts.append(
                        self._upload_part(key, upload_id, len(parts) + 1, buffer[: self._part_size])
                    )
                    del buffer[: self._part_size]

            if upload_id is None:
                return self.put(key, bytes(buffer), metadata=metadata, content_type=content_type)
            if buffer:
                parts.append(self._upload_part(key, upload_id, len(parts) + 1, buffer))
            resp = self._call(
                "put",
                key,
                "complete_multipart_upload",
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except BaseException:
            if upload_id is not None:
                self._abort_upload(key, upload_id)
            raise
        logger.debug("%s: streamed %s (%d bytes, %d part(s))", self.name, key, size, len(parts))
        return ObjectInfo(
            key=key,
            size=size,
            etag=_strip_etag(resp.get("ETag", "")),
            metadata=metadata or {},
        )

    def _upload_part(
        self, key: str, upload_id: str, number: int, data: bytes | bytearray
    ) -> dict[str, Any]:
        resp = self._call(
            "put",
            key,
            "upload_part",
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
            PartNumber=number,
            Body=bytes(data),
        )
        return {"PartNumber": number, "ETag": resp["ETag"]}

    def _abort_upload(self, key: str, upload_id: str) -> None:
        try:
            self._client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
        except (ClientError, BotoCoreError) as exc:
            logger.warning("%s: could not abort upload %s of %s: %s", self.name, upload_id, key, exc)

    def server_copy(
        self,
        source: ObjectStore,
        src_key: str,
        dest_key: str,
        *,
        metadata: dict[str, str] | None = None,
        content_type: str = "application/octet-stream",
    ) -> ObjectInfo | None:
        if not isinstance(source, S3ObjectStore) or source.endpoint_url != self.endpoint_url:
            return None
        info = source.head(src_key)
        if info is None:
            raise ObjectNotFoundError(src_key)
        if info.size > MAX_SERVER_COPY_SIZE:
            return None
        resp = self._call(
            "copy",
            dest_key,
            "copy_object",
            Bucket=self.bucket,
            Key=dest_key,
            CopySource={"Bucket": source.bucket, "Key": src_key},
            MetadataDirective="REPLACE",
            ContentType=content_type,
            Metadata=metadata or {},
        )
        logger.debug("%s: copied %s/%s to %s", self.name, source.name, src_key, dest_key)
        return ObjectInfo(
            key=dest_key,
            size=info.size,
            etag=_strip_etag(resp.get("CopyObjectResult", {}).get("ETag", "")),
            metadata=metadata or {},
        )

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            mapped = self._map_client_error("delete", key, exc)
            if isinstance(mapped, ObjectNotFoundError):
                return
            raise mapped from exc
        except BotoCoreError as exc:
            raise self._map_botocore_error("delete", key, exc) from exc
