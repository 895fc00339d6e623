"""Object store backends for the staging and production buckets."""

from __future__ import annotations

from promote_release.config import PromoteConfig
from promote_release.storage.base import DEFAULT_CHUNK_SIZE, ObjectInfo, ObjectStore
from promote_release.storage.filesystem import FilesystemObjectStore
from promote_release.storage.layout import StoreLayout
from promote_release.storage.s3 import S3ObjectStore

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "FilesystemObjectStore",
    "ObjectInfo",
    "ObjectStore",
    "S3ObjectStore",
    "StoreLayout",
    "build_layout",
    "build_stores",
]


def build_stores(cfg: PromoteConfig) -> tuple[ObjectStore, ObjectStore]:
    """Return ``(staging, production)`` stores for the configured backend."""
    if cfg.store_backend == "filesystem":
        root = cfg.filesystem_root
        return (
            FilesystemObjectStore(root / cfg.staging_bucket, name=cfg.staging_bucket),
            FilesystemObjectStore(root / cfg.production_bucket, name=cfg.production_bucket),
        )

    def _s3(bucket: str) -> S3ObjectStore:
        return S3ObjectStore.from_settings(
            bucket,
            endpoint_url=cfg.s3_endpoint_url,
            region=cfg.s3_region,
            access_key_id=cfg.s3_access_key_id,
            secret_access_key=cfg.s3_secret_access_key,
            addressing_style=cfg.s3_addressing_style,
            connect_timeout=cfg.connect_timeout_seconds,
            read_timeout=cfg.read_timeout_seconds,
            part_size=cfg.s3_part_size_bytes,
        )

    return _s3(cfg.staging_bucket), _s3(cfg.production_bucket)


def build_layout(cfg: PromoteConfig) -> StoreLayout:
    return StoreLayout(
        staging_prefix=cfg.staging_prefix,
        production_prefix=cfg.production_prefix,
    )
