"""Runtime configuration: env-driven via pydantic-settings.

Reads from a .env file and PROMOTE_RELEASE_* environment variables.
Credentials for the object store may also come from the standard AWS
environment/credential chain; the access key fields here are only needed
for endpoints such as a local MinIO.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from promote_release.models.channels import DEFAULT_CHANNELS


class PromoteConfig(BaseSettings):
    """Promotion service configuration with environment variable overrides.

    Examples
    --------
    Promote against the local harness::

        export PROMOTE_RELEASE_S3_ENDPOINT_URL=http://localhost:9000
        export PROMOTE_RELEASE_S3_ACCESS_KEY_ID=access_key
        export PROMOTE_RELEASE_S3_SECRET_ACCESS_KEY=secret_key
        export PROMOTE_RELEASE_SIGNING_KEY_PATH=/secrets/release.key

    Or via .env file::

        PROMOTE_RELEASE_ENVIRONMENT=production
        PROMOTE_RELEASE_PRODUCTION_BUCKET=static
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PROMOTE_RELEASE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Audit trail
    ledger_path: Path = Path(".promote-release/ledger.db")

    # Object stores
    store_backend: Literal["s3", "filesystem"] = "s3"
    filesystem_root: Path = Path(".promote-release/buckets")
    s3_endpoint_url: str | None = None
    s3_region: str = "us-east-1"
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    s3_addressing_style: Literal["auto", "path", "virtual"] = "auto"
    staging_bucket: str = "dev-static"
    staging_prefix: str = "staging"
    production_bucket: str = "static"
    production_prefix: str = "dist"
    connect_timeout_seconds: float = 10.0
    read_timeout_seconds: float = 60.0
    s3_part_size_bytes: int = 8 * 1024 * 1024  # multipart upload part size

    # Channels
    channels: list[str] = Field(default_factory=lambda: list(DEFAULT_CHANNELS))
    override_release: str | None = None

    # Signing: Ed25519 seed as hex, or a file holding it
    signing_key: str = ""
    signing_key_path: Path | None = None
    signing_public_key: str = ""  # expected public key (hex); empty = trust the loaded key
    signing_allowed_channels: list[str] = Field(default_factory=list)  # empty = any channel

    # Retry policy for transient store/signing failures
    retry_max_attempts: int = 4
    retry_initial_delay_ms: int = 500
    retry_backoff_multiplier: float = 2.0
    retry_max_delay_ms: int = 8000
    retry_jitter: bool = True

    # Concurrency
    max_concurrent_channels: int = 4

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


# Module-level singleton, import as `from promote_release.config import config`
config = PromoteConfig()
