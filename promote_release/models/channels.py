"""Channel and channel-pointer models.

The pointer is a small alias object in the production store.  Its store
version token (ETag) is kept alongside, outside the serialized document,
so the Publisher can compare-and-swap it at cutover.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from promote_release.models.release import Release

DEFAULT_CHANNELS: list[str] = ["stable", "beta", "nightly"]

POINTER_SCHEMA_VERSION = "1"


class ChannelPointer(BaseModel):
    """The "current" pointer of a channel, as published.

    Installers read this first to find the manifest of the live release.
    """

    model_config = ConfigDict(frozen=True)

    schema_version: str = POINTER_SCHEMA_VERSION
    channel: str
    release: str
    version: str
    manifest_key: str
    manifest_sha256: str
    manifest_signature_key: str
    previous_release: str | None = None
    published_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class ObservedPointer(BaseModel):
    """A pointer as read from the store, with its version token.

    ``pointer`` is None when the channel has never been published.
    """

    model_config = ConfigDict(frozen=True)

    channel: str
    pointer: ChannelPointer | None = None
    etag: str | None = None

    @property
    def release(self) -> str | None:
        return self.pointer.release if self.pointer else None


class Channel(BaseModel):
    """A release track with its current pointer and promotion history."""

    model_config = ConfigDict(frozen=True)

    name: str
    current: ChannelPointer | None = None
    history: list[Release] = []
