"""Key layout of the staging and production stores.

Staging::

    {staging_prefix}/{channel}/{release}/{file}
    {staging_prefix}/{channel}/{release}/{file}.sha256     (optional sidecar)
    {staging_prefix}/{channel}/{release}/release.json      (optional descriptor)

Production::

    {production_prefix}/{channel}/{release}/{file}
    {production_prefix}/{channel}/{release}/{file}.sha256
    {production_prefix}/{channel}/{release}/{file}.{key_id}.sig
    {production_prefix}/{channel}/{release}/manifest.json
    {production_prefix}/{channel}/{release}/manifest.json.{key_id}.sig
    {production_prefix}/channel-{channel}.json              (the pointer)

A release is sealed once its ``manifest.json`` exists.  Objects under a
sealed release are never rewritten; a new signing key adds its own
``.{key_id}.sig`` files next to the existing ones.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

CHECKSUM_SUFFIX = ".sha256"
SIGNATURE_SUFFIX = ".sig"
RELEASE_DESCRIPTOR = "release.json"
MANIFEST_NAME = "manifest.json"

SIDECAR_SUFFIXES = (CHECKSUM_SUFFIX, SIGNATURE_SUFFIX)


def signature_suffix(key_id: str) -> str:
    """Suffix of a detached signature made by *key_id*."""
    return f".{key_id}{SIGNATURE_SUFFIX}"


def _join(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


class StoreLayout(BaseModel):
    """Computes every key the pipeline reads or writes."""

    model_config = ConfigDict(frozen=True)

    staging_prefix: str = "staging"
    production_prefix: str = "dist"

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def staging_channel_prefix(self, channel: str) -> str:
        return _join(self.staging_prefix, channel) + "/"

    def staging_release_prefix(self, channel: str, release: str) -> str:
        return _join(self.staging_prefix, channel, release) + "/"

    def staging_descriptor(self, channel: str, release: str) -> str:
        return _join(self.staging_prefix, channel, release, RELEASE_DESCRIPTOR)

    def release_of_staging_key(self, channel: str, key: str) -> str | None:
        """Return the release id segment of a staging key, if it has one."""
        rest = key[len(self.staging_channel_prefix(channel)):]
        release, sep, _ = rest.partition("/")
        return release if sep and release else None

    # ------------------------------------------------------------------
    # Production
    # ------------------------------------------------------------------

    def artifact_key(self, channel: str, release: str, file_name: str) -> str:
        return _join(self.production_prefix, channel, release, file_name)

    def checksum_key(self, channel: str, release: str, file_name: str) -> str:
        return self.artifact_key(channel, release, file_name) + CHECKSUM_SUFFIX

    def signature_key(self, channel: str, release: str, file_name: str, key_id: str) -> str:
        return self.artifact_key(channel, release, file_name) + signature_suffix(key_id)

    def manifest_key(self, channel: str, release: str) -> str:
        return _join(self.production_prefix, channel, release, MANIFEST_NAME)

    def manifest_signature_key(self, channel: str, release: str, key_id: str) -> str:
        return self.manifest_key(channel, release) + signature_suffix(key_id)

    def pointer_key(self, channel: str) -> str:
        return _join(self.production_prefix, f"channel-{channel}.json")

    def relative(self, key: str) -> str:
        """Path of a production key relative to the distribution root."""
        prefix = _join(self.production_prefix) + "/"
        return key[len(prefix):] if prefix != "/" and key.startswith(prefix) else key
