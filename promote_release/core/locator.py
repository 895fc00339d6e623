"""Artifact Locator: finds what CI staged for a channel.

Staged objects live at ``{staging_prefix}/{channel}/{release}/{file}``.  For
each candidate file the locator resolves the declared checksum, size,
component and target, and returns them as a ``ReleaseCandidate``.  It never
writes.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date

from promote_release.core.hasher import normalize_digest
from promote_release.core.retry import RetryPolicy
from promote_release.errors import (
    IntegrityViolation,
    NotFound,
    ObjectNotFoundError,
    PromotionError,
    UnknownChannelError,
)
from promote_release.models.artifacts import Artifact
from promote_release.models.release import ReleaseCandidate
from promote_release.storage.base import ObjectStore
from promote_release.storage.layout import (
    CHECKSUM_SUFFIX,
    RELEASE_DESCRIPTOR,
    SIDECAR_SUFFIXES,
    StoreLayout,
)

logger = logging.getLogger(__name__)

# Longest first so ".tar.gz" wins over ".gz".
ARCHIVE_EXTENSIONS: tuple[str, ...] = (
    ".tar.gz",
    ".tar.xz",
    ".tar.zst",
    ".tar.bz2",
    ".tgz",
    ".zip",
    ".msi",
    ".pkg",
    ".gz",
    ".xz",
)

# Start of a platform triple: the architecture field.
_TARGET_RE = re.compile(
    r"^(?P<component>.+?)-(?P<target>"
    r"(?:x86_64|i[3-6]86|aarch64|arm\w*|thumb\w*|riscv\w*|wasm\w*|"
    r"powerpc\w*|s390x|mips\w*|sparc\w*|loongarch\w*|nvptx\w*|avr)"
    r"(?:-[\w.]+)*)$"
)

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")

# Target recorded for components that are not platform specific.
ANY_TARGET = "*"


def strip_extension(file_name: str) -> str:
    for ext in ARCHIVE_EXTENSIONS:
        if file_name.endswith(ext):
            return file_name[: -len(ext)]
    return file_name


def parse_file_name(file_name: str, channel: str = "") -> tuple[str, str]:
    """Split ``<component>-<target>.<ext>`` into ``(component, target)``.

    A trailing ``-<channel>`` on the component (``rustc-nightly-x86_64-...``)
    is dropped.  Files without a recognizable target are target-independent
    and get ``"*"``.
    """
    stem = strip_extension(file_name)
    match = _TARGET_RE.match(stem)
    if match is None:
        component, target = stem, ANY_TARGET
    else:
        component, target = match.group("component"), match.group("target")
    if channel and component.endswith(f"-{channel}"):
        component = component[: -len(channel) - 1]
    return component, target


class ArtifactLocator:
    """Enumerates staged release candidates.

    Parameters
    ----------
    staging:
        The staging object store.
    layout:
        Key layout shared with the Publisher.
    channels:
        Configured channel names; anything else is rejected.
    override_release:
        Release id used when the caller does not name one.
    retry:
        Policy for transient store failures.
    """

    def __init__(
        self,
        staging: ObjectStore,
        layout: StoreLayout,
        channels: list[str],
        *,
        override_release: str | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._staging = staging
        self._layout = layout
        self._channels = list(channels)
        self._override_release = override_release or None
        self._retry = retry or RetryPolicy()

    # ------------------------------------------------------------------
    # Release resolution
    # ------------------------------------------------------------------

    def check_channel(self, channel: str) -> None:
        if channel not in self._channels:
            raise UnknownChannelError(channel, self._channels)

    def staged_releases(self, channel: str) -> list[str]:
        """Release ids that have at least one candidate file, sorted."""
        self.check_channel(channel)
        prefix = self._layout.staging_channel_prefix(channel)
        keys = self._retry.call(
            lambda: self._staging.list_keys(prefix), op=f"list {prefix}"
        )
        releases = set()
        for key in keys:
            release = self._layout.release_of_staging_key(channel, key)
            if release and self._is_candidate(key):
                releases.add(release)
        return sorted(releases)

    def resolve_release(self, channel: str, release: str | None = None) -> str:
        """Pick the release to promote.

        Explicit *release* wins, then the configured override, then the
        lexicographically greatest staged release id.
        """
        self.check_channel(channel)
        if release:
            return release
        if self._override_release:
            logger.info(
                "Using override release %s for channel %s",
                self._override_release,
                channel,
            )
            return self._override_release
        staged = self.staged_releases(channel)
        if not staged:
            raise NotFound(channel)
        return staged[-1]

    # ------------------------------------------------------------------
    # Candidate discovery
    # ------------------------------------------------------------------

    def locate(self, channel: str, release: str | None = None) -> ReleaseCandidate:
        """Return the candidate for *channel* (and *release*, if given).

        Raises
        ------
        UnknownChannelError
            *channel* is not configured.
        NotFound
            Nothing is staged for the channel or the resolved release.
        IntegrityViolation
            A staged file has no usable declared checksum or size.
        """
        resolved = self.resolve_release(channel, release)
        prefix = self._layout.staging_release_prefix(channel, resolved)
        keys = self._retry.call(
            lambda: self._staging.list_keys(prefix), op=f"list {prefix}"
        )
        present = set(keys)
        candidates = [k for k in keys if self._is_candidate(k)]
        if not candidates:
            raise NotFound(channel, resolved)

        artifacts = [self._describe(channel, key, present) for key in candidates]
        artifacts.sort(key=lambda a: (a.name, a.target, a.staging_key))

        seen: dict[tuple[str, str], str] = {}
        for artifact in artifacts:
            ident = (artifact.name, artifact.target)
            if ident in seen:
                raise IntegrityViolation(
                    artifact.file_name,
                    reason=f"duplicate component/target {ident} (also {seen[ident]})",
                )
            seen[ident] = artifact.file_name

        version, release_date = self._read_descriptor(channel, resolved)
        logger.info(
            "Located %d artifact(s) for %s/%s", len(artifacts), channel, resolved
        )
        return ReleaseCandidate(
            channel=channel,
            release=resolved,
            version=version,
            date=release_date,
            artifacts=artifacts,
        )

    @staticmethod
    def _is_candidate(key: str) -> bool:
        file_name = key.rsplit("/", 1)[-1]
        if file_name == RELEASE_DESCRIPTOR or file_name.startswith("."):
            return False
        return not file_name.endswith(SIDECAR_SUFFIXES)

    def _describe(self, channel: str, key: str, present: set[str]) -> Artifact:
        file_name = key.rsplit("/", 1)[-1]
        info = self._retry.call(lambda: self._staging.head(key), op=f"head {key}")
        if info is None:
            raise NotFound(channel, detail=f"{key} disappeared during discovery")
        meta = {k.lower(): v for k, v in info.metadata.items()}

        declared = meta.get("sha256")
        if not declared and key + CHECKSUM_SUFFIX in present:
            declared = self._read_sidecar(key + CHECKSUM_SUFFIX)
        if not declared:
            raise IntegrityViolation(file_name, reason="no declared sha256 checksum")
        digest = normalize_digest(declared)
        if not _SHA256_RE.match(digest):
            raise IntegrityViolation(
                file_name, reason=f"malformed declared checksum {declared!r}"
            )

        size = info.size
        if "size" in meta:
            try:
                size = int(meta["size"])
            except ValueError:
                raise IntegrityViolation(
                    file_name, reason=f"malformed declared size {meta['size']!r}"
                ) from None

        parsed_component, parsed_target = parse_file_name(file_name, channel)
        return Artifact(
            name=meta.get("component") or parsed_component,
            target=meta.get("target") or parsed_target,
            file_name=file_name,
            staging_key=key,
            size_bytes=size,
            sha256=digest,
        )

    def _read_sidecar(self, key: str) -> str:
        try:
            raw = self._retry.call(lambda: self._staging.get(key), op=f"get {key}")
        except ObjectNotFoundError:
            return ""
        tokens = raw.decode("utf-8", errors="replace").split()
        return tokens[0] if tokens else ""

    def _read_descriptor(self, channel: str, release: str) -> tuple[str, str | None]:
        default_date = release if _is_iso_date(release) else None
        key = self._layout.staging_descriptor(channel, release)
        try:
            raw = self._retry.call(lambda: self._staging.get(key), op=f"get {key}")
        except ObjectNotFoundError:
            return release, default_date
        try:
            doc = json.loads(raw)
        except ValueError as exc:
            raise PromotionError(f"Malformed release descriptor {key}: {exc}") from exc
        if not isinstance(doc, dict):
            raise PromotionError(f"Malformed release descriptor {key}: not an object")
        return str(doc.get("version") or release), doc.get("date") or default_date


def _is_iso_date(value: str) -> bool:
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return len(value) == 10
