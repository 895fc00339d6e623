"""Error taxonomy for release promotion.

Every failure a promotion run can report is a ``PromotionError``.  Each class
carries three attributes consumed by the orchestrator and the CLI:

- ``classification``: stable machine-readable name used for alert routing.
- ``exit_code``: process exit code of ``promote-release``.
- ``retryable``: whether the component that observed the error may
  retry it locally with backoff.

Exit codes
----------
0  success (including an idempotent no-op)
1  PromotionError (unclassified)
2  UnknownChannelError
3  NotFound
4  IntegrityViolation
5  SigningUnavailable
6  SigningRejected
7  IncompleteRelease
8  StoreTransientError
9  CutoverConflict
10 ConfigurationError
11 RunCancelled
"""

from __future__ import annotations

from typing import ClassVar


class PromotionError(Exception):
    """Base class for every promotion failure."""

    classification: ClassVar[str] = "error"
    exit_code: ClassVar[int] = 1
    retryable: ClassVar[bool] = False


class UnknownChannelError(PromotionError):
    """The requested channel is not configured.  Fatal."""

    classification = "unknown_channel"
    exit_code = 2

    def __init__(self, channel: str, known: list[str] | None = None) -> None:
        self.channel = channel
        self.known = known or []
        msg = f"Unknown channel {channel!r}"
        if self.known:
            msg += f" (configured: {', '.join(self.known)})"
        super().__init__(msg)


class NotFound(PromotionError):
    """Nothing is staged for the channel/release yet.

    Not an operator alert: the caller is expected to retry later, once CI
    has uploaded the build.
    """

    classification = "not_found"
    exit_code = 3

    def __init__(self, channel: str, release: str | None = None, detail: str = "") -> None:
        self.channel = channel
        self.release = release
        where = f"{channel}/{release}" if release else channel
        msg = f"Nothing staged for {where}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class IntegrityViolation(PromotionError):
    """An artifact's bytes do not match its declared checksum or size."""

    classification = "integrity_violation"
    exit_code = 4

    def __init__(
        self,
        artifact: str,
        *,
        expected: str = "",
        actual: str = "",
        reason: str = "",
    ) -> None:
        self.artifact = artifact
        self.expected = expected
        self.actual = actual
        if reason:
            msg = f"Integrity violation for {artifact}: {reason}"
        else:
            msg = (
                f"Integrity violation for {artifact}: "
                f"expected sha256 {expected}, got {actual}"
            )
        super().__init__(msg)


class SigningUnavailable(PromotionError):
    """The signing key or backend cannot be reached right now."""

    classification = "signing_unavailable"
    exit_code = 5
    retryable = True


class SigningRejected(PromotionError):
    """The signing backend explicitly refused to sign.  Fatal, alert."""

    classification = "signing_rejected"
    exit_code = 6


class IncompleteRelease(PromotionError):
    """A manifest was requested over unverified or unsigned artifacts.

    This indicates an internal ordering bug and must alert loudly.
    """

    classification = "incomplete_release"
    exit_code = 7

    def __init__(self, release: str, missing: list[str]) -> None:
        self.release = release
        self.missing = missing
        super().__init__(
            f"Release {release} is incomplete; not verified/signed: {', '.join(missing)}"
        )


class StoreTransientError(PromotionError):
    """A network or object-store hiccup.  Retried with backoff."""

    classification = "store_transient"
    exit_code = 8
    retryable = True


class CutoverConflict(PromotionError):
    """The channel pointer changed underneath this run.  Never overwritten."""

    classification = "cutover_conflict"
    exit_code = 9

    def __init__(self, channel: str, expected: str | None, actual: str | None) -> None:
        self.channel = channel
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Channel {channel} pointer changed during promotion "
            f"(expected version {expected or '<absent>'}, found {actual or '<absent>'}); "
            f"refusing to overwrite"
        )


class ConfigurationError(PromotionError):
    """The process is misconfigured and cannot start."""

    classification = "configuration"
    exit_code = 10


class RunCancelled(PromotionError):
    """The run was cancelled before cutover; production is untouched."""

    classification = "cancelled"
    exit_code = 11


class ObjectNotFoundError(KeyError):
    """Raised by object stores when a key does not exist."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(key)

    def __str__(self) -> str:
        return f"Object not found: {self.key}"


class PreconditionFailedError(RuntimeError):
    """Raised by object stores when a conditional write is rejected."""

    def __init__(self, key: str, current_etag: str | None = None) -> None:
        self.key = key
        self.current_etag = current_etag
        super().__init__(f"Precondition failed for {key}")
