"""Report models: outputs of the promotion publisher and channel verification."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class PublishResult(BaseModel):
    """Write accounting for one publish pass."""

    model_config = ConfigDict(frozen=True)

    writes: int = 0  # objects written to production
    skipped: int = 0  # objects already present with matching bytes
    keys: list[str] = []  # every production key the release occupies


class ArtifactCheck(BaseModel):
    """Result of re-checking one published artifact."""

    model_config = ConfigDict(frozen=True)

    name: str
    target: str
    path: str
    checksum_ok: bool = False
    signature_ok: bool = False
    problems: list[str] = []

    @property
    def ok(self) -> bool:
        return self.checksum_ok and self.signature_ok and not self.problems


class ChannelVerificationReport(BaseModel):
    """Post-deploy smoke test of everything a channel pointer references."""

    model_config = ConfigDict(frozen=True)

    channel: str
    release: str = ""
    version: str = ""
    manifest_key: str = ""
    manifest_ok: bool = False
    manifest_signature_ok: bool = False
    artifacts: list[ArtifactCheck] = []
    problems: list[str] = []
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def passed(self) -> bool:
        return (
            self.manifest_ok
            and self.manifest_signature_ok
            and not self.problems
            and all(a.ok for a in self.artifacts)
        )
