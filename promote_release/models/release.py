"""Release candidate, published release, and promotion run records."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from promote_release.models.artifacts import Artifact
from promote_release.models.stages import RunState


class ReleaseCandidate(BaseModel):
    """What the Artifact Locator found in staging for one channel/release."""

    model_config = ConfigDict(frozen=True)

    channel: str
    release: str
    version: str
    date: str | None = None
    artifacts: list[Artifact]


class Release(BaseModel):
    """A published release.  Never mutated after cutover."""

    model_config = ConfigDict(frozen=True)

    channel: str
    release: str
    version: str
    manifest_key: str
    manifest_sha256: str = ""
    artifact_count: int = 0
    published_at: datetime | None = None


class RunFailure(BaseModel):
    """Why a run ended in FAILED."""

    model_config = ConfigDict(frozen=True)

    classification: str
    message: str
    exit_code: int
    failed_in: RunState


class PromotionRun(BaseModel):
    """Transient record of one orchestration attempt for one channel/release."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    channel: str
    release: str | None = None
    state: RunState = RunState.DISCOVERING
    attempt: int = 1
    dry_run: bool = False
    no_op: bool = False
    failure: RunFailure | None = None
    manifest_key: str | None = None
    manifest_sha256: str | None = None
    writes: int = 0
    skipped: int = 0
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        """Complete, or a dry run that got through manifest building."""
        if self.dry_run:
            return self.failure is None
        return self.state == RunState.COMPLETE

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else (self.failure.exit_code if self.failure else 1)
