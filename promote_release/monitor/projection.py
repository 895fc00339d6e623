"""RunProjection: read-only view of promotion runs over the RunLedger.

Nothing here is stored.  Every call re-reads the ledger and folds a run's
entries into a ``RunSummary``.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from promote_release.core.run_ledger import LedgerIntegrityError, RunLedger
from promote_release.models.ledger import LedgerEntry
from promote_release.models.stages import RunState


class RunSummary(BaseModel):
    """One promotion run as reconstructed from its ledger entries."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    channel: str
    release: str = ""
    state: RunState = RunState.DISCOVERING
    started_at: datetime | None = None
    finished_at: datetime | None = None
    no_op: bool = False
    dry_run: bool = False
    classification: str = ""
    reason: str = ""
    chain_valid: bool = True

    @property
    def outcome(self) -> str:
        if self.state == RunState.COMPLETE:
            return "no-op" if self.no_op else "published"
        if self.state == RunState.FAILED:
            return self.classification or "failed"
        return "dry-run" if self.dry_run else "incomplete"


class RunProjection:
    """Summaries of runs, newest first.

    Parameters
    ----------
    ledger:
        The ledger to read.
    """

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger

    def summarize(self, run_id: str) -> RunSummary | None:
        entries = self._ledger.get_run_entries(run_id)
        if not entries:
            return None
        try:
            chain_valid = self._ledger.verify_chain(run_id)
        except LedgerIntegrityError:
            chain_valid = False
        return self._fold(entries, chain_valid)

    def runs_for_channel(self, channel: str, limit: int = 20) -> list[RunSummary]:
        """Most recent runs for *channel*, newest first."""
        by_run: dict[str, list[LedgerEntry]] = {}
        for entry in self._ledger.get_channel_entries(channel):
            by_run.setdefault(entry.run_id, []).append(entry)
        run_ids = list(by_run)[::-1][:limit]
        summaries = []
        for run_id in run_ids:
            try:
                chain_valid = self._ledger.verify_chain(run_id)
            except LedgerIntegrityError:
                chain_valid = False
            summaries.append(self._fold(by_run[run_id], chain_valid))
        return summaries

    @staticmethod
    def _fold(entries: list[LedgerEntry], chain_valid: bool) -> RunSummary:
        first, last = entries[0], entries[-1]
        try:
            state = RunState(last.to_state)
        except ValueError:
            state = RunState.DISCOVERING
        release = next((e.release for e in reversed(entries) if e.release), "")
        return RunSummary(
            run_id=first.run_id,
            channel=first.channel,
            release=release,
            state=state,
            started_at=first.timestamp_utc,
            finished_at=last.timestamp_utc if state in (RunState.COMPLETE, RunState.FAILED) else None,
            no_op=bool(last.detail.get("no_op", False)),
            dry_run=bool(first.detail.get("dry_run", False)),
            classification=str(last.detail.get("classification", "")),
            reason=str(last.detail.get("reason", "")),
            chain_valid=chain_valid,
        )
