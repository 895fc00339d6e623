"""Append-only, hash-chained run ledger backed by SQLite.

The ledger is the durable record of what every promotion run did.  The
channel history shown by ``promote-release history`` is a projection of it.

Design:
- Append-only: only `append()` writes; no update, no delete.
- Hash-chained per run: each entry includes SHA-256 of the previous entry.
- WAL journal mode for concurrent readers.
- entry_hash UNIQUE constraint for tamper detection.
- A process-wide lock serializes appends, since channels promote
  concurrently from worker threads.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from promote_release.core.hasher import compute_entry_hash
from promote_release.models.ledger import LedgerEntry
from promote_release.models.release import Release
from promote_release.models.stages import RunState

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS run_ledger (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    run_id                TEXT NOT NULL,
    channel               TEXT NOT NULL,
    release               TEXT NOT NULL DEFAULT '',
    state_transition      TEXT NOT NULL,
    timestamp_utc         TEXT NOT NULL,
    detail_json           TEXT NOT NULL DEFAULT '{}',
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_run_id ON run_ledger(run_id, id);
"""

_CREATE_IDX_CHANNEL = """
CREATE INDEX IF NOT EXISTS idx_channel_release ON run_ledger(channel, release, id);
"""


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunLedger:
    """Append-only, hash-chained run ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_RUN)
            conn.execute(_CREATE_IDX_CHANNEL)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Append an entry to the ledger, computing hash chain links.

        Returns the entry with `previous_entry_hash` and `entry_hash` set.
        This is the ONLY write method. There is no update or delete.
        """
        with self._write_lock:
            previous_hash = self._get_latest_hash(entry.run_id)

            entry_dict = entry.model_dump(mode="json")
            entry_dict["previous_entry_hash"] = previous_hash
            entry_dict["entry_hash"] = ""

            sealed = entry.model_copy(
                update={
                    "previous_entry_hash": previous_hash,
                    "entry_hash": compute_entry_hash(entry_dict),
                }
            )
            self._insert(sealed)
        logger.debug(
            "ledger: run %s %s/%s %s",
            sealed.run_id,
            sealed.channel,
            sealed.release or "-",
            sealed.state_transition,
        )
        return sealed

    def _insert(self, entry: LedgerEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO run_ledger
                    (entry_id, run_id, channel, release, state_transition,
                     timestamp_utc, detail_json, previous_entry_hash, entry_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.entry_id,
                    entry.run_id,
                    entry.channel,
                    entry.release,
                    entry.state_transition,
                    entry.timestamp_utc.isoformat()
                    if isinstance(entry.timestamp_utc, datetime)
                    else entry.timestamp_utc,
                    json.dumps(entry.detail, sort_keys=True),
                    entry.previous_entry_hash,
                    entry.entry_hash,
                ),
            )
            conn.commit()

    def _get_latest_hash(self, run_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for a run, ordered chronologically."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM run_ledger WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_channel_entries(self, channel: str) -> list[LedgerEntry]:
        """Return every entry recorded for *channel*, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM run_ledger WHERE channel = ? ORDER BY id ASC",
                (channel,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_all_run_ids(self) -> list[str]:
        """Return all distinct run_ids, most recent first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT run_id, MAX(id) AS last FROM run_ledger "
                "GROUP BY run_id ORDER BY last DESC"
            ).fetchall()
        return [row[0] for row in rows]

    def count_attempts(self, channel: str, release: str) -> int:
        """Number of runs that have started for (*channel*, *release*)."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(DISTINCT run_id) FROM run_ledger "
                "WHERE channel = ? AND release = ?",
                (channel, release),
            ).fetchone()
        return int(row[0]) if row else 0

    def published_releases(self, channel: str) -> list[Release]:
        """Releases that reached cutover on *channel*, oldest first.

        No-op runs (already published) are not repeated in the history.
        """
        complete = f"{RunState.CUTOVER.value}->{RunState.COMPLETE.value}"
        releases: list[Release] = []
        for entry in self.get_channel_entries(channel):
            if entry.state_transition != complete:
                continue
            releases.append(
                Release(
                    channel=entry.channel,
                    release=entry.release,
                    version=entry.detail.get("version", entry.release),
                    manifest_key=entry.detail.get("manifest_key", ""),
                    manifest_sha256=entry.detail.get("manifest_sha256", ""),
                    artifact_count=int(entry.detail.get("artifact_count", 0)),
                    published_at=entry.timestamp_utc,
                )
            )
        return releases

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Verify the hash chain integrity for a run.

        Walks all entries in order, recomputes each entry_hash, and
        verifies that previous_entry_hash links match.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )

            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, "
                    f"got {entry.entry_hash!r}"
                )

            prev_hash = entry.entry_hash

        return True

    def verify_all(self) -> bool:
        """Verify every run's chain.  Raises on the first broken one."""
        for run_id in self.get_all_run_ids():
            self.verify_chain(run_id)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        (
            _id,
            entry_id,
            run_id,
            channel,
            release,
            state_transition,
            timestamp_utc,
            detail_json,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            run_id=run_id,
            channel=channel,
            release=release,
            state_transition=state_transition,
            timestamp_utc=timestamp_utc,
            detail=json.loads(detail_json),
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
