"""Run ledger entry model (append-only, hash-chained audit trail).

One entry is written per promotion run state transition.  The ledger is
local to the promotion service; it never touches the object stores.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single entry in the append-only run ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    channel: str
    release: str = ""
    state_transition: str  # "from_state->to_state", e.g. "verifying->signing"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    detail: dict[str, Any] = {}
    previous_entry_hash: str = ""  # SHA-256 of previous entry's canonical bytes
    entry_hash: str = ""  # computed on append, seals this entry

    @property
    def to_state(self) -> str:
        return self.state_transition.split("->", 1)[-1]
