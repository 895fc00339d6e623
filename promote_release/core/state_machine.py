"""Forward-only promotion run state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- No transition out of a terminal state
- Every transition recorded in the run ledger before it takes effect
"""

from __future__ import annotations

from typing import Any

from promote_release.core.run_ledger import RunLedger
from promote_release.models.ledger import LedgerEntry
from promote_release.models.stages import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    RunState,
    RunTransition,
)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class RunStateMachine:
    """Tracks one promotion run and records its transitions.

    Parameters
    ----------
    ledger:
        The run ledger to record transitions into.
    run_id:
        Identifier of the run being tracked.
    channel:
        Channel the run promotes.
    """

    def __init__(self, ledger: RunLedger, run_id: str, channel: str) -> None:
        self._ledger = ledger
        self.run_id = run_id
        self.channel = channel
        self.release = ""
        self._state = RunState.DISCOVERING
        self._transitions: list[RunTransition] = []

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def transitions(self) -> list[RunTransition]:
        return list(self._transitions)

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def start(self, detail: dict[str, Any] | None = None) -> LedgerEntry:
        """Record entry into DISCOVERING."""
        entry = self._ledger.append(
            LedgerEntry(
                run_id=self.run_id,
                channel=self.channel,
                release=self.release,
                state_transition=f"->{RunState.DISCOVERING.value}",
                detail=detail or {},
            )
        )
        self._transitions.append(
            RunTransition(run_id=self.run_id, from_state=None, to_state=RunState.DISCOVERING)
        )
        return entry

    def transition(
        self,
        target_state: RunState,
        *,
        reason: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        """Move to *target_state*, recording it in the ledger.

        Returns the sealed LedgerEntry.
        """
        current = self._state
        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition run {self.run_id} from {current.value} to "
                f"{target_state.value}. Allowed: {sorted(s.value for s in allowed)}"
            )

        payload = dict(detail or {})
        if reason:
            payload["reason"] = reason
        entry = self._ledger.append(
            LedgerEntry(
                run_id=self.run_id,
                channel=self.channel,
                release=self.release,
                state_transition=f"{current.value}->{target_state.value}",
                detail=payload,
            )
        )
        self._state = target_state
        self._transitions.append(
            RunTransition(
                run_id=self.run_id,
                from_state=current,
                to_state=target_state,
                reason=reason,
            )
        )
        return entry

    def get_available_transitions(self) -> set[RunState]:
        return set(VALID_TRANSITIONS.get(self._state, set()))
