"""Promotion run state machine model with forward-only transitions."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class RunState(str, Enum):
    """State of a single promotion run for one (channel, release)."""

    DISCOVERING = "discovering"
    VERIFYING = "verifying"
    SIGNING = "signing"
    MANIFEST_BUILDING = "manifest_building"
    PUBLISHING = "publishing"
    CUTOVER = "cutover"
    COMPLETE = "complete"
    FAILED = "failed"


# The happy path, in order.  A run never moves backwards along it.
PIPELINE_ORDER: list[RunState] = [
    RunState.DISCOVERING,
    RunState.VERIFYING,
    RunState.SIGNING,
    RunState.MANIFEST_BUILDING,
    RunState.PUBLISHING,
    RunState.CUTOVER,
    RunState.COMPLETE,
]

TERMINAL_STATES: frozenset[RunState] = frozenset({RunState.COMPLETE, RunState.FAILED})

# Valid state transitions, enforced structurally by RunStateMachine.
# FAILED is reachable from every non-terminal state.  DISCOVERING may jump
# straight to COMPLETE when the channel already points at the release.
VALID_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.DISCOVERING: {RunState.VERIFYING, RunState.COMPLETE, RunState.FAILED},
    RunState.VERIFYING: {RunState.SIGNING, RunState.FAILED},
    RunState.SIGNING: {RunState.MANIFEST_BUILDING, RunState.FAILED},
    RunState.MANIFEST_BUILDING: {RunState.PUBLISHING, RunState.FAILED},
    RunState.PUBLISHING: {RunState.CUTOVER, RunState.FAILED},
    RunState.CUTOVER: {RunState.COMPLETE, RunState.FAILED},
    RunState.COMPLETE: set(),  # terminal
    RunState.FAILED: set(),  # terminal
}


class RunTransition(BaseModel):
    """Records a single state transition for the audit trail."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    from_state: RunState | None
    to_state: RunState
    reason: str | None = None  # populated when entering FAILED
