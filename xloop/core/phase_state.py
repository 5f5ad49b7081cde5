"""Phase states and transitions for driving a single task."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .exceptions import ExecutionError


class Phase(str, Enum):
    """Agent invocation phases, in execution order."""

    IMPLEMENT = "implement"
    REVIEW = "review"
    FINALIZE = "finalize"


class PhaseState(str, Enum):
    """States of the per-task phase state machine."""

    IMPLEMENT = "implement"
    REVIEW = "review"
    FINALIZE = "finalize"
    DONE = "done"
    ABORTED = "aborted"


class StateTransitionError(ExecutionError):
    """Raised when an invalid state transition is attempted."""

    pass


class StateTransition(BaseModel):
    """Represents a state transition event."""

    from_state: PhaseState
    to_state: PhaseState
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


# Valid state transitions
VALID_TRANSITIONS: Dict[PhaseState, List[PhaseState]] = {
    PhaseState.IMPLEMENT: [
        PhaseState.REVIEW,
        PhaseState.FINALIZE,  # Review skipped
        PhaseState.DONE,  # Completion sentinel short-circuit
        PhaseState.ABORTED,
    ],
    PhaseState.REVIEW: [PhaseState.FINALIZE, PhaseState.ABORTED],
    PhaseState.FINALIZE: [PhaseState.DONE, PhaseState.ABORTED],
    PhaseState.DONE: [],  # Terminal state
    PhaseState.ABORTED: [],  # Terminal state
}


def is_valid_transition(from_state: PhaseState, to_state: PhaseState) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, [])


def get_valid_next_states(current_state: PhaseState) -> List[PhaseState]:
    """Get list of valid next states for a given state."""
    return VALID_TRANSITIONS.get(current_state, [])


def is_terminal_state(state: PhaseState) -> bool:
    """Check if a state is terminal (no further transitions allowed)."""
    return len(VALID_TRANSITIONS.get(state, [])) == 0


class PhaseStateMachine:
    """Tracks one task's progress through the phases.

    Every transition is checked against VALID_TRANSITIONS and recorded in
    the history, so a finished run can explain how it got where it is.
    """

    def __init__(self, task_id: Optional[str]):
        self.task_id = task_id
        self.current_state = PhaseState.IMPLEMENT
        self.history: List[StateTransition] = []

    def transition(
        self,
        to_state: PhaseState,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PhaseState:
        """Move to a new state.

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        from_state = self.current_state
        if not is_valid_transition(from_state, to_state):
            valid_states = get_valid_next_states(from_state)
            raise StateTransitionError(
                f"Invalid transition for task {self.task_id}: "
                f"{from_state.value} -> {to_state.value}. "
                f"Valid next states: {[s.value for s in valid_states]}"
            )

        self.history.append(
            StateTransition(
                from_state=from_state,
                to_state=to_state,
                reason=reason,
                metadata=metadata or {},
            )
        )
        self.current_state = to_state
        return to_state

    def abort(self, reason: str) -> PhaseState:
        """Move to ABORTED from any non-terminal state."""
        return self.transition(PhaseState.ABORTED, reason=reason)

    @property
    def is_terminal(self) -> bool:
        return is_terminal_state(self.current_state)
