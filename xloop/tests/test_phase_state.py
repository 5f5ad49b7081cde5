"""Tests for the per-task phase state machine."""

import pytest

from xloop.core.phase_state import (
    PhaseState,
    PhaseStateMachine,
    StateTransitionError,
    get_valid_next_states,
    is_terminal_state,
    is_valid_transition,
)


class TestTransitionTable:
    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (PhaseState.IMPLEMENT, PhaseState.REVIEW),
            (PhaseState.IMPLEMENT, PhaseState.FINALIZE),
            (PhaseState.IMPLEMENT, PhaseState.DONE),
            (PhaseState.REVIEW, PhaseState.FINALIZE),
            (PhaseState.FINALIZE, PhaseState.DONE),
        ],
    )
    def test_valid(self, from_state, to_state):
        assert is_valid_transition(from_state, to_state)

    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (PhaseState.REVIEW, PhaseState.DONE),
            (PhaseState.FINALIZE, PhaseState.REVIEW),
            (PhaseState.DONE, PhaseState.IMPLEMENT),
            (PhaseState.ABORTED, PhaseState.IMPLEMENT),
        ],
    )
    def test_invalid(self, from_state, to_state):
        assert not is_valid_transition(from_state, to_state)

    @pytest.mark.parametrize(
        "state", [PhaseState.IMPLEMENT, PhaseState.REVIEW, PhaseState.FINALIZE]
    )
    def test_aborted_reachable_from_every_active_state(self, state):
        assert PhaseState.ABORTED in get_valid_next_states(state)

    def test_terminal_states(self):
        assert is_terminal_state(PhaseState.DONE)
        assert is_terminal_state(PhaseState.ABORTED)
        assert not is_terminal_state(PhaseState.REVIEW)


class TestPhaseStateMachine:
    def test_full_cycle(self):
        machine = PhaseStateMachine("task-1")
        assert machine.current_state == PhaseState.IMPLEMENT

        machine.transition(PhaseState.REVIEW)
        machine.transition(PhaseState.FINALIZE)
        machine.transition(PhaseState.DONE, reason="finalized")

        assert machine.is_terminal
        assert [t.to_state for t in machine.history] == [
            PhaseState.REVIEW,
            PhaseState.FINALIZE,
            PhaseState.DONE,
        ]
        assert machine.history[-1].reason == "finalized"

    def test_abort(self):
        machine = PhaseStateMachine("task-1")
        machine.transition(PhaseState.REVIEW)
        machine.abort("review failed")
        assert machine.current_state == PhaseState.ABORTED
        assert machine.history[-1].reason == "review failed"

    def test_invalid_transition_raises(self):
        machine = PhaseStateMachine("task-1")
        with pytest.raises(StateTransitionError) as exc_info:
            machine.transition(PhaseState.IMPLEMENT)
        assert "implement -> implement" in str(exc_info.value)
        assert machine.history == []

    def test_cannot_leave_terminal_state(self):
        machine = PhaseStateMachine("task-1")
        machine.abort("boom")
        with pytest.raises(StateTransitionError):
            machine.abort("again")
