"""Tests for the operation lifecycle — proves transition rules are fail-closed."""

import pytest

from opgate.engine.state_machine import (
    TERMINAL_STATES,
    OperationLifecycle,
    OperationState,
    TransitionError,
    is_legal,
)

S = OperationState


class TestLegalPaths:
    def test_executed_without_sponsor(self) -> None:
        lc = OperationLifecycle()
        for target in (S.VALIDATING, S.VALIDATED, S.EXECUTING, S.EXECUTED):
            lc.advance(target)
        assert lc.is_terminal
        assert lc.history == [S.SUBMITTED, S.VALIDATING, S.VALIDATED, S.EXECUTING, S.EXECUTED]

    def test_rejected_at_validation(self) -> None:
        lc = OperationLifecycle()
        lc.advance(S.VALIDATING)
        lc.advance(S.REJECTED)
        assert lc.is_terminal

    @pytest.mark.parametrize("outcome", [S.EXECUTED, S.EXECUTION_FAILED])
    def test_sponsored_paths_settle(self, outcome: OperationState) -> None:
        lc = OperationLifecycle()
        for target in (S.VALIDATING, S.VALIDATED, S.EXECUTING, outcome, S.SETTLING, S.SETTLED):
            lc.advance(target)
        assert lc.state == S.SETTLED


class TestIllegalTransitions:
    def test_cannot_skip_validation(self) -> None:
        lc = OperationLifecycle()
        with pytest.raises(TransitionError):
            lc.advance(S.EXECUTING)
        assert lc.state == S.SUBMITTED
        assert lc.history == [S.SUBMITTED]

    def test_rejected_cannot_execute(self) -> None:
        lc = OperationLifecycle()
        lc.advance(S.VALIDATING)
        lc.advance(S.REJECTED)
        with pytest.raises(TransitionError):
            lc.advance(S.EXECUTING)

    def test_settled_is_final(self) -> None:
        for target in OperationState:
            assert not is_legal(S.SETTLED, target)

    def test_rejected_is_final(self) -> None:
        for target in OperationState:
            assert not is_legal(S.REJECTED, target)

    def test_no_return_to_validating(self) -> None:
        assert not is_legal(S.EXECUTION_FAILED, S.VALIDATING)
        assert not is_legal(S.VALIDATED, S.VALIDATING)

    def test_submitted_is_not_terminal(self) -> None:
        assert S.SUBMITTED not in TERMINAL_STATES
        assert not OperationLifecycle().is_terminal
