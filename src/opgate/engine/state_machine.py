"""Operation lifecycle state machine — enforces the exact transition rules.

    SUBMITTED → VALIDATING → {VALIDATED | REJECTED}
    VALIDATED → EXECUTING → {EXECUTED | EXECUTION_FAILED}
    {EXECUTED | EXECUTION_FAILED} → SETTLING → SETTLED   (sponsor engaged)

Transitions are fail-closed: any transition not explicitly allowed is
rejected. REJECTED and SETTLED are always terminal; EXECUTED and
EXECUTION_FAILED are terminal when no sponsor was engaged.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class OperationState(str, enum.Enum):
    SUBMITTED = "submitted"
    VALIDATING = "validating"
    VALIDATED = "validated"
    REJECTED = "rejected"
    EXECUTING = "executing"
    EXECUTED = "executed"
    EXECUTION_FAILED = "execution_failed"
    SETTLING = "settling"
    SETTLED = "settled"


# Legal transitions: (from_state, to_state)
_TRANSITIONS: set[tuple[OperationState, OperationState]] = {
    (OperationState.SUBMITTED, OperationState.VALIDATING),
    (OperationState.VALIDATING, OperationState.VALIDATED),
    (OperationState.VALIDATING, OperationState.REJECTED),
    (OperationState.VALIDATED, OperationState.EXECUTING),
    (OperationState.EXECUTING, OperationState.EXECUTED),
    (OperationState.EXECUTING, OperationState.EXECUTION_FAILED),
    (OperationState.EXECUTED, OperationState.SETTLING),
    (OperationState.EXECUTION_FAILED, OperationState.SETTLING),
    (OperationState.SETTLING, OperationState.SETTLED),
}

TERMINAL_STATES = frozenset({
    OperationState.REJECTED,
    OperationState.EXECUTED,
    OperationState.EXECUTION_FAILED,
    OperationState.SETTLED,
})


class TransitionError(Exception):
    """Raised when a lifecycle transition is not allowed."""


def is_legal(current: OperationState, target: OperationState) -> bool:
    return (current, target) in _TRANSITIONS


@dataclass
class OperationLifecycle:
    """Tracks one descriptor's walk through the lifecycle."""
    state: OperationState = OperationState.SUBMITTED
    history: list[OperationState] = field(
        default_factory=lambda: [OperationState.SUBMITTED]
    )

    def advance(self, target: OperationState) -> None:
        if not is_legal(self.state, target):
            raise TransitionError(
                f"Illegal transition: {self.state.value} → {target.value}"
            )
        self.state = target
        self.history.append(target)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
