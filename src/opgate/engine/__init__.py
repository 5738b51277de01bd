"""Validation engine — operation lifecycle and the account validator."""

from opgate.engine.state_machine import OperationLifecycle, OperationState, TransitionError
from opgate.engine.validator import AccountValidator, ValidationReport

__all__ = [
    "AccountValidator",
    "OperationLifecycle",
    "OperationState",
    "TransitionError",
    "ValidationReport",
]
