"""Core data models — descriptors, account policy stores, outcomes."""

from opgate.models.operation import OperationDescriptor
from opgate.models.account import AccountPolicyStore
from opgate.models.outcome import OperationOutcome, OutcomeKind

__all__ = [
    "AccountPolicyStore",
    "OperationDescriptor",
    "OperationOutcome",
    "OutcomeKind",
]
