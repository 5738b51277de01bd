"""Execution — payload encoding, the journaled world state and the executor."""

from opgate.execution.calls import ActionRequest, Call, decode_payload, encode_calls
from opgate.execution.world import CallContext, WorldState
from opgate.execution.executor import ExecutionReceipt, Executor

__all__ = [
    "ActionRequest",
    "Call",
    "CallContext",
    "ExecutionReceipt",
    "Executor",
    "WorldState",
    "decode_payload",
    "encode_calls",
]
