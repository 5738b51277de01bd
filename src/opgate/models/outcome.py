"""Operation outcomes — the discriminated result returned per descriptor."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

from opgate.engine.state_machine import OperationState
from opgate.errors import ProtocolError
from opgate.persistence.event_log import EventRecord


class OutcomeKind(str, enum.Enum):
    EXECUTED = "executed"                    # validated and executed
    REJECTED = "rejected"                    # rejected at validation
    SPONSOR_DECLINED = "sponsor_declined"    # rejected by the sponsor
    EXECUTION_FAILED = "execution_failed"    # validated, execution reverted


@dataclass(frozen=True)
class OperationOutcome:
    """What happened to one submitted descriptor.

    ``events`` holds every event this operation produced, in order.
    ``settlement_error`` is set only when a sponsor's settle hook raised.
    """
    op_hash: str
    account: str
    sequence: int
    kind: OutcomeKind
    state: OperationState
    history: tuple[OperationState, ...]
    error: Optional[ProtocolError] = None
    sponsor: Optional[str] = None
    gas_used: int = 0
    actual_cost: int = 0
    return_data: tuple[bytes, ...] = field(default_factory=tuple)
    events: tuple[EventRecord, ...] = field(default_factory=tuple)
    settlement_error: Optional[ProtocolError] = None

    @property
    def succeeded(self) -> bool:
        return self.kind == OutcomeKind.EXECUTED

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error is not None else None

    def summary(self) -> dict[str, Any]:
        """JSON-safe summary for logs and the CLI."""
        return {
            "op_hash": self.op_hash,
            "account": self.account,
            "sequence": self.sequence,
            "kind": self.kind.value,
            "state": self.state.value,
            "error_kind": self.error_kind,
            "error": str(self.error) if self.error is not None else None,
            "sponsor": self.sponsor,
            "gas_used": self.gas_used,
            "actual_cost": self.actual_cost,
            "settlement_error": (
                self.settlement_error.kind if self.settlement_error is not None else None
            ),
            "events": [e.event_kind.value for e in self.events],
        }
