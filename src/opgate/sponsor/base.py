"""Sponsor policy contract — a third party's willingness to fund and its settlement.

Any sponsoring entity implements two orchestrator-only entry points:

    validate_sponsorship(caller, descriptor, required_prefund, context)
        A pure decision. Accepts by returning, declines by raising
        SponsorDeclined. Never mutates sponsor state.

    settle(caller, actual_cost, context)
        Reconciles the real cost after execution, whether the execution
        succeeded or failed. Records a SettlementRecord in the sponsor's
        own ledger and returns a GAS_SPONSORED event. A repeated call for
        an operation that is already settled is a no-op.

Concrete policies override ``_decide`` (the predicate) and optionally
``_on_settle`` (policy-specific accounting). Adding a policy requires
no change to the orchestrator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from opgate.crypto.identity import require_identity, same_identity
from opgate.errors import SponsorDeclined, UnauthorizedCaller
from opgate.models.operation import OperationDescriptor
from opgate.persistence.event_log import EventKind, EventRecord, emit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SponsorshipContext:
    """Values the orchestrator hands a sponsor when asking it to fund.

    ``allowance`` is a copy of the account's standing approval for this
    sponsor in the sponsor's token (0 when not applicable).
    """
    account: str
    op_hash: bytes
    sponsor_aux: bytes = b""
    allowance: int = 0


@dataclass(frozen=True)
class SettlementContext:
    """Values the orchestrator hands a sponsor after execution."""
    account: str
    op_hash: bytes
    sequence: int
    succeeded: bool
    gas_used: int
    unit_price: int
    sponsor_aux: bytes = b""


@dataclass(frozen=True)
class SettlementRecord:
    op_hash: str
    account: str
    amount: int
    succeeded: bool
    settled_utc: datetime


class SponsorPolicy:
    """Base class for sponsoring entities.

    ``token`` names the token a sponsor charges accounts in; the
    orchestrator passes the account's allowance for it in the context.
    """

    token: Optional[str] = None

    def __init__(self, address: str, owner: str, orchestrator: str) -> None:
        self.address = require_identity(address)
        self.owner = require_identity(owner)
        self._orchestrator = require_identity(orchestrator)
        if self.owner == self._orchestrator:
            raise ValueError("Sponsor owner must be distinct from the orchestrator")
        self._settlements: dict[str, SettlementRecord] = {}

    # ------------------------------------------------------------ entry points

    def validate_sponsorship(
        self,
        caller: str,
        descriptor: OperationDescriptor,
        required_prefund: int,
        context: SponsorshipContext,
    ) -> None:
        self._require_orchestrator(caller)
        reason = self._decide(descriptor, required_prefund, context)
        if reason is not None:
            logger.info(
                "Sponsorship declined",
                extra={"event": "sponsor.declined", "sponsor": self.address, "reason": reason},
            )
            raise SponsorDeclined(self.address, reason)

    def settle(
        self,
        caller: str,
        actual_cost: int,
        context: SettlementContext,
        now: Optional[datetime] = None,
    ) -> list[EventRecord]:
        self._require_orchestrator(caller)
        if actual_cost < 0:
            raise ValueError("actual_cost must be non-negative")
        key = context.op_hash.hex()
        if key in self._settlements:
            return []
        if now is None:
            now = datetime.now(timezone.utc)
        self._on_settle(actual_cost, context)
        self._settlements[key] = SettlementRecord(
            op_hash=key,
            account=context.account,
            amount=actual_cost,
            succeeded=context.succeeded,
            settled_utc=now,
        )
        return [
            emit(
                EventKind.GAS_SPONSORED,
                self.address,
                {"account": context.account, "amount": actual_cost, "sponsor": self.address},
                now,
            )
        ]

    # ------------------------------------------------------------ accounting views

    def settlements(self, account: Optional[str] = None) -> list[SettlementRecord]:
        records = list(self._settlements.values())
        if account is None:
            return records
        return [r for r in records if same_identity(account, r.account)]

    def total_sponsored(self, account: Optional[str] = None) -> int:
        return sum(r.amount for r in self.settlements(account))

    def is_settled(self, op_hash: bytes) -> bool:
        return op_hash.hex() in self._settlements

    # ------------------------------------------------------------ policy hooks

    def _decide(
        self,
        descriptor: OperationDescriptor,
        required_prefund: int,
        context: SponsorshipContext,
    ) -> Optional[str]:
        """Return None to accept, or the reason for declining."""
        raise NotImplementedError

    def _on_settle(self, actual_cost: int, context: SettlementContext) -> None:
        """Policy-specific accounting for a first settlement."""

    def _require_orchestrator(self, caller: str) -> None:
        if not same_identity(caller, self._orchestrator):
            raise UnauthorizedCaller(caller, self._orchestrator)

    def _require_owner(self, caller: str) -> None:
        if not same_identity(caller, self.owner):
            raise UnauthorizedCaller(caller, f"owner of sponsor {self.address}")
