"""Orchestrator — the single trusted entry point for submitted operations.

For each descriptor the orchestrator walks the lifecycle:

    SUBMITTED → VALIDATING → VALIDATED → EXECUTING → EXECUTED / EXECUTION_FAILED
                           ↘ REJECTED                 ↘ SETTLING → SETTLED

1. Validation: the AccountValidator checks sequence, authorization and
   sponsor reference, then commits the sequence. If a sponsor is named,
   its ``validate_sponsorship`` must also accept. Where the sponsor is
   asked relative to the commit is ``config.sponsor_decline_policy``.
2. Execution: the Executor runs the payload atomically within the
   descriptor's action gas budget. Failure is terminal for the
   operation but does not undo the committed sequence.
3. Settlement: when a sponsor was engaged, its ``settle`` hook runs
   exactly once with the actual cost, whatever the execution outcome.

Every descriptor ends with an OperationOutcome; no error escapes
``submit``. The orchestrator is the only identity the validator,
executor and sponsor hooks accept calls from.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from opgate.config import ProtocolConfig, SponsorDeclinePolicy
from opgate.crypto.identity import normalize_identity
from opgate.crypto.signing import operation_hash
from opgate.engine.state_machine import OperationLifecycle, OperationState
from opgate.engine.validator import AccountValidator
from opgate.errors import (
    ExecutionError,
    ProtocolError,
    SettlementFailed,
    SponsorDeclined,
    UnknownAccount,
)
from opgate.execution.executor import Executor
from opgate.execution.world import WorldState
from opgate.models.account import AccountPolicyStore
from opgate.models.operation import OperationDescriptor
from opgate.models.outcome import OperationOutcome, OutcomeKind
from opgate.persistence.event_log import EventKind, EventLog, EventRecord, emit
from opgate.sponsor.base import SettlementContext, SponsorPolicy, SponsorshipContext
from opgate.sponsor.registry import SponsorRegistry

logger = logging.getLogger(__name__)


class Orchestrator:
    """Sequences validation, execution and settlement.

    Usage:
        config = ProtocolConfig.from_config_dir(config_dir)
        orch = Orchestrator(config)
        store = orch.provision_account(account, owner)
        orch.register_sponsor(UnconditionalSponsor(sponsor, admin, orch.address))

        outcome = orch.submit(signed_descriptor)
        outcomes = orch.submit_batch([op_a, op_b])
    """

    def __init__(
        self,
        config: ProtocolConfig,
        world: Optional[WorldState] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._config = config
        self._world = world if world is not None else WorldState()
        self._event_log = event_log if event_log is not None else EventLog()
        self._validator = AccountValidator(config)
        self._executor = Executor(config, self._world)
        self._sponsors = SponsorRegistry()
        self._accounts: dict[str, AccountPolicyStore] = {}
        self._charges: dict[str, int] = {}

    # ------------------------------------------------------------ wiring

    @property
    def address(self) -> str:
        return self._config.orchestrator

    @property
    def config(self) -> ProtocolConfig:
        return self._config

    @property
    def world(self) -> WorldState:
        return self._world

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def validator(self) -> AccountValidator:
        return self._validator

    @property
    def executor(self) -> Executor:
        return self._executor

    @property
    def sponsors(self) -> SponsorRegistry:
        return self._sponsors

    def provision_account(self, account: str, owner: str) -> AccountPolicyStore:
        """Create and register a fresh account policy store."""
        return self.register_account(AccountPolicyStore.provision(account, owner))

    def register_account(self, store: AccountPolicyStore) -> AccountPolicyStore:
        if store.account in self._accounts:
            raise ValueError(f"Account already registered: {store.account}")
        self._accounts[store.account] = store
        return store

    def account(self, account: str) -> AccountPolicyStore:
        store = self._accounts.get(normalize_identity(account))
        if store is None:
            raise UnknownAccount(f"Unknown account: {account}")
        return store

    def register_sponsor(self, sponsor: SponsorPolicy) -> SponsorPolicy:
        self._sponsors.register(sponsor)
        return sponsor

    def operation_hash(self, op: OperationDescriptor) -> bytes:
        return operation_hash(op, self._config.orchestrator, self._config.chain_id)

    def charged(self, payer: str) -> int:
        """Total actual cost recorded against a payer (account or sponsor)."""
        return self._charges.get(normalize_identity(payer), 0)

    # ------------------------------------------------------------ submission

    def submit_batch(
        self,
        ops: Iterable[OperationDescriptor],
        now: Optional[datetime] = None,
    ) -> list[OperationOutcome]:
        """Run each descriptor's full lifecycle independently, in order."""
        outcomes = [self.submit(op, now) for op in ops]
        logger.info(
            "Batch processed",
            extra={
                "event": "orchestrator.batch",
                "size": len(outcomes),
                "executed": sum(1 for o in outcomes if o.succeeded),
            },
        )
        return outcomes

    def submit(
        self,
        op: OperationDescriptor,
        now: Optional[datetime] = None,
    ) -> OperationOutcome:
        lifecycle = OperationLifecycle()
        digest = self.operation_hash(op)
        events: list[EventRecord] = []

        lifecycle.advance(OperationState.VALIDATING)
        try:
            sponsor = self._validate(op, digest, events, now)
        except ProtocolError as exc:
            lifecycle.advance(OperationState.REJECTED)
            return self._reject(op, digest, lifecycle, exc, events, now)
        lifecycle.advance(OperationState.VALIDATED)

        lifecycle.advance(OperationState.EXECUTING)
        error: Optional[ExecutionError] = None
        return_data: tuple[bytes, ...] = ()
        try:
            receipt = self._executor.execute_payload(
                self.address, op.account, op.payload, op.action_gas_budget, now,
            )
        except ExecutionError as exc:
            error = exc
            execution_gas = exc.gas_used
            lifecycle.advance(OperationState.EXECUTION_FAILED)
        else:
            execution_gas = receipt.gas_used
            return_data = receipt.return_data
            events.extend(receipt.events)
            lifecycle.advance(OperationState.EXECUTED)

        gas_used = self._gas_used(op, execution_gas, sponsor is not None)
        unit_price = op.unit_price(self._config.base_fee_per_unit)
        actual_cost = min(gas_used * unit_price, op.required_prefund)
        payer = sponsor.address if sponsor is not None else op.account
        self._charges[payer] = self._charges.get(payer, 0) + actual_cost
        events.append(
            emit(
                EventKind.OPERATION_CHARGED,
                payer,
                {
                    "account": op.account,
                    "sequence": op.sequence,
                    "gas_used": gas_used,
                    "actual_cost": actual_cost,
                    "succeeded": error is None,
                },
                now,
            )
        )

        settlement_error: Optional[ProtocolError] = None
        if sponsor is not None:
            lifecycle.advance(OperationState.SETTLING)
            context = SettlementContext(
                account=op.account,
                op_hash=digest,
                sequence=op.sequence,
                succeeded=error is None,
                gas_used=gas_used,
                unit_price=unit_price,
                sponsor_aux=op.sponsor_aux,
            )
            try:
                events.extend(sponsor.settle(self.address, actual_cost, context, now))
            except Exception as exc:
                if isinstance(exc, ProtocolError):
                    settlement_error = exc
                else:
                    settlement_error = SettlementFailed(sponsor.address, exc)
                logger.error(
                    "Sponsor settlement failed",
                    extra={
                        "event": "orchestrator.settlement_failed",
                        "sponsor": sponsor.address,
                        "error": str(exc),
                    },
                )
            lifecycle.advance(OperationState.SETTLED)

        outcome = OperationOutcome(
            op_hash="0x" + digest.hex(),
            account=op.account,
            sequence=op.sequence,
            kind=OutcomeKind.EXECUTED if error is None else OutcomeKind.EXECUTION_FAILED,
            state=lifecycle.state,
            history=tuple(lifecycle.history),
            error=error,
            sponsor=sponsor.address if sponsor is not None else None,
            gas_used=gas_used,
            actual_cost=actual_cost,
            return_data=return_data,
            events=tuple(events),
            settlement_error=settlement_error,
        )
        self._event_log.extend(events)
        logger.info(
            "Operation processed",
            extra={
                "event": "orchestrator.processed",
                "account": op.account,
                "sequence": op.sequence,
                "kind": outcome.kind.value,
                "gas_used": gas_used,
            },
        )
        return outcome

    # ------------------------------------------------------------ internals

    def _validate(
        self,
        op: OperationDescriptor,
        digest: bytes,
        events: list[EventRecord],
        now: Optional[datetime],
    ) -> Optional[SponsorPolicy]:
        """Run account and sponsor validation; return the engaged sponsor, if any.

        Events are appended to ``events`` as each step succeeds, so a
        rejection still reports what already happened (e.g. a consumed
        sequence under the CONSUME policy).
        """
        store = self.account(op.account)
        report = self._validator.check(self.address, op, store, digest, now)
        events.extend(report.events)

        sponsor: Optional[SponsorPolicy] = None
        if report.sponsor is not None:
            sponsor = self._sponsors.get(report.sponsor)

        preserve = self._config.sponsor_decline_policy == SponsorDeclinePolicy.PRESERVE
        if sponsor is not None and preserve:
            self._ask_sponsor(sponsor, op, store, digest)
        events.extend(self._validator.commit(self.address, op, store, now))
        if sponsor is not None and not preserve:
            self._ask_sponsor(sponsor, op, store, digest)
        return sponsor

    def _ask_sponsor(
        self,
        sponsor: SponsorPolicy,
        op: OperationDescriptor,
        store: AccountPolicyStore,
        digest: bytes,
    ) -> None:
        allowance = store.allowance(sponsor.token, sponsor.address) if sponsor.token else 0
        context = SponsorshipContext(
            account=op.account,
            op_hash=digest,
            sponsor_aux=op.sponsor_aux,
            allowance=allowance,
        )
        sponsor.validate_sponsorship(self.address, op, op.required_prefund, context)

    def _gas_used(self, op: OperationDescriptor, execution_gas: int, sponsored: bool) -> int:
        gas = self._config.gas
        verification = gas.validation_gas + (gas.sponsor_validation_gas if sponsored else 0)
        return op.base_gas_fee + min(verification, op.verification_gas_budget) + execution_gas

    def _reject(
        self,
        op: OperationDescriptor,
        digest: bytes,
        lifecycle: OperationLifecycle,
        error: ProtocolError,
        events: list[EventRecord],
        now: Optional[datetime],
    ) -> OperationOutcome:
        kind = (
            OutcomeKind.SPONSOR_DECLINED
            if isinstance(error, SponsorDeclined)
            else OutcomeKind.REJECTED
        )
        events.append(
            emit(
                EventKind.OPERATION_REJECTED,
                op.account,
                {
                    "account": op.account,
                    "sequence": op.sequence,
                    "error_kind": error.kind,
                    "op_hash": "0x" + digest.hex(),
                },
                now,
            )
        )
        self._event_log.extend(events)
        logger.warning(
            "Operation rejected",
            extra={
                "event": "orchestrator.rejected",
                "account": op.account,
                "sequence": op.sequence,
                "error_kind": error.kind,
            },
        )
        return OperationOutcome(
            op_hash="0x" + digest.hex(),
            account=op.account,
            sequence=op.sequence,
            kind=kind,
            state=lifecycle.state,
            history=tuple(lifecycle.history),
            error=error,
            events=tuple(events),
        )
