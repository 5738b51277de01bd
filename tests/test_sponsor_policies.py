"""Tests for sponsor policies — proves decisions are pure and settlement happens once."""

import pytest
from datetime import datetime, timezone

from opgate.crypto.identity import normalize_identity
from opgate.errors import SponsorDeclined, UnauthorizedCaller, UnknownSponsor
from opgate.models.operation import OperationDescriptor
from opgate.persistence.event_log import EventKind
from opgate.sponsor import (
    AllowListSponsor,
    BalanceThresholdSponsor,
    SettlementContext,
    SponsorRegistry,
    SponsorshipContext,
    TokenSponsor,
    UnconditionalSponsor,
)

ORCHESTRATOR = normalize_identity("0x" + "0e" * 20)
SPONSOR = normalize_identity("0x" + "5b" * 20)
ADMIN = normalize_identity("0x" + "ad" * 20)
ACCOUNT = normalize_identity("0x" + "a1" * 20)
OTHER_ACCOUNT = normalize_identity("0x" + "a2" * 20)
TOKEN = normalize_identity("0x" + "70" * 20)


def _now() -> datetime:
    return datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


def _op(account: str = ACCOUNT) -> OperationDescriptor:
    return OperationDescriptor(
        account=account,
        sequence=0,
        action_gas_budget=100,
        max_fee_per_unit=1,
        sponsor_data=bytes.fromhex(SPONSOR[2:]),
    )


def _ctx(account: str = ACCOUNT, allowance: int = 0, op_hash: bytes = b"\x01" * 32) -> SponsorshipContext:
    return SponsorshipContext(account=account, op_hash=op_hash, allowance=allowance)


def _settlement(account: str = ACCOUNT, op_hash: bytes = b"\x01" * 32, succeeded: bool = True) -> SettlementContext:
    return SettlementContext(
        account=account,
        op_hash=op_hash,
        sequence=0,
        succeeded=succeeded,
        gas_used=40,
        unit_price=1,
    )


class TestBaseContract:
    def test_owner_must_differ_from_orchestrator(self) -> None:
        with pytest.raises(ValueError):
            UnconditionalSponsor(SPONSOR, ORCHESTRATOR, ORCHESTRATOR)

    def test_validate_is_orchestrator_only(self) -> None:
        sponsor = UnconditionalSponsor(SPONSOR, ADMIN, ORCHESTRATOR)
        with pytest.raises(UnauthorizedCaller):
            sponsor.validate_sponsorship(ACCOUNT, _op(), 100, _ctx())

    def test_settle_is_orchestrator_only(self) -> None:
        sponsor = UnconditionalSponsor(SPONSOR, ADMIN, ORCHESTRATOR)
        with pytest.raises(UnauthorizedCaller):
            sponsor.settle(ADMIN, 40, _settlement())
        assert sponsor.settlements() == []

    def test_settle_emits_gas_sponsored(self) -> None:
        sponsor = UnconditionalSponsor(SPONSOR, ADMIN, ORCHESTRATOR)
        events = sponsor.settle(ORCHESTRATOR, 40, _settlement(), _now())
        assert [e.event_kind for e in events] == [EventKind.GAS_SPONSORED]
        assert events[0].payload == {"account": ACCOUNT, "amount": 40, "sponsor": SPONSOR}
        assert sponsor.total_sponsored() == 40

    def test_settle_is_idempotent_per_operation(self) -> None:
        sponsor = UnconditionalSponsor(SPONSOR, ADMIN, ORCHESTRATOR)
        sponsor.settle(ORCHESTRATOR, 40, _settlement())
        assert sponsor.settle(ORCHESTRATOR, 40, _settlement()) == []
        assert sponsor.total_sponsored(ACCOUNT) == 40
        assert sponsor.is_settled(b"\x01" * 32)

    def test_failed_execution_still_recorded(self) -> None:
        sponsor = UnconditionalSponsor(SPONSOR, ADMIN, ORCHESTRATOR)
        sponsor.settle(ORCHESTRATOR, 40, _settlement(succeeded=False))
        record = sponsor.settlements(ACCOUNT)[0]
        assert record.succeeded is False
        assert record.amount == 40

    def test_negative_cost_rejected(self) -> None:
        sponsor = UnconditionalSponsor(SPONSOR, ADMIN, ORCHESTRATOR)
        with pytest.raises(ValueError):
            sponsor.settle(ORCHESTRATOR, -1, _settlement())


class TestAllowList:
    def test_only_listed_accounts_funded(self) -> None:
        sponsor = AllowListSponsor(SPONSOR, ADMIN, ORCHESTRATOR, accounts=[ACCOUNT])
        sponsor.validate_sponsorship(ORCHESTRATOR, _op(), 100, _ctx())
        with pytest.raises(SponsorDeclined, match="allow list"):
            sponsor.validate_sponsorship(ORCHESTRATOR, _op(OTHER_ACCOUNT), 100, _ctx(OTHER_ACCOUNT))

    def test_owner_manages_list(self) -> None:
        sponsor = AllowListSponsor(SPONSOR, ADMIN, ORCHESTRATOR)
        sponsor.allow(ADMIN, ACCOUNT)
        assert sponsor.is_allowed(ACCOUNT)
        sponsor.disallow(ADMIN, ACCOUNT)
        assert not sponsor.is_allowed(ACCOUNT)

    def test_non_owner_cannot_manage(self) -> None:
        sponsor = AllowListSponsor(SPONSOR, ADMIN, ORCHESTRATOR)
        with pytest.raises(UnauthorizedCaller):
            sponsor.allow(ACCOUNT, ACCOUNT)


class TestBalanceThreshold:
    def test_accepts_while_covered(self) -> None:
        sponsor = BalanceThresholdSponsor(SPONSOR, ADMIN, ORCHESTRATOR, balance=150, floor=50)
        sponsor.validate_sponsorship(ORCHESTRATOR, _op(), 100, _ctx())
        with pytest.raises(SponsorDeclined, match="below required prefund"):
            sponsor.validate_sponsorship(ORCHESTRATOR, _op(), 101, _ctx())

    def test_decision_does_not_mutate(self) -> None:
        sponsor = BalanceThresholdSponsor(SPONSOR, ADMIN, ORCHESTRATOR, balance=150)
        sponsor.validate_sponsorship(ORCHESTRATOR, _op(), 100, _ctx())
        assert sponsor.balance == 150

    def test_settlement_debits_actual_cost(self) -> None:
        sponsor = BalanceThresholdSponsor(SPONSOR, ADMIN, ORCHESTRATOR, balance=150)
        sponsor.settle(ORCHESTRATOR, 40, _settlement())
        assert sponsor.balance == 110
        sponsor.settle(ORCHESTRATOR, 40, _settlement())
        assert sponsor.balance == 110

    def test_fund_and_withdraw(self) -> None:
        sponsor = BalanceThresholdSponsor(SPONSOR, ADMIN, ORCHESTRATOR)
        assert sponsor.fund(ADMIN, 100) == 100
        assert sponsor.withdraw(ADMIN, 30) == 70
        with pytest.raises(ValueError):
            sponsor.withdraw(ADMIN, 1_000)
        with pytest.raises(UnauthorizedCaller):
            sponsor.fund(ACCOUNT, 5)


class TestTokenSponsor:
    def test_requires_allowance_for_worst_case(self) -> None:
        sponsor = TokenSponsor(SPONSOR, ADMIN, ORCHESTRATOR, token=TOKEN, rate=2)
        sponsor.validate_sponsorship(ORCHESTRATOR, _op(), 100, _ctx(allowance=200))
        with pytest.raises(SponsorDeclined, match="token allowance"):
            sponsor.validate_sponsorship(ORCHESTRATOR, _op(), 100, _ctx(allowance=199))

    def test_charges_reduce_headroom(self) -> None:
        sponsor = TokenSponsor(SPONSOR, ADMIN, ORCHESTRATOR, token=TOKEN)
        sponsor.settle(ORCHESTRATOR, 60, _settlement())
        assert sponsor.charged(ACCOUNT) == 60
        with pytest.raises(SponsorDeclined):
            sponsor.validate_sponsorship(ORCHESTRATOR, _op(), 100, _ctx(allowance=150))

    def test_rate_is_owner_gated(self) -> None:
        sponsor = TokenSponsor(SPONSOR, ADMIN, ORCHESTRATOR, token=TOKEN)
        sponsor.set_rate(ADMIN, 3)
        assert sponsor.token_cost(10) == 30
        with pytest.raises(UnauthorizedCaller):
            sponsor.set_rate(ACCOUNT, 1)
        with pytest.raises(ValueError):
            sponsor.set_rate(ADMIN, 0)


class TestRegistry:
    def test_lookup(self) -> None:
        registry = SponsorRegistry()
        sponsor = UnconditionalSponsor(SPONSOR, ADMIN, ORCHESTRATOR)
        registry.register(sponsor)
        assert registry.get(SPONSOR.lower()) is sponsor
        assert SPONSOR in registry
        assert registry.list_sponsors() == [SPONSOR]

    def test_unknown_sponsor(self) -> None:
        with pytest.raises(UnknownSponsor):
            SponsorRegistry().get(SPONSOR)

    def test_duplicate_registration_rejected(self) -> None:
        registry = SponsorRegistry()
        registry.register(UnconditionalSponsor(SPONSOR, ADMIN, ORCHESTRATOR))
        with pytest.raises(ValueError):
            registry.register(UnconditionalSponsor(SPONSOR, ADMIN, ORCHESTRATOR))
