"""Concrete sponsor policies.

- UnconditionalSponsor: funds every operation that names it.
- AllowListSponsor: funds only accounts its owner has allowed.
- BalanceThresholdSponsor: funds while its balance above a floor covers
  the worst-case cost; settlement debits the actual cost.
- TokenSponsor: funds accounts that approved it to charge a token;
  settlement records the token charge against that approval.
"""

from __future__ import annotations

from typing import Iterable, Optional

from opgate.crypto.identity import normalize_identity, require_identity
from opgate.models.operation import OperationDescriptor
from opgate.sponsor.base import SettlementContext, SponsorPolicy, SponsorshipContext


class UnconditionalSponsor(SponsorPolicy):
    def _decide(
        self,
        descriptor: OperationDescriptor,
        required_prefund: int,
        context: SponsorshipContext,
    ) -> Optional[str]:
        return None


class AllowListSponsor(SponsorPolicy):
    def __init__(
        self,
        address: str,
        owner: str,
        orchestrator: str,
        accounts: Iterable[str] = (),
    ) -> None:
        super().__init__(address, owner, orchestrator)
        self._allowed: set[str] = {require_identity(a) for a in accounts}

    def allow(self, caller: str, account: str) -> None:
        self._require_owner(caller)
        self._allowed.add(require_identity(account))

    def disallow(self, caller: str, account: str) -> None:
        self._require_owner(caller)
        self._allowed.discard(normalize_identity(account))

    def is_allowed(self, account: str) -> bool:
        return normalize_identity(account) in self._allowed

    def _decide(
        self,
        descriptor: OperationDescriptor,
        required_prefund: int,
        context: SponsorshipContext,
    ) -> Optional[str]:
        if descriptor.account not in self._allowed:
            return f"account {descriptor.account} is not on the allow list"
        return None


class BalanceThresholdSponsor(SponsorPolicy):
    """Funds operations while ``balance - floor`` covers the required prefund."""

    def __init__(
        self,
        address: str,
        owner: str,
        orchestrator: str,
        balance: int = 0,
        floor: int = 0,
    ) -> None:
        super().__init__(address, owner, orchestrator)
        if balance < 0 or floor < 0:
            raise ValueError("balance and floor must be non-negative")
        self.balance = balance
        self.floor = floor

    def fund(self, caller: str, amount: int) -> int:
        self._require_owner(caller)
        if amount <= 0:
            raise ValueError("Funding amount must be positive")
        self.balance += amount
        return self.balance

    def withdraw(self, caller: str, amount: int) -> int:
        self._require_owner(caller)
        if amount <= 0:
            raise ValueError("Withdrawal amount must be positive")
        if amount > self.balance:
            raise ValueError(f"Cannot withdraw {amount}, balance is {self.balance}")
        self.balance -= amount
        return self.balance

    @property
    def available(self) -> int:
        return max(0, self.balance - self.floor)

    def _decide(
        self,
        descriptor: OperationDescriptor,
        required_prefund: int,
        context: SponsorshipContext,
    ) -> Optional[str]:
        if self.available < required_prefund:
            return f"available balance {self.available} below required prefund {required_prefund}"
        return None

    def _on_settle(self, actual_cost: int, context: SettlementContext) -> None:
        self.balance -= min(actual_cost, self.balance)


class TokenSponsor(SponsorPolicy):
    """Pays the cost itself and charges the account in ``token`` at ``rate``.

    ``rate`` is token units per unit of cost. The account must have
    granted this sponsor an allowance in ``token`` large enough to cover
    the worst case on top of everything already charged.
    """

    def __init__(
        self,
        address: str,
        owner: str,
        orchestrator: str,
        token: str,
        rate: int = 1,
    ) -> None:
        super().__init__(address, owner, orchestrator)
        if rate <= 0:
            raise ValueError("Token rate must be positive")
        self.token = require_identity(token)
        self.rate = rate
        self._charged: dict[str, int] = {}

    def set_rate(self, caller: str, rate: int) -> None:
        self._require_owner(caller)
        if rate <= 0:
            raise ValueError("Token rate must be positive")
        self.rate = rate

    def token_cost(self, cost: int) -> int:
        return cost * self.rate

    def charged(self, account: str) -> int:
        return self._charged.get(normalize_identity(account), 0)

    def _decide(
        self,
        descriptor: OperationDescriptor,
        required_prefund: int,
        context: SponsorshipContext,
    ) -> Optional[str]:
        remaining = context.allowance - self.charged(descriptor.account)
        needed = self.token_cost(required_prefund)
        if remaining < needed:
            return f"token allowance {remaining} below required {needed}"
        return None

    def _on_settle(self, actual_cost: int, context: SettlementContext) -> None:
        account = normalize_identity(context.account)
        self._charged[account] = self.charged(account) + self.token_cost(actual_cost)
