"""Account policy store — per-account owner, signer set and replay counter.

Mutation points are deliberately narrow:
- ``advance_sequence`` is the only way the counter changes. It is a
  compare-and-increment and is called only by the AccountValidator.
- ``add_signer`` / ``remove_signer`` / ``grant_sponsor_allowance`` are
  gated on the account owner and bypass the orchestrator entirely.

Every mutating call returns the events it produced.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from opgate.crypto.identity import normalize_identity, require_identity, same_identity
from opgate.errors import (
    AlreadySigner,
    CannotRemoveOwner,
    InvalidSequence,
    NotASigner,
    UnauthorizedCaller,
)
from opgate.persistence.event_log import EventKind, EventRecord, emit


@dataclass
class AccountPolicyStore:
    """Authorization and replay-prevention state for one account.

    Invariants:
    - owner is always a member of authorized_signers.
    - sequence_counter starts at 0, only ever increases by exactly 1.

    Usage:
        store = AccountPolicyStore.provision(account, owner)
        store.add_signer(owner, delegate)
    """
    account: str
    owner: str
    authorized_signers: set[str] = field(default_factory=set)
    sequence_counter: int = 0
    # (token, sponsor) -> standing approval amount
    allowances: dict[tuple[str, str], int] = field(default_factory=dict)

    @classmethod
    def provision(cls, account: str, owner: str) -> AccountPolicyStore:
        """Create a fresh store with the owner bound and auto-added as signer."""
        account = require_identity(account)
        owner = require_identity(owner)
        return cls(account=account, owner=owner, authorized_signers={owner})

    def is_signer(self, identity: str) -> bool:
        return normalize_identity(identity) in self.authorized_signers

    def advance_sequence(self, claimed: int) -> int:
        """Consume ``claimed`` if it matches the counter; return the value used.

        Raises InvalidSequence and leaves the counter untouched otherwise.
        """
        if claimed != self.sequence_counter:
            raise InvalidSequence(self.account, claimed, self.sequence_counter)
        self.sequence_counter += 1
        return claimed

    # ------------------------------------------------------------ administration

    def add_signer(
        self,
        caller: str,
        identity: str,
        now: Optional[datetime] = None,
    ) -> list[EventRecord]:
        self._require_owner(caller)
        identity = require_identity(identity)
        if identity in self.authorized_signers:
            raise AlreadySigner(f"{identity} is already a signer for {self.account}")
        self.authorized_signers.add(identity)
        return [emit(EventKind.SIGNER_ADDED, self.account, {"identity": identity}, now)]

    def remove_signer(
        self,
        caller: str,
        identity: str,
        now: Optional[datetime] = None,
    ) -> list[EventRecord]:
        self._require_owner(caller)
        try:
            identity = normalize_identity(identity)
        except ValueError as exc:
            raise NotASigner(f"{identity!r} is not a signer for {self.account}") from exc
        if identity == self.owner:
            raise CannotRemoveOwner(f"Owner {identity} cannot be removed from {self.account}")
        if identity not in self.authorized_signers:
            raise NotASigner(f"{identity} is not a signer for {self.account}")
        self.authorized_signers.remove(identity)
        return [emit(EventKind.SIGNER_REMOVED, self.account, {"identity": identity}, now)]

    def grant_sponsor_allowance(
        self,
        caller: str,
        token: str,
        sponsor: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> list[EventRecord]:
        """Approve ``sponsor`` to charge up to ``amount`` of ``token``.

        Overwrites any previous approval for the same (token, sponsor).
        """
        self._require_owner(caller)
        token = require_identity(token)
        sponsor = require_identity(sponsor)
        if amount < 0:
            raise ValueError("Allowance amount must be non-negative")
        self.allowances[(token, sponsor)] = amount
        return [
            emit(
                EventKind.SPONSOR_ALLOWANCE_GRANTED,
                self.account,
                {"token": token, "sponsor": sponsor, "amount": amount},
                now,
            )
        ]

    def allowance(self, token: str, sponsor: str) -> int:
        return self.allowances.get((normalize_identity(token), normalize_identity(sponsor)), 0)

    # ------------------------------------------------------------ persistence layout

    def to_dict(self) -> dict[str, Any]:
        return {
            "account": self.account,
            "owner": self.owner,
            "authorized_signers": sorted(self.authorized_signers),
            "sequence_counter": self.sequence_counter,
            "allowances": [
                {"token": token, "sponsor": sponsor, "amount": amount}
                for (token, sponsor), amount in sorted(self.allowances.items())
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountPolicyStore:
        store = cls(
            account=require_identity(data["account"]),
            owner=require_identity(data["owner"]),
            authorized_signers={normalize_identity(s) for s in data["authorized_signers"]},
            sequence_counter=int(data["sequence_counter"]),
            allowances={
                (normalize_identity(a["token"]), normalize_identity(a["sponsor"])): int(a["amount"])
                for a in data.get("allowances", [])
            },
        )
        if store.owner not in store.authorized_signers:
            raise ValueError(f"Owner {store.owner} missing from authorized_signers")
        if store.sequence_counter < 0:
            raise ValueError("sequence_counter must be non-negative")
        return store

    def _require_owner(self, caller: str) -> None:
        if not same_identity(caller, self.owner):
            raise UnauthorizedCaller(caller, f"owner of {self.account}")
