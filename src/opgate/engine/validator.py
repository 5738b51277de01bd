"""Account validator — checks a descriptor against its account's policy store.

Gates, in order, each one fail-closed (first failure aborts, no effects):
0. Caller is the orchestrator              → UnauthorizedCaller
1. Claimed sequence equals the counter     → InvalidSequence
2. Authorization long enough, recoverable  → MalformedAuthorization
   and recovered signer is authorized      → UnauthorizedSigner
3. Sponsor reference decodes               → MalformedSponsorData
   (a SPONSOR_ENGAGED event is produced; willingness is not checked here)
4. Commit: the counter advances by exactly one.

``check`` runs gates 0–3 without mutating anything; ``commit`` runs
gate 4. ``validate`` is both, back to back. The orchestrator may place
the sponsor's decision between the two.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from opgate.config import ProtocolConfig
from opgate.crypto.identity import same_identity
from opgate.crypto.signing import operation_hash, recover_signer
from opgate.errors import InvalidSequence, UnauthorizedCaller, UnauthorizedSigner
from opgate.models.account import AccountPolicyStore
from opgate.models.operation import OperationDescriptor
from opgate.persistence.event_log import EventKind, EventRecord, emit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationReport:
    """What the account checks established about one descriptor."""
    account: str
    sequence: int
    signer: str
    sponsor: Optional[str]
    events: tuple[EventRecord, ...] = field(default_factory=tuple)


class AccountValidator:
    """Validates descriptors on behalf of the orchestrator only."""

    def __init__(self, config: ProtocolConfig) -> None:
        self._config = config

    @property
    def orchestrator(self) -> str:
        return self._config.orchestrator

    def check(
        self,
        caller: str,
        op: OperationDescriptor,
        store: AccountPolicyStore,
        digest: Optional[bytes] = None,
        now: Optional[datetime] = None,
    ) -> ValidationReport:
        """Run every gate except the commit. Mutates nothing."""
        self._require_orchestrator(caller)
        if op.account != store.account:
            raise ValueError(f"Descriptor for {op.account} checked against {store.account}")

        if op.sequence != store.sequence_counter:
            raise InvalidSequence(op.account, op.sequence, store.sequence_counter)

        if digest is None:
            digest = operation_hash(op, self._config.orchestrator, self._config.chain_id)
        signer = recover_signer(digest, op.authorization, self._config.min_signature_length)
        if signer not in store.authorized_signers:
            raise UnauthorizedSigner(signer, op.account)

        events: list[EventRecord] = []
        sponsor = op.sponsor_id
        if sponsor is not None:
            events.append(
                emit(EventKind.SPONSOR_ENGAGED, sponsor, {"sponsor": sponsor, "account": op.account}, now)
            )

        return ValidationReport(
            account=op.account,
            sequence=op.sequence,
            signer=signer,
            sponsor=sponsor,
            events=tuple(events),
        )

    def commit(
        self,
        caller: str,
        op: OperationDescriptor,
        store: AccountPolicyStore,
        now: Optional[datetime] = None,
    ) -> list[EventRecord]:
        """Advance the counter; the single mutation point in the pipeline."""
        self._require_orchestrator(caller)
        used = store.advance_sequence(op.sequence)
        logger.debug(
            "Sequence consumed",
            extra={"event": "validator.commit", "account": op.account, "sequence": used},
        )
        return [
            emit(
                EventKind.OPERATION_VALIDATED,
                op.account,
                {"account": op.account, "sequence": used},
                now,
            )
        ]

    def validate(
        self,
        caller: str,
        op: OperationDescriptor,
        store: AccountPolicyStore,
        digest: Optional[bytes] = None,
        now: Optional[datetime] = None,
    ) -> ValidationReport:
        """Check then commit. Returns a report carrying every event produced."""
        report = self.check(caller, op, store, digest, now)
        committed = self.commit(caller, op, store, now)
        return ValidationReport(
            account=report.account,
            sequence=report.sequence,
            signer=report.signer,
            sponsor=report.sponsor,
            events=report.events + tuple(committed),
        )

    def _require_orchestrator(self, caller: str) -> None:
        if not same_identity(caller, self._config.orchestrator):
            raise UnauthorizedCaller(caller, self._config.orchestrator)
