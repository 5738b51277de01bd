"""Error taxonomy for the validation → execution → settlement pipeline.

Every failure is terminal for the single operation in question and is
surfaced to the caller with its specific kind. The ``kind`` attribute is
a stable string used in outcomes and in the event log.

    ProtocolError
    ├── AuthorizationError
    │   ├── UnauthorizedCaller
    │   ├── UnauthorizedSigner
    │   └── MalformedAuthorization
    ├── OrderingError
    │   └── InvalidSequence
    ├── SponsorError
    │   ├── SponsorDeclined
    │   ├── MalformedSponsorData
    │   ├── UnknownSponsor
    │   └── SettlementFailed
    ├── ExecutionError
    │   ├── CallReverted
    │   └── MalformedBatch
    ├── AdministrationError
    │   ├── AlreadySigner
    │   ├── NotASigner
    │   ├── CannotRemoveOwner
    │   └── ZeroIdentity
    └── UnknownAccount
"""

from __future__ import annotations


class ProtocolError(Exception):
    """Base class for every protocol-level failure."""

    kind = "protocol_error"


# ---------------------------------------------------------------- authorization

class AuthorizationError(ProtocolError):
    kind = "authorization_error"


class UnauthorizedCaller(AuthorizationError):
    """A privileged entry point was invoked by someone other than the orchestrator."""

    kind = "unauthorized_caller"

    def __init__(self, caller: str, expected: str) -> None:
        super().__init__(f"Caller {caller} is not {expected}")
        self.caller = caller
        self.expected = expected


class UnauthorizedSigner(AuthorizationError):
    """The recovered signer is not in the account's authorized set."""

    kind = "unauthorized_signer"

    def __init__(self, signer: str, account: str) -> None:
        super().__init__(f"Signer {signer} is not authorized for {account}")
        self.signer = signer
        self.account = account


class MalformedAuthorization(AuthorizationError):
    kind = "malformed_authorization"


# ---------------------------------------------------------------- ordering

class OrderingError(ProtocolError):
    kind = "ordering_error"


class InvalidSequence(OrderingError):
    """Claimed sequence does not match the account's counter.

    Never retried automatically; the caller must resubmit with the
    expected value.
    """

    kind = "invalid_sequence"

    def __init__(self, account: str, claimed: int, expected: int) -> None:
        super().__init__(
            f"Invalid sequence for {account}: claimed {claimed}, expected {expected}"
        )
        self.account = account
        self.claimed = claimed
        self.expected = expected


# ---------------------------------------------------------------- sponsor

class SponsorError(ProtocolError):
    kind = "sponsor_error"


class SponsorDeclined(SponsorError):
    kind = "sponsor_declined"

    def __init__(self, sponsor: str, reason: str) -> None:
        super().__init__(f"Sponsor {sponsor} declined: {reason}")
        self.sponsor = sponsor
        self.reason = reason


class MalformedSponsorData(SponsorError):
    kind = "malformed_sponsor_data"


class UnknownSponsor(SponsorError):
    kind = "unknown_sponsor"


class SettlementFailed(SponsorError):
    """A sponsor's settle hook failed with an error outside this taxonomy."""

    kind = "settlement_failed"

    def __init__(self, sponsor: str, cause: Exception) -> None:
        super().__init__(f"Settlement with {sponsor} failed: {type(cause).__name__}: {cause}")
        self.sponsor = sponsor
        self.cause = cause


# ---------------------------------------------------------------- execution

class ExecutionError(ProtocolError):
    """Raised by the executor; ``gas_used`` is what was metered before the failure."""

    kind = "execution_error"
    gas_used = 0


class CallReverted(ExecutionError):
    kind = "call_reverted"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Call reverted: {reason}")
        self.reason = reason


class MalformedBatch(ExecutionError):
    kind = "malformed_batch"


# ---------------------------------------------------------------- administration

class AdministrationError(ProtocolError):
    kind = "administration_error"


class AlreadySigner(AdministrationError):
    kind = "already_signer"


class NotASigner(AdministrationError):
    kind = "not_a_signer"


class CannotRemoveOwner(AdministrationError):
    kind = "cannot_remove_owner"


class ZeroIdentity(AdministrationError):
    kind = "zero_identity"


class UnknownAccount(ProtocolError):
    kind = "unknown_account"
