"""Sponsor policies — pluggable funding decisions and settlement accounting."""

from opgate.sponsor.base import (
    SettlementContext,
    SettlementRecord,
    SponsorPolicy,
    SponsorshipContext,
)
from opgate.sponsor.policies import (
    AllowListSponsor,
    BalanceThresholdSponsor,
    TokenSponsor,
    UnconditionalSponsor,
)
from opgate.sponsor.registry import SponsorRegistry

__all__ = [
    "AllowListSponsor",
    "BalanceThresholdSponsor",
    "SettlementContext",
    "SettlementRecord",
    "SponsorPolicy",
    "SponsorRegistry",
    "SponsorshipContext",
    "TokenSponsor",
    "UnconditionalSponsor",
]
