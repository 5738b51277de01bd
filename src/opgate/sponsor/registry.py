"""Sponsor registry — lookup of sponsor policies by identifier."""

from __future__ import annotations

from typing import Dict, List

from opgate.crypto.identity import normalize_identity
from opgate.errors import UnknownSponsor
from opgate.sponsor.base import SponsorPolicy


class SponsorRegistry:
    def __init__(self) -> None:
        self._sponsors: Dict[str, SponsorPolicy] = {}

    def register(self, sponsor: SponsorPolicy) -> None:
        if sponsor.address in self._sponsors:
            raise ValueError(f"Sponsor already registered: {sponsor.address}")
        self._sponsors[sponsor.address] = sponsor

    def get(self, sponsor_id: str) -> SponsorPolicy:
        sponsor = self._sponsors.get(normalize_identity(sponsor_id))
        if sponsor is None:
            raise UnknownSponsor(f"Unknown sponsor: {sponsor_id}")
        return sponsor

    def __contains__(self, sponsor_id: str) -> bool:
        return normalize_identity(sponsor_id) in self._sponsors

    def list_sponsors(self) -> List[str]:
        return list(self._sponsors.keys())
