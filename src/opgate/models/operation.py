"""Operation descriptor — the signed, immutable description of one request.

A descriptor is a value object: it is never mutated after construction.
All state changes happen in the account policy store or in sponsor
accounting. Signing produces a *new* descriptor with ``authorization``
filled in.

Budget and price fields are carried losslessly; the pipeline reads them
only to derive the required prefund, the gas limit handed to the
executor, and the unit price used for settlement.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Optional

from opgate.crypto.identity import (
    IDENTITY_WIDTH,
    ZERO_IDENTITY,
    normalize_identity,
    require_identity,
)
from opgate.errors import MalformedSponsorData

SPONSOR_ID_WIDTH = IDENTITY_WIDTH

_UINT_FIELDS = (
    "sequence",
    "action_gas_budget",
    "verification_gas_budget",
    "base_gas_fee",
    "max_fee_per_unit",
    "max_priority_fee_per_unit",
)
_BYTES_FIELDS = ("payload", "sponsor_data", "authorization")
_UINT256_MAX = 2**256 - 1


@dataclass(frozen=True)
class OperationDescriptor:
    """One requested action plus its funding and authorization data."""
    account: str
    sequence: int
    payload: bytes = b""
    action_gas_budget: int = 0
    verification_gas_budget: int = 0
    base_gas_fee: int = 0
    max_fee_per_unit: int = 0
    max_priority_fee_per_unit: int = 0
    sponsor_data: bytes = b""
    authorization: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "account", require_identity(self.account))
        for name in _UINT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an int, got {type(value).__name__}")
            if value < 0 or value > _UINT256_MAX:
                raise ValueError(f"{name} out of uint256 range: {value}")
        for name in _BYTES_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, (bytes, bytearray)):
                raise ValueError(f"{name} must be bytes, got {type(value).__name__}")
            object.__setattr__(self, name, bytes(value))

    @property
    def sponsor_id(self) -> Optional[str]:
        """Sponsor identifier from the leading bytes of sponsor_data.

        None when no sponsor is referenced (empty data or a zero prefix).
        """
        if not self.sponsor_data:
            return None
        if len(self.sponsor_data) < SPONSOR_ID_WIDTH:
            raise MalformedSponsorData(
                f"sponsor_data is {len(self.sponsor_data)} bytes, "
                f"need at least {SPONSOR_ID_WIDTH}"
            )
        sponsor = normalize_identity(self.sponsor_data[:SPONSOR_ID_WIDTH])
        if sponsor == ZERO_IDENTITY:
            return None
        return sponsor

    @property
    def sponsor_aux(self) -> bytes:
        """Sponsor-specific data following the identifier."""
        return self.sponsor_data[SPONSOR_ID_WIDTH:]

    @property
    def total_gas_budget(self) -> int:
        return self.action_gas_budget + self.verification_gas_budget + self.base_gas_fee

    @property
    def required_prefund(self) -> int:
        """Worst-case cost: every budget fully used at the fee ceiling."""
        return self.total_gas_budget * self.max_fee_per_unit

    def unit_price(self, base_fee_per_unit: int) -> int:
        """Effective price per gas unit given the prevailing base fee."""
        return min(self.max_fee_per_unit, base_fee_per_unit + self.max_priority_fee_per_unit)

    def with_authorization(self, authorization: bytes) -> OperationDescriptor:
        return dataclasses.replace(self, authorization=authorization)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe form; bytes are 0x-prefixed hex."""
        data: dict[str, Any] = {"account": self.account}
        for name in _UINT_FIELDS:
            data[name] = getattr(self, name)
        for name in _BYTES_FIELDS:
            data[name] = "0x" + getattr(self, name).hex()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OperationDescriptor:
        kwargs: dict[str, Any] = {"account": data["account"]}
        for name in _UINT_FIELDS:
            if name in data:
                kwargs[name] = int(data[name])
        for name in _BYTES_FIELDS:
            if name in data:
                kwargs[name] = _hex_to_bytes(data[name])
        return cls(**kwargs)


def _hex_to_bytes(value: str) -> bytes:
    if value.startswith(("0x", "0X")):
        value = value[2:]
    return bytes.fromhex(value)
