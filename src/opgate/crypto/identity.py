"""Identity normalisation — every identity is an EIP-55 checksum address."""

from __future__ import annotations

from typing import Union

from eth_utils import is_address, to_checksum_address

from opgate.errors import ZeroIdentity

ZERO_IDENTITY = "0x0000000000000000000000000000000000000000"
IDENTITY_WIDTH = 20


def normalize_identity(value: Union[str, bytes]) -> str:
    """Return the checksum form of an address given as hex text or 20 raw bytes.

    Raises ValueError for anything that is not a 20-byte address.
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != IDENTITY_WIDTH:
            raise ValueError(f"Identity must be {IDENTITY_WIDTH} bytes, got {len(value)}")
        return to_checksum_address(bytes(value))
    if not is_address(value):
        raise ValueError(f"Not an address: {value!r}")
    return to_checksum_address(value)


def is_zero_identity(value: str) -> bool:
    return normalize_identity(value) == ZERO_IDENTITY


def require_identity(value: Union[str, bytes]) -> str:
    """Normalise and reject the null identity."""
    identity = normalize_identity(value)
    if identity == ZERO_IDENTITY:
        raise ZeroIdentity("The zero identity cannot be bound")
    return identity


def same_identity(candidate: Union[str, bytes], expected: str) -> bool:
    """True when ``candidate`` is the address ``expected``; False for non-addresses."""
    try:
        return normalize_identity(candidate) == normalize_identity(expected)
    except ValueError:
        return False
