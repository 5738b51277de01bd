"""Canonical encoding, hashing, signing and signer recovery for descriptors.

The canonical encoding is an ABI tuple of every descriptor field except
``authorization``. Variable-length fields (payload, sponsor_data) enter
as their keccak digests so the encoding has a fixed width:

    (address account, uint256 sequence, bytes32 keccak(payload),
     uint256 action_gas_budget, uint256 verification_gas_budget,
     uint256 base_gas_fee, uint256 max_fee_per_unit,
     uint256 max_priority_fee_per_unit, bytes32 keccak(sponsor_data))

The operation hash binds that encoding to one orchestrator on one chain,
so a signature cannot be replayed against another deployment. Signers
sign the 32-byte hash as an EIP-191 personal message.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import keccak

from opgate.crypto.identity import normalize_identity
from opgate.errors import MalformedAuthorization

if TYPE_CHECKING:
    from opgate.models.operation import OperationDescriptor

SIGNATURE_LENGTH = 65

_ENCODING_TYPES = [
    "address",
    "uint256",
    "bytes32",
    "uint256",
    "uint256",
    "uint256",
    "uint256",
    "uint256",
    "bytes32",
]


def encode_operation(op: OperationDescriptor) -> bytes:
    """Return the canonical byte encoding of a descriptor (sans authorization)."""
    return encode(
        _ENCODING_TYPES,
        [
            op.account,
            op.sequence,
            keccak(op.payload),
            op.action_gas_budget,
            op.verification_gas_budget,
            op.base_gas_fee,
            op.max_fee_per_unit,
            op.max_priority_fee_per_unit,
            keccak(op.sponsor_data),
        ],
    )


def operation_hash(op: OperationDescriptor, orchestrator: str, chain_id: int) -> bytes:
    """The 32-byte digest an authorizing identity signs."""
    inner = keccak(encode_operation(op))
    return keccak(
        encode(
            ["bytes32", "address", "uint256"],
            [inner, normalize_identity(orchestrator), chain_id],
        )
    )


def sign_operation(
    op: OperationDescriptor,
    private_key: str,
    orchestrator: str,
    chain_id: int,
) -> OperationDescriptor:
    """Sign a descriptor and return a copy carrying the signature."""
    digest = operation_hash(op, orchestrator, chain_id)
    signed = Account.sign_message(encode_defunct(primitive=digest), private_key=private_key)
    return op.with_authorization(bytes(signed.signature))


def recover_signer(
    digest: bytes,
    authorization: bytes,
    min_length: int = SIGNATURE_LENGTH,
) -> str:
    """Recover the identity that signed ``digest``.

    Raises:
        MalformedAuthorization: If the signature is shorter than
            ``min_length`` or cannot be recovered at all.
    """
    if len(authorization) < min_length:
        raise MalformedAuthorization(
            f"Authorization is {len(authorization)} bytes, minimum is {min_length}"
        )
    try:
        signer = Account.recover_message(encode_defunct(primitive=digest), signature=authorization)
    except (BadSignature, ValidationError, ValueError) as exc:
        raise MalformedAuthorization(f"Unrecoverable authorization: {exc}") from exc
    return normalize_identity(signer)
