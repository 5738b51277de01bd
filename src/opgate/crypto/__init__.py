"""Cryptographic primitives — identities, canonical encoding, signatures."""

from opgate.crypto.identity import ZERO_IDENTITY, normalize_identity, require_identity
from opgate.crypto.signing import (
    SIGNATURE_LENGTH,
    encode_operation,
    operation_hash,
    recover_signer,
    sign_operation,
)

__all__ = [
    "SIGNATURE_LENGTH",
    "ZERO_IDENTITY",
    "encode_operation",
    "normalize_identity",
    "operation_hash",
    "recover_signer",
    "require_identity",
    "sign_operation",
]
