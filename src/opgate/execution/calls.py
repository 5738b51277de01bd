"""Payload encoding — how a descriptor asks for one call or a batch of calls.

A payload is opaque to validation. The executor interprets it as an ABI
call on the account:

    execute(address target, uint256 value, bytes data)
    executeBatch(address[] targets, uint256[] values, bytes[] data)

An empty payload requests nothing and executes as a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from opgate.crypto.identity import normalize_identity
from opgate.errors import CallReverted

EXECUTE_SIGNATURE = "execute(address,uint256,bytes)"
EXECUTE_BATCH_SIGNATURE = "executeBatch(address[],uint256[],bytes[])"
EXECUTE_SELECTOR = function_signature_to_4byte_selector(EXECUTE_SIGNATURE)
EXECUTE_BATCH_SELECTOR = function_signature_to_4byte_selector(EXECUTE_BATCH_SIGNATURE)


@dataclass(frozen=True)
class Call:
    target: str
    value: int = 0
    data: bytes = b""


@dataclass(frozen=True)
class ActionRequest:
    """A decoded payload. List lengths are not checked here."""
    batch: bool
    targets: tuple[str, ...]
    values: tuple[int, ...]
    payloads: tuple[bytes, ...]


def encode_execute(target: str, value: int = 0, data: bytes = b"") -> bytes:
    return EXECUTE_SELECTOR + encode(
        ["address", "uint256", "bytes"],
        [normalize_identity(target), value, data],
    )


def encode_execute_batch(
    targets: Sequence[str],
    values: Sequence[int],
    payloads: Sequence[bytes],
) -> bytes:
    """Encode a batch. Mismatched lengths are encodable and fail at execution."""
    return EXECUTE_BATCH_SELECTOR + encode(
        ["address[]", "uint256[]", "bytes[]"],
        [[normalize_identity(t) for t in targets], list(values), list(payloads)],
    )


def encode_calls(calls: Sequence[Call]) -> bytes:
    """Encode one call as ``execute`` and several as ``executeBatch``."""
    if len(calls) == 1:
        return encode_execute(calls[0].target, calls[0].value, calls[0].data)
    return encode_execute_batch(
        [c.target for c in calls],
        [c.value for c in calls],
        [c.data for c in calls],
    )


def decode_payload(payload: bytes) -> Optional[ActionRequest]:
    """Decode a payload into an ActionRequest, or None for an empty payload.

    Raises CallReverted for an unknown selector or undecodable arguments.
    """
    if not payload:
        return None
    selector, body = payload[:4], payload[4:]
    try:
        if selector == EXECUTE_SELECTOR:
            target, value, data = decode(["address", "uint256", "bytes"], body)
            return ActionRequest(
                batch=False,
                targets=(normalize_identity(target),),
                values=(value,),
                payloads=(bytes(data),),
            )
        if selector == EXECUTE_BATCH_SELECTOR:
            targets, values, payloads = decode(["address[]", "uint256[]", "bytes[]"], body)
            return ActionRequest(
                batch=True,
                targets=tuple(normalize_identity(t) for t in targets),
                values=tuple(values),
                payloads=tuple(bytes(p) for p in payloads),
            )
    except DecodingError as exc:
        raise CallReverted(f"malformed payload: {exc}") from exc
    raise CallReverted(f"unknown selector 0x{selector.hex()}")
