"""Executor — performs requested calls with all-or-nothing semantics.

A single call and a batch are both one atomic unit: the world is
checkpointed before the first call, and the first failure unwinds every
effect of every call in the unit (value transfers, target storage,
target events and EXECUTED events alike) before the error propagates.

Only the orchestrator may invoke the executor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from opgate.config import ProtocolConfig
from opgate.crypto.identity import normalize_identity, same_identity
from opgate.errors import CallReverted, ExecutionError, MalformedBatch, UnauthorizedCaller
from opgate.execution.calls import Call, decode_payload
from opgate.execution.world import CallContext, WorldState
from opgate.persistence.event_log import EventKind, EventRecord, emit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionReceipt:
    gas_used: int = 0
    return_data: tuple[bytes, ...] = field(default_factory=tuple)
    events: tuple[EventRecord, ...] = field(default_factory=tuple)


class Executor:
    """Runs calls on behalf of an account against a WorldState."""

    def __init__(self, config: ProtocolConfig, world: WorldState) -> None:
        self._config = config
        self._world = world

    @property
    def world(self) -> WorldState:
        return self._world

    def call_gas(self, data: bytes) -> int:
        return self._config.gas.call_gas + self._config.gas.payload_byte_gas * len(data)

    def execute(
        self,
        caller: str,
        account: str,
        target: str,
        value: int,
        payload: bytes,
        gas_limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ExecutionReceipt:
        """Forward ``payload`` to ``target`` carrying ``value``."""
        self._require_orchestrator(caller)
        return self._run(account, [Call(normalize_identity(target), value, payload)], gas_limit, now)

    def execute_batch(
        self,
        caller: str,
        account: str,
        targets: Sequence[str],
        values: Sequence[int],
        payloads: Sequence[bytes],
        gas_limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ExecutionReceipt:
        """Run entries strictly in order; the batch commits only if all succeed.

        Raises MalformedBatch, before any call is attempted, if the three
        lists differ in length.
        """
        self._require_orchestrator(caller)
        if not (len(targets) == len(values) == len(payloads)):
            raise MalformedBatch(
                f"Batch lists differ in length: {len(targets)} targets, "
                f"{len(values)} values, {len(payloads)} payloads"
            )
        calls = [
            Call(normalize_identity(t), v, p)
            for t, v, p in zip(targets, values, payloads)
        ]
        return self._run(account, calls, gas_limit, now)

    def execute_payload(
        self,
        caller: str,
        account: str,
        payload: bytes,
        gas_limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ExecutionReceipt:
        """Decode a descriptor payload and dispatch it as one call or a batch."""
        self._require_orchestrator(caller)
        request = decode_payload(payload)
        if request is None:
            return ExecutionReceipt()
        if request.batch:
            return self.execute_batch(
                caller, account, request.targets, request.values, request.payloads,
                gas_limit, now,
            )
        return self.execute(
            caller, account, request.targets[0], request.values[0], request.payloads[0],
            gas_limit, now,
        )

    def _run(
        self,
        account: str,
        calls: list[Call],
        gas_limit: Optional[int],
        now: Optional[datetime],
    ) -> ExecutionReceipt:
        account = normalize_identity(account)
        marker = self._world.checkpoint()
        gas_used = 0
        results: list[bytes] = []
        try:
            for index, call in enumerate(calls):
                cost = self.call_gas(call.data)
                if gas_limit is not None and gas_used + cost > gas_limit:
                    gas_used = gas_limit
                    raise CallReverted(f"out of gas at entry {index}")
                gas_used += cost
                results.append(self._invoke(account, call, now))
                self._world.record_event(
                    emit(
                        EventKind.EXECUTED,
                        account,
                        {
                            "target": call.target,
                            "value": call.value,
                            "payload": "0x" + call.data.hex(),
                        },
                        now,
                    )
                )
        except ExecutionError as exc:
            self._world.revert_to(marker)
            exc.gas_used = gas_used
            logger.info(
                "Execution reverted",
                extra={"event": "executor.reverted", "account": account, "error": str(exc)},
            )
            raise
        except Exception as exc:
            self._world.revert_to(marker)
            logger.exception(
                "Execution aborted",
                extra={"event": "executor.aborted", "account": account},
            )
            reverted = CallReverted(f"{type(exc).__name__}: {exc}")
            reverted.gas_used = gas_used
            raise reverted from exc
        events = self._world.commit()
        return ExecutionReceipt(
            gas_used=gas_used,
            return_data=tuple(results),
            events=tuple(events),
        )

    def _invoke(self, account: str, call: Call, now: Optional[datetime]) -> bytes:
        self._world.transfer(account, call.target, call.value)
        handler = self._world.target(call.target)
        if handler is None:
            return b""
        ctx = CallContext(
            world=self._world,
            sender=account,
            target=call.target,
            value=call.value,
            data=call.data,
            now=now,
        )
        try:
            result = handler(ctx)
            if result is None:
                return b""
            if not isinstance(result, (bytes, bytearray, memoryview)):
                raise CallReverted(f"target returned {type(result).__name__}, not bytes")
            return bytes(result)
        except ExecutionError:
            raise
        except Exception as exc:
            raise CallReverted(f"{type(exc).__name__}: {exc}") from exc

    def _require_orchestrator(self, caller: str) -> None:
        if not same_identity(caller, self._config.orchestrator):
            raise UnauthorizedCaller(caller, self._config.orchestrator)
