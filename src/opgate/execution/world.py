"""World state — the balances, storage and call targets the executor acts on.

This is the in-memory stand-in for the external ledger. Every mutation is
journaled so a batch can be unwound completely: balances, target storage
and events emitted by targets all roll back together.

Usage:
    world = WorldState()
    world.register_target(counter_address, counter_handler)
    world.credit(account, 1_000)

    marker = world.checkpoint()
    ...                       # calls mutate world
    world.revert_to(marker)   # or world.commit()
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from opgate.crypto.identity import normalize_identity
from opgate.errors import CallReverted
from opgate.persistence.event_log import EventKind, EventRecord, emit

_MISSING = object()


@dataclass(frozen=True)
class Checkpoint:
    journal_length: int
    event_count: int


@dataclass(frozen=True)
class CallContext:
    """What a call target sees: who called, with what value and data."""
    world: WorldState
    sender: str
    target: str
    value: int
    data: bytes
    now: Optional[datetime] = None

    def load(self, key: str, default: Any = None) -> Any:
        return self.world.load(self.target, key, default)

    def store(self, key: str, value: Any) -> None:
        self.world.store(self.target, key, value)

    def log(self, topic: str, **fields: Any) -> None:
        """Emit a target event. Fields must be JSON-safe."""
        self.world.record_event(
            emit(EventKind.TARGET_LOG, self.target, {"topic": topic, **fields}, self.now)
        )


CallTarget = Callable[[CallContext], Optional[bytes]]


class WorldState:
    def __init__(self) -> None:
        self._balances: dict[str, int] = {}
        self._storage: dict[str, dict[str, Any]] = {}
        self._targets: dict[str, CallTarget] = {}
        self._journal: list[tuple[str, str, Any, Any]] = []
        self._pending_events: list[EventRecord] = []

    # ------------------------------------------------------------ targets

    def register_target(self, address: str, handler: CallTarget) -> str:
        address = normalize_identity(address)
        if address in self._targets:
            raise ValueError(f"Target already registered: {address}")
        self._targets[address] = handler
        return address

    def target(self, address: str) -> Optional[CallTarget]:
        return self._targets.get(normalize_identity(address))

    # ------------------------------------------------------------ balances

    def balance_of(self, address: str) -> int:
        return self._balances.get(normalize_identity(address), 0)

    def credit(self, address: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Credit amount must be non-negative")
        address = normalize_identity(address)
        self._set_balance(address, self.balance_of(address) + amount)

    def transfer(self, source: str, destination: str, amount: int) -> None:
        """Move value; CallReverted if the source cannot cover it."""
        if amount == 0:
            return
        source = normalize_identity(source)
        destination = normalize_identity(destination)
        available = self.balance_of(source)
        if available < amount:
            raise CallReverted(
                f"insufficient balance: {source} has {available}, needs {amount}"
            )
        self._set_balance(source, available - amount)
        self._set_balance(destination, self.balance_of(destination) + amount)

    def _set_balance(self, address: str, amount: int) -> None:
        self._journal.append(("balance", address, None, self._balances.get(address, _MISSING)))
        self._balances[address] = amount

    # ------------------------------------------------------------ storage

    def load(self, address: str, key: str, default: Any = None) -> Any:
        return self._storage.get(normalize_identity(address), {}).get(key, default)

    def store(self, address: str, key: str, value: Any) -> None:
        address = normalize_identity(address)
        slot = self._storage.setdefault(address, {})
        self._journal.append(("storage", address, key, slot.get(key, _MISSING)))
        slot[key] = value

    # ------------------------------------------------------------ events

    def record_event(self, event: EventRecord) -> None:
        self._pending_events.append(event)

    # ------------------------------------------------------------ journal

    def checkpoint(self) -> Checkpoint:
        return Checkpoint(len(self._journal), len(self._pending_events))

    def revert_to(self, checkpoint: Checkpoint) -> None:
        """Undo every mutation and drop every event recorded after ``checkpoint``."""
        while len(self._journal) > checkpoint.journal_length:
            kind, address, key, previous = self._journal.pop()
            if kind == "balance":
                if previous is _MISSING:
                    self._balances.pop(address, None)
                else:
                    self._balances[address] = previous
            else:
                slot = self._storage[address]
                if previous is _MISSING:
                    slot.pop(key, None)
                else:
                    slot[key] = previous
        del self._pending_events[checkpoint.event_count:]

    def commit(self) -> list[EventRecord]:
        """Make every journaled change permanent; return the pending events."""
        self._journal.clear()
        events, self._pending_events = self._pending_events, []
        return events
