"""Append-only event log — the observable record of every state transition.

Each transition in the pipeline returns the events it produced as an
explicit value alongside its result; the orchestrator appends them here.
Events are immutable once written. The log serves as:
1. The monitoring and test surface (who was validated, what executed).
2. The audit trail for replaying sequence consumption per account.
3. A JSONL file that can be reloaded with integrity verification.
"""

from __future__ import annotations

import enum
import hashlib
import json
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional
from uuid import uuid4


class EventKind(str, enum.Enum):
    """Classification of observable pipeline events."""
    OPERATION_VALIDATED = "operation_validated"
    SPONSOR_ENGAGED = "sponsor_engaged"
    EXECUTED = "executed"
    GAS_SPONSORED = "gas_sponsored"
    # Account administration
    SIGNER_ADDED = "signer_added"
    SIGNER_REMOVED = "signer_removed"
    SPONSOR_ALLOWANCE_GRANTED = "sponsor_allowance_granted"
    # Emitted by call targets during execution
    TARGET_LOG = "target_log"
    # Orchestrator bookkeeping
    OPERATION_REJECTED = "operation_rejected"
    OPERATION_CHARGED = "operation_charged"


# Kinds whose payload names the (account, sequence) of one operation
_OPERATION_KINDS = frozenset({
    EventKind.OPERATION_VALIDATED,
    EventKind.OPERATION_REJECTED,
    EventKind.OPERATION_CHARGED,
})


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event.

    ``actor_id`` is the identity whose state changed (account, sponsor
    or call target). ``payload`` holds JSON-safe values only; bytes are
    carried as 0x-prefixed hex.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str  # SHA-256 of canonical JSON

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(event_id, event_kind.value, ts_str, actor_id, payload),
        )

    @property
    def operation_key(self) -> Optional[tuple[str, int]]:
        """(account, sequence) for per-operation events, else None."""
        if self.event_kind not in _OPERATION_KINDS:
            return None
        return self.payload["account"], self.payload["sequence"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventRecord:
        """Rebuild a stored record, rejecting it if its hash does not verify."""
        expected = _canonical_hash(
            data["event_id"],
            data["event_kind"],
            data["timestamp_utc"],
            data["actor_id"],
            data["payload"],
        )
        if data["event_hash"] != expected:
            raise ValueError(
                f"Integrity check failed: event {data['event_id']} "
                f"stored hash {data['event_hash']} != computed {expected}"
            )
        return cls(
            event_id=data["event_id"],
            event_kind=EventKind(data["event_kind"]),
            timestamp_utc=data["timestamp_utc"],
            actor_id=data["actor_id"],
            payload=data["payload"],
            event_hash=data["event_hash"],
        )


def emit(
    event_kind: EventKind,
    actor_id: str,
    payload: dict[str, Any],
    now: Optional[datetime] = None,
) -> EventRecord:
    """Create an event with a fresh ID."""
    return EventRecord.create(
        event_id=f"evt_{uuid4().hex[:16]}",
        event_kind=event_kind,
        actor_id=actor_id,
        payload=payload,
        timestamp_utc=now,
    )


class EventLog:
    """Append-only event log with optional JSONL persistence.

    Beyond plain filtering, the log answers the audit questions the
    pipeline cares about: which sequences each account consumed, which
    of those were charged and how often, and what happened to a single
    (account, sequence) operation.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._event_ids: set[str] = set()
        self._storage_path = storage_path

        if storage_path and storage_path.exists():
            self._replay(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event. Raises ValueError on a duplicate event_id."""
        self._admit(event)
        if self._storage_path:
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def extend(self, events: Iterable[EventRecord]) -> None:
        for event in events:
            self.append(event)

    # ------------------------------------------------------------ queries

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_for(self, actor_id: str, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events whose actor is ``actor_id``."""
        return [e for e in self.events(kind) if e.actor_id == actor_id]

    def operation_events(self, account: str, sequence: int) -> list[EventRecord]:
        """Validated / rejected / charged events for one operation, in log order."""
        return [e for e in self._events if e.operation_key == (account, sequence)]

    def consumed_sequences(self, account: str) -> list[int]:
        """Sequences validated for ``account``, in the order they were consumed."""
        return [
            e.payload["sequence"]
            for e in self.events(EventKind.OPERATION_VALIDATED)
            if e.payload["account"] == account
        ]

    def next_sequence(self, account: str) -> int:
        """The counter value the log implies for ``account``."""
        consumed = self.consumed_sequences(account)
        return consumed[-1] + 1 if consumed else 0

    def sequence_gaps(self) -> dict[str, list[int]]:
        """Accounts whose consumed sequences are not exactly 0, 1, 2, ..."""
        accounts = {e.payload["account"] for e in self.events(EventKind.OPERATION_VALIDATED)}
        gaps: dict[str, list[int]] = {}
        for account in sorted(accounts):
            consumed = self.consumed_sequences(account)
            if consumed != list(range(len(consumed))):
                gaps[account] = consumed
        return gaps

    def charge_counts(self) -> Counter[tuple[str, int]]:
        """How many OPERATION_CHARGED events each (account, sequence) has."""
        return Counter(e.operation_key for e in self.events(EventKind.OPERATION_CHARGED))

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    # ------------------------------------------------------------ internals

    def _admit(self, event: EventRecord) -> None:
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")
        self._events.append(event)
        self._event_ids.add(event.event_id)

    def _replay(self, path: Path) -> None:
        """Load a JSONL file; fail closed on a tampered or replayed record."""
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    self._admit(EventRecord.from_dict(json.loads(line)))
                except ValueError as exc:
                    raise ValueError(f"{exc} (line {line_num})") from exc
