"""Tests for the append-only event log — proves immutability and integrity checks."""

import json
import pytest
from datetime import datetime, timezone
from pathlib import Path

from opgate.persistence.event_log import EventKind, EventLog, EventRecord, emit

ACCOUNT = "0xA1a1a1A1A1a1a1A1A1a1A1A1a1a1A1A1A1A1A1A1"
OTHER = "0xA2a2A2A2A2a2a2a2a2A2A2a2A2a2A2a2A2a2a2a2"


def _now() -> datetime:
    return datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


def _validated(sequence: int) -> EventRecord:
    return emit(
        EventKind.OPERATION_VALIDATED,
        ACCOUNT,
        {"account": ACCOUNT, "sequence": sequence},
        _now(),
    )


class TestEventRecord:
    def test_hash_is_deterministic(self) -> None:
        a = EventRecord.create("evt_1", EventKind.EXECUTED, ACCOUNT, {"value": 1}, _now())
        b = EventRecord.create("evt_1", EventKind.EXECUTED, ACCOUNT, {"value": 1}, _now())
        assert a.event_hash == b.event_hash
        assert a.event_hash.startswith("sha256:")

    def test_payload_changes_hash(self) -> None:
        a = EventRecord.create("evt_1", EventKind.EXECUTED, ACCOUNT, {"value": 1}, _now())
        b = EventRecord.create("evt_1", EventKind.EXECUTED, ACCOUNT, {"value": 2}, _now())
        assert a.event_hash != b.event_hash

    def test_emit_assigns_fresh_ids(self) -> None:
        assert _validated(0).event_id != _validated(0).event_id
        assert _validated(0).timestamp_utc == "2026-03-01T09:00:00Z"


class TestInMemoryLog:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_validated(0))
        log.append(emit(EventKind.SIGNER_ADDED, ACCOUNT, {"identity": ACCOUNT}, _now()))
        assert log.count == 2
        assert len(log.events(EventKind.OPERATION_VALIDATED)) == 1
        assert len(log.events_for(ACCOUNT)) == 2
        assert log.last_event.event_kind == EventKind.SIGNER_ADDED

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        event = _validated(0)
        log.append(event)
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(event)
        assert log.count == 1

    def test_events_returns_copy(self) -> None:
        log = EventLog()
        log.append(_validated(0))
        log.events().clear()
        assert log.count == 1

    def test_empty_log(self) -> None:
        log = EventLog()
        assert log.count == 0
        assert log.last_event is None


class TestFilePersistence:
    def test_reload_from_jsonl(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.extend([_validated(0), _validated(1)])
        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert [e.payload["sequence"] for e in reloaded.events()] == [0, 1]

    def test_tampered_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_validated(0))
        record = json.loads(path.read_text(encoding="utf-8"))
        record["payload"]["sequence"] = 7
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Integrity"):
            EventLog(storage_path=path)

    def test_replayed_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_validated(0))
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")
        with pytest.raises(ValueError, match="Duplicate"):
            EventLog(storage_path=path)


def _charged(sequence: int, account: str = ACCOUNT) -> EventRecord:
    return emit(
        EventKind.OPERATION_CHARGED,
        account,
        {"account": account, "sequence": sequence, "gas_used": 1, "actual_cost": 1, "succeeded": True},
        _now(),
    )


class TestSequenceQueries:
    def test_consumed_and_next_sequence(self) -> None:
        log = EventLog()
        assert log.next_sequence(ACCOUNT) == 0
        log.extend([_validated(0), _validated(1)])
        assert log.consumed_sequences(ACCOUNT) == [0, 1]
        assert log.next_sequence(ACCOUNT) == 2
        assert log.consumed_sequences(OTHER) == []

    def test_gaps_reported_per_account(self) -> None:
        log = EventLog()
        log.extend([_validated(0), _validated(2)])
        log.append(emit(
            EventKind.OPERATION_VALIDATED, OTHER, {"account": OTHER, "sequence": 0}, _now(),
        ))
        assert log.sequence_gaps() == {ACCOUNT: [0, 2]}

    def test_charge_counts(self) -> None:
        log = EventLog()
        log.extend([_validated(0), _charged(0), _charged(0)])
        assert log.charge_counts()[(ACCOUNT, 0)] == 2
        assert log.charge_counts()[(ACCOUNT, 1)] == 0

    def test_operation_events_ignore_non_operation_kinds(self) -> None:
        log = EventLog()
        log.append(_validated(0))
        log.append(emit(EventKind.SIGNER_ADDED, ACCOUNT, {"identity": ACCOUNT}, _now()))
        log.append(_charged(0))
        kinds = [e.event_kind for e in log.operation_events(ACCOUNT, 0)]
        assert kinds == [EventKind.OPERATION_VALIDATED, EventKind.OPERATION_CHARGED]
        assert log.operation_events(ACCOUNT, 1) == []


class TestRecordSerialisation:
    def test_dict_round_trip_verifies_hash(self) -> None:
        event = _validated(3)
        assert EventRecord.from_dict(event.to_dict()) == event

    def test_tampered_dict_rejected(self) -> None:
        data = _validated(3).to_dict()
        data["actor_id"] = OTHER
        with pytest.raises(ValueError, match="Integrity"):
            EventRecord.from_dict(data)
