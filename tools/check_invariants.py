#!/usr/bin/env python3
"""opgate invariant checks against the protocol config and an event log.

Usage:
    python3 tools/check_invariants.py
    python3 tools/check_invariants.py data/events.jsonl
"""

import json
import sys
from pathlib import Path
from typing import Optional

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from opgate.config import ProtocolConfig
from opgate.persistence.event_log import EventKind, EventLog

CONFIG_DIR = ROOT / "config"


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_config(config_dir: Path, errors: list[str]) -> None:
    """Validate protocol.json beyond what ProtocolConfig itself enforces."""
    path = config_dir / ProtocolConfig.CONFIG_FILENAME
    if not path.exists():
        errors.append(f"Protocol config not found: {path}")
        return
    raw = load_json(path)
    try:
        config = ProtocolConfig.from_dict(raw)
    except (TypeError, ValueError) as exc:
        errors.append(f"Protocol config rejected: {exc}")
        return

    # A recoverable ECDSA signature is r || s || v
    if config.min_signature_length < 65:
        errors.append(
            f"min_signature_length must be >= 65, got {config.min_signature_length}"
        )
    if "sponsor_decline_policy" not in raw:
        errors.append("sponsor_decline_policy must be stated explicitly")
    if config.gas.call_gas <= 0:
        errors.append("gas.call_gas must be > 0")
    if config.gas.validation_gas <= 0:
        errors.append("gas.validation_gas must be > 0")


def check_events(log: EventLog, errors: list[str]) -> None:
    """Audit sequence consumption and charging in an event log."""
    # --- Sequence invariants: per account, exactly 0, 1, 2, ... ---
    for account, sequences in log.sequence_gaps().items():
        expected = list(range(len(sequences)))
        errors.append(f"{account} consumed sequences {sequences}, expected {expected}")

    # --- Charging invariants: one charge per validated operation ---
    for event in log.events(EventKind.OPERATION_CHARGED):
        if event.payload["actual_cost"] < 0:
            errors.append(f"Negative charge in event {event.event_id}")
    for (account, sequence), count in log.charge_counts().items():
        if count > 1:
            errors.append(f"{account} sequence {sequence} charged {count} times")
        if sequence not in log.consumed_sequences(account):
            errors.append(f"{account} sequence {sequence} charged but never validated")

    # --- Sponsor invariants: no sponsorship without engagement ---
    engaged = {e.payload["sponsor"] for e in log.events(EventKind.SPONSOR_ENGAGED)}
    for event in log.events(EventKind.GAS_SPONSORED):
        if event.payload["sponsor"] not in engaged:
            errors.append(f"Sponsor {event.payload['sponsor']} paid without being engaged")


def check(config_dir: Path = CONFIG_DIR, events_path: Optional[Path] = None) -> int:
    errors: list[str] = []

    check_config(config_dir, errors)

    if events_path is not None:
        if not events_path.exists():
            errors.append(f"Event log not found: {events_path}")
        else:
            try:
                log = EventLog(storage_path=events_path)
            except (KeyError, ValueError) as exc:
                errors.append(f"Event log rejected: {exc}")
            else:
                check_events(log, errors)

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    events_arg = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    raise SystemExit(check(events_path=events_arg))
