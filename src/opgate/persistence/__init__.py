"""Persistence — the append-only event log."""

from opgate.persistence.event_log import EventKind, EventLog, EventRecord, emit

__all__ = ["EventKind", "EventLog", "EventRecord", "emit"]
