"""Persistence layer: governance stores and the audit event log."""

from typing import Optional

from vortex.persistence.base import GovernanceStore
from vortex.persistence.event_log import EventKind, EventLog, EventRecord
from vortex.persistence.memory_store import MemoryStore
from vortex.persistence.sqlite_store import SqliteStore
from vortex.policy.resolver import PolicyResolver


def open_store(resolver: PolicyResolver) -> GovernanceStore:
    """Open the store selected by runtime_policy.json storage.backend."""
    if resolver.storage_backend() == "sqlite":
        return SqliteStore(resolver.sqlite_path())
    return MemoryStore()


def open_event_log(resolver: PolicyResolver) -> Optional[EventLog]:
    """Open the JSONL event log at storage.event_log_path, or None when unset."""
    path = resolver.event_log_path()
    if path is None:
        return None
    return EventLog(path)


__all__ = [
    "EventKind",
    "EventLog",
    "EventRecord",
    "GovernanceStore",
    "MemoryStore",
    "SqliteStore",
    "open_event_log",
    "open_store",
]
