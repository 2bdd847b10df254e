"""Append-only governance event log: the audit trail of every mutation.

Each committed write (proposal created, vote cast, stage transition, CM
award, formation or court action, era rollup, era advance) produces an
immutable event record. Records carry a sha256 over their canonical JSON
so a persisted log can be verified when it is loaded back.
"""

from __future__ import annotations

import enum
import hashlib
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of governance events."""
    PROPOSAL_CREATED = "proposal_created"
    POOL_VOTE_CAST = "pool_vote_cast"
    CHAMBER_VOTE_CAST = "chamber_vote_cast"
    STAGE_TRANSITION = "stage_transition"
    CM_AWARDED = "cm_awarded"
    # Chambers
    CHAMBER_CREATED = "chamber_created"
    CHAMBER_DISSOLVED = "chamber_dissolved"
    # Formation
    FORMATION_SEEDED = "formation_seeded"
    FORMATION_JOINED = "formation_joined"
    MILESTONE_SUBMITTED = "milestone_submitted"
    MILESTONE_UNLOCKED = "milestone_unlocked"
    # Courts
    COURT_CASE_OPENED = "court_case_opened"
    COURT_REPORTED = "court_reported"
    COURT_CASE_LIVE = "court_case_live"
    COURT_VERDICT_CAST = "court_verdict_cast"
    COURT_CASE_RESOLVED = "court_case_resolved"
    # Eras
    ERA_ROLLED_UP = "era_rolled_up"
    ERA_ADVANCED = "era_advanced"
    STAGE_WINDOW_ENDED = "stage_window_ended"


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
    """A single immutable event in the governance log."""
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
            event_hash=_canonical_hash(
                event_id, event_kind.value, ts_str, actor_id, payload,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional JSONL file persistence.

    Events can only be appended, never modified or deleted. Duplicate
    event ids are rejected both on append and on load.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._event_ids: set[str] = set()
        self._storage_path = storage_path
        self._lock = threading.Lock()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event. Raises ValueError on a duplicate event_id."""
        with self._lock:
            if event.event_id in self._event_ids:
                raise ValueError(f"Duplicate event ID: {event.event_id}")
            if self._storage_path:
                self._append_to_file(event)
            self._events.append(event)
            self._event_ids.add(event.event_id)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        with self._lock:
            events = list(self._events)
        if kind is None:
            return events
        return [e for e in events if e.event_kind == kind]

    def events_for(self, key: str, value: Any) -> list[EventRecord]:
        """Return events whose payload has key == value (e.g. a proposal id)."""
        return [e for e in self.events() if e.payload.get(key) == value]

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        with self._lock:
            return self._events[-1] if self._events else None

    def _append_to_file(self, event: EventRecord) -> None:
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash(
                    event_id,
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["actor_id"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                self._events.append(EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                ))
                self._event_ids.add(event_id)
