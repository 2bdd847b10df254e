"""Idempotency record: the stored outcome of a keyed command."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class IdempotencyRecord:
    """First successful outcome for an idempotency key.

    fingerprint is the sha256 of the canonical command (type + payload);
    a replay must match both address and fingerprint.
    """
    key: str
    address: str
    fingerprint: str
    status: int
    response: dict[str, Any]
    created_utc: datetime
