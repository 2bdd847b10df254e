"""Courts data models: cases, reports and verdicts.

OPEN → LIVE once enough distinct reports accumulate.
LIVE → RESOLVED once enough verdicts are cast.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class CaseStatus(str, enum.Enum):
    OPEN = "open"
    LIVE = "live"
    RESOLVED = "resolved"


class Verdict(str, enum.Enum):
    GUILTY = "guilty"
    NOT_GUILTY = "not_guilty"


class VerdictOutcome(str, enum.Enum):
    """Outcome of an atomic verdict upsert at the store."""
    CREATED = "created"
    UPDATED = "updated"
    CASE_NOT_LIVE = "case_not_live"


@dataclass(frozen=True)
class CourtCase:
    case_id: str
    title: str
    status: CaseStatus
    base_reports: int
    created_utc: datetime
    updated_utc: datetime
    outcome: Optional[Verdict] = None


@dataclass(frozen=True)
class VerdictTally:
    guilty: int = 0
    not_guilty: int = 0

    @property
    def total(self) -> int:
        return self.guilty + self.not_guilty
