"""Era data models: snapshots, per-user activity, rollups and statuses.

An era is a governance epoch. During an era every qualifying action an
address takes is counted once per kind. At the era boundary the rollup
classifies each address into a governing status and decides who counts
as an active governor for the next era.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime


class ActivityKind(str, enum.Enum):
    """Kinds of era activity. Each has its own counter, requirement and quota."""
    POOL_VOTES = "pool_votes"
    CHAMBER_VOTES = "chamber_votes"
    COURT_ACTIONS = "court_actions"
    FORMATION_ACTIONS = "formation_actions"


@dataclass(frozen=True)
class ActivityCounts:
    """One counter per activity kind.

    Used both for per-user era activity and for the era requirements.
    """
    pool_votes: int = 0
    chamber_votes: int = 0
    court_actions: int = 0
    formation_actions: int = 0

    @classmethod
    def single(cls, kind: ActivityKind, amount: int = 1) -> ActivityCounts:
        return cls(**{kind.value: amount})

    def get(self, kind: ActivityKind) -> int:
        return getattr(self, kind.value)

    def total(self) -> int:
        return (
            self.pool_votes + self.chamber_votes
            + self.court_actions + self.formation_actions
        )

    def plus(self, other: ActivityCounts) -> ActivityCounts:
        return ActivityCounts(
            pool_votes=self.pool_votes + other.pool_votes,
            chamber_votes=self.chamber_votes + other.chamber_votes,
            court_actions=self.court_actions + other.court_actions,
            formation_actions=self.formation_actions + other.formation_actions,
        )

    def is_empty(self) -> bool:
        return self.total() == 0

    def to_dict(self) -> dict[str, int]:
        return {kind.value: self.get(kind) for kind in ActivityKind}


class GoverningStatus(str, enum.Enum):
    """Governing status bands, best to worst."""
    AHEAD = "Ahead"
    STABLE = "Stable"
    FALLING_BEHIND = "Falling behind"
    AT_RISK = "At risk"
    LOSING_STATUS = "Losing status"


@dataclass(frozen=True)
class ClockSnapshot:
    """The governance clock: which era is current and when it began."""
    current_era: int
    updated_utc: datetime


@dataclass(frozen=True)
class EraSnapshot:
    era: int
    active_governors: int
    created_utc: datetime


@dataclass(frozen=True)
class EraUserActivity:
    era: int
    address: str
    counts: ActivityCounts


@dataclass(frozen=True)
class EraRollup:
    """Frozen result of rolling up an era. Written once, never updated."""
    era: int
    requirements: ActivityCounts
    required_total: int
    active_governors_next_era: int
    rolled_utc: datetime


@dataclass(frozen=True)
class EraUserStatus:
    era: int
    address: str
    status: GoverningStatus
    required_total: int
    completed_total: int
    is_active_next_era: bool
    counts: ActivityCounts
