"""Formation data models: the post-pass build stage of a proposal.

A formation project is seeded when a proposal passes its chamber vote.
Team slots fill up as governors join; milestones move forward only:

    PENDING → SUBMITTED → UNLOCKED
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class MilestoneStatus(str, enum.Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    UNLOCKED = "unlocked"


class JoinOutcome(str, enum.Enum):
    """Outcome of an atomic team join at the store."""
    JOINED = "joined"
    ALREADY_MEMBER = "already_member"
    TEAM_FULL = "team_full"


@dataclass(frozen=True)
class FormationProject:
    proposal_id: str
    team_slots_total: int
    team_filled: int
    milestones_total: int
    milestones_completed: int
    created_utc: datetime

    @property
    def is_team_full(self) -> bool:
        return self.team_filled >= self.team_slots_total

    @property
    def progress(self) -> float:
        """Fraction of milestones unlocked (0.0 when there are none)."""
        if self.milestones_total <= 0:
            return 0.0
        return self.milestones_completed / self.milestones_total


@dataclass(frozen=True)
class FormationMember:
    proposal_id: str
    member_address: str
    role: Optional[str]
    joined_utc: datetime
