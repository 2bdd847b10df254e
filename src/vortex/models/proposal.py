"""Proposal data models: proposals, stages, payloads and the two vote ledgers.

A proposal moves forward through three stages and never regresses:

    POOL → VOTE → BUILD

The pool stage collects attention (up/down votes) from active governors.
Once the attention quorum and the upvote floor are both met, the proposal
enters the chamber vote. A passing chamber vote moves formation-eligible
proposals into BUILD, where the formation team and milestones are tracked.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class ProposalStage(str, enum.Enum):
    """Lifecycle stage of a proposal."""
    POOL = "pool"
    VOTE = "vote"
    BUILD = "build"


class PoolDirection(int, enum.Enum):
    """Direction of an attention vote in the proposal pool."""
    UP = 1
    DOWN = -1

    @classmethod
    def parse(cls, value: str) -> PoolDirection:
        if value == "up":
            return cls.UP
        if value == "down":
            return cls.DOWN
        raise ValueError(f"Unknown pool vote direction: {value}")

    @property
    def label(self) -> str:
        return "up" if self is PoolDirection.UP else "down"


class ChamberChoice(str, enum.Enum):
    """Chamber vote options."""
    YES = "yes"
    NO = "no"
    ABSTAIN = "abstain"


MIN_SCORE = 1
MAX_SCORE = 10


@dataclass(frozen=True)
class ProposalPayload:
    """Typed proposal payload.

    formation_eligible is optional: None means the author did not say,
    which is treated as eligible. content holds the remaining form fields
    (what/why/how, budget items, ...) untouched.
    """
    team_slots_total: int = 0
    milestones_total: int = 0
    formation_eligible: Optional[bool] = None
    content: dict[str, Any] = field(default_factory=dict)

    @property
    def is_formation_eligible(self) -> bool:
        return True if self.formation_eligible is None else self.formation_eligible

    def to_dict(self) -> dict[str, Any]:
        return {
            "team_slots_total": self.team_slots_total,
            "milestones_total": self.milestones_total,
            "formation_eligible": self.formation_eligible,
            "content": dict(self.content),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProposalPayload:
        return cls(
            team_slots_total=int(data.get("team_slots_total", 0)),
            milestones_total=int(data.get("milestones_total", 0)),
            formation_eligible=data.get("formation_eligible"),
            content=dict(data.get("content", {})),
        )


@dataclass(frozen=True)
class Proposal:
    """A governance proposal.

    updated_utc marks the start of the current stage window; it only
    changes when the stage changes.
    """
    proposal_id: str
    author_address: str
    chamber_id: str
    title: str
    summary: str
    payload: ProposalPayload
    stage: ProposalStage
    created_utc: datetime
    updated_utc: datetime


@dataclass(frozen=True)
class PoolCounts:
    upvotes: int = 0
    downvotes: int = 0

    @property
    def engaged(self) -> int:
        return self.upvotes + self.downvotes


@dataclass(frozen=True)
class ChamberCounts:
    yes: int = 0
    no: int = 0
    abstain: int = 0

    @property
    def engaged(self) -> int:
        return self.yes + self.no + self.abstain


@dataclass(frozen=True)
class ChamberVote:
    """A single governor's chamber vote. score is only set on YES votes."""
    proposal_id: str
    voter_address: str
    choice: ChamberChoice
    score: Optional[int] = None
