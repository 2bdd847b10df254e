"""Cognitocratic measure (CM) award records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class CmAward:
    """CM points awarded to a proposer once their proposal passes.

    chamber_multiplier_times10 is fixed-point: 15 means a 1.5x chamber.
    """
    proposal_id: str
    proposer_id: str
    chamber_id: str
    avg_score: Optional[int]
    lcm_points: int
    chamber_multiplier_times10: int
    mcm_points: int
    created_utc: datetime


@dataclass(frozen=True)
class ChamberCmStats:
    chamber_id: str
    awards: int
    lcm_points: int
    mcm_points: int
