"""Chamber models: specialization domains that proposals are filed under.

Genesis chambers come from config and are seeded into the store. After
that, chambers are created and dissolved only by passing proposals in the
general chamber whose content carries a meta-governance action:

    {"metaGovernance": {"action": "chamber.create", "chamberId": "research",
                        "title": "Research", "multiplier": 1.3}}
    {"metaGovernance": {"action": "chamber.dissolve", "chamberId": "research"}}

The general chamber itself can be neither created nor dissolved.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Union


DEFAULT_MULTIPLIER_TIMES10 = 10
GENERAL_CHAMBER_ID = "general"


def normalize_chamber_id(chamber_id: str) -> str:
    return chamber_id.strip().lower()


def multiplier_to_times10(multiplier: Union[int, float, None]) -> int:
    """Fixed-point multiplier, rounded half-up. Missing or zero means 1.0."""
    if not multiplier:
        return DEFAULT_MULTIPLIER_TIMES10
    scaled = Decimal(str(multiplier)) * 10
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class ChamberStatus(str, enum.Enum):
    ACTIVE = "active"
    DISSOLVED = "dissolved"


@dataclass(frozen=True)
class Chamber:
    """A chamber and its CM multiplier, stored as multiplier × 10."""
    chamber_id: str
    title: str
    multiplier_times10: int
    status: ChamberStatus = ChamberStatus.ACTIVE
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None
    created_by_proposal_id: Optional[str] = None
    dissolved_by_proposal_id: Optional[str] = None
    dissolved_utc: Optional[datetime] = None

    @property
    def multiplier(self) -> float:
        return self.multiplier_times10 / 10

    @property
    def is_active(self) -> bool:
        return self.status is ChamberStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.chamber_id,
            "title": self.title,
            "status": self.status.value,
            "multiplier": self.multiplier,
            "multiplier_times10": self.multiplier_times10,
            "created_by_proposal_id": self.created_by_proposal_id,
            "dissolved_by_proposal_id": self.dissolved_by_proposal_id,
            "dissolved_utc": self.dissolved_utc.isoformat() if self.dissolved_utc else None,
        }


class ChamberAction(str, enum.Enum):
    CREATE = "chamber.create"
    DISSOLVE = "chamber.dissolve"


@dataclass(frozen=True)
class ChamberGovernance:
    """A chamber lifecycle action carried by a general-chamber proposal."""
    action: ChamberAction
    chamber_id: str
    title: Optional[str] = None
    multiplier: Optional[float] = None


def parse_chamber_governance(content: dict[str, Any]) -> Optional[ChamberGovernance]:
    """Read the metaGovernance block from proposal content, if well formed."""
    meta = content.get("metaGovernance")
    if not isinstance(meta, dict):
        return None
    try:
        action = ChamberAction(meta.get("action"))
    except ValueError:
        return None

    raw_id = meta.get("chamberId", meta.get("id"))
    chamber_id = normalize_chamber_id(raw_id) if isinstance(raw_id, str) else ""
    title = meta.get("title", meta.get("name"))
    multiplier = meta.get("multiplier")
    if isinstance(multiplier, bool) or not isinstance(multiplier, (int, float)):
        multiplier = None
    return ChamberGovernance(
        action=action,
        chamber_id=chamber_id,
        title=title if isinstance(title, str) else None,
        multiplier=multiplier,
    )
