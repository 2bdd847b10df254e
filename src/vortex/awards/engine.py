"""Cognitocratic measure (CM) awards.

When a proposal passes its chamber vote, its author receives:

    LCM = round(avg_yes_score × 10)
    MCM = round(LCM × chamber_multiplier_times10 / 10)

Rounding is half-up. Each proposal is awarded at most once; ACM for an
address is the sum of MCM over every award it received.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from vortex.chambers.engine import ChamberRegistry
from vortex.models.award import ChamberCmStats, CmAward
from vortex.models.chamber import normalize_chamber_id
from vortex.models.proposal import Proposal
from vortex.persistence.base import GovernanceStore
from vortex.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)


def round_half_up(value: Union[int, float, Decimal]) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class AwardOutcome:
    award: CmAward
    created: bool


class AwardEngine:

    def __init__(
        self,
        store: GovernanceStore,
        resolver: PolicyResolver,
        chambers: Optional[ChamberRegistry] = None,
    ) -> None:
        self._store = store
        self._chambers = chambers if chambers is not None else ChamberRegistry(store, resolver)

    def compute_award(
        self, proposal: Proposal, avg_score: float, now: datetime,
    ) -> CmAward:
        multiplier_times10 = self._chambers.multiplier_times10(proposal.chamber_id)
        lcm = round_half_up(Decimal(str(avg_score)) * 10)
        mcm = round_half_up(Decimal(lcm) * multiplier_times10 / 10)
        return CmAward(
            proposal_id=proposal.proposal_id,
            proposer_id=proposal.author_address,
            chamber_id=normalize_chamber_id(proposal.chamber_id),
            avg_score=round_half_up(avg_score),
            lcm_points=lcm,
            chamber_multiplier_times10=multiplier_times10,
            mcm_points=mcm,
            created_utc=now,
        )

    def award_once(
        self, proposal: Proposal, avg_score: float, now: datetime,
    ) -> AwardOutcome:
        """Award CM for a passed proposal; later calls return the stored award."""
        candidate = self.compute_award(proposal, avg_score, now)
        created = self._store.insert_cm_award(candidate)
        if created:
            logger.info(
                "cm awarded: proposal=%s proposer=%s lcm=%d mcm=%d",
                candidate.proposal_id, candidate.proposer_id,
                candidate.lcm_points, candidate.mcm_points,
            )
            return AwardOutcome(award=candidate, created=True)
        return AwardOutcome(
            award=self._store.get_cm_award(proposal.proposal_id), created=False,
        )

    def acm_points(self, address: str) -> int:
        return sum(a.mcm_points for a in self._store.list_cm_awards(proposer_id=address))

    def chamber_stats(self, chamber_id: str) -> ChamberCmStats:
        normalized = normalize_chamber_id(chamber_id)
        awards = self._store.list_cm_awards(chamber_id=normalized)
        return ChamberCmStats(
            chamber_id=normalized,
            awards=len(awards),
            lcm_points=sum(a.lcm_points for a in awards),
            mcm_points=sum(a.mcm_points for a in awards),
        )
