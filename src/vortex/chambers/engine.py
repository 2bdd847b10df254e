"""Chamber registry: genesis seeding and proposal-driven create/dissolve.

Every write is idempotent at the store (insert-if-absent for creation,
compare-and-set for dissolution), so repeated passes of the same
proposal, or racing ones, change a chamber at most once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from vortex.models.chamber import (
    DEFAULT_MULTIPLIER_TIMES10,
    GENERAL_CHAMBER_ID,
    Chamber,
    ChamberAction,
    ChamberGovernance,
    ChamberStatus,
    multiplier_to_times10,
    normalize_chamber_id,
    parse_chamber_governance,
)
from vortex.models.proposal import Proposal
from vortex.persistence.base import GovernanceStore
from vortex.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChamberChange:
    action: ChamberAction
    chamber_id: str
    applied: bool


class ChamberRegistry:

    def __init__(self, store: GovernanceStore, resolver: PolicyResolver) -> None:
        self._store = store
        self._resolver = resolver

    def ensure_genesis(self, now: datetime) -> int:
        """Seed configured chambers that are not stored yet. Returns how many."""
        seeded = 0
        for chamber in self._resolver.chambers():
            if self._store.insert_chamber(Chamber(
                chamber_id=chamber.chamber_id,
                title=chamber.title,
                multiplier_times10=chamber.multiplier_times10,
                status=ChamberStatus.ACTIVE,
                created_utc=now,
                updated_utc=now,
            )):
                seeded += 1
        return seeded

    def get(self, chamber_id: str) -> Optional[Chamber]:
        return self._store.get_chamber(normalize_chamber_id(chamber_id))

    def list(self, include_dissolved: bool = False) -> list[Chamber]:
        return self._store.list_chambers(include_dissolved=include_dissolved)

    def multiplier_times10(self, chamber_id: str) -> int:
        """Stored multiplier (dissolved chambers keep theirs), then config, then 1.0."""
        chamber = self.get(chamber_id)
        if chamber is not None:
            return chamber.multiplier_times10
        configured = self._resolver.chamber(chamber_id)
        if configured is not None:
            return configured.multiplier_times10
        return DEFAULT_MULTIPLIER_TIMES10

    def apply_governance(
        self, proposal: Proposal, now: datetime,
    ) -> Optional[ChamberChange]:
        """Apply a passed general-chamber proposal's chamber action, if any."""
        if normalize_chamber_id(proposal.chamber_id) != GENERAL_CHAMBER_ID:
            return None
        governance = parse_chamber_governance(proposal.payload.content)
        if governance is None:
            return None
        if not governance.chamber_id or governance.chamber_id == GENERAL_CHAMBER_ID:
            return ChamberChange(governance.action, governance.chamber_id, applied=False)

        if governance.action is ChamberAction.CREATE:
            applied = self._create(governance, proposal.proposal_id, now)
        else:
            applied = self._store.dissolve_chamber(
                governance.chamber_id, proposal.proposal_id, now,
            )
        if applied:
            logger.info(
                "%s applied: chamber=%s proposal=%s",
                governance.action.value, governance.chamber_id, proposal.proposal_id,
            )
        return ChamberChange(governance.action, governance.chamber_id, applied=applied)

    def _create(
        self, governance: ChamberGovernance, proposal_id: str, now: datetime,
    ) -> bool:
        title = (governance.title or "").strip() or governance.chamber_id
        return self._store.insert_chamber(Chamber(
            chamber_id=governance.chamber_id,
            title=title,
            multiplier_times10=multiplier_to_times10(governance.multiplier),
            status=ChamberStatus.ACTIVE,
            created_utc=now,
            updated_utc=now,
            created_by_proposal_id=proposal_id,
        ))
