"""Era rollup engine: classify every active address at an era boundary.

For each address with activity in the era:

    required  = sum of per-kind requirements
    completed = sum of the address's per-kind counters
    status    = band(completed, required)
    active    = every kind with a positive requirement is met

The rollup is written once. Rolling up an already-rolled era returns the
stored rollup and recomputes only the summary (status counts, users
rolled) from the stored per-user statuses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from vortex.models.era import (
    ActivityCounts,
    ActivityKind,
    EraRollup,
    EraUserStatus,
    GoverningStatus,
)
from vortex.persistence.base import GovernanceStore
from vortex.policy.resolver import PolicyResolver, StatusBands

logger = logging.getLogger(__name__)


def classify_governing_status(
    completed: int, required: int, bands: StatusBands,
) -> GoverningStatus:
    """Map completed/required activity onto a governing status band."""
    if required <= 0:
        return GoverningStatus.STABLE
    if completed >= required + bands.ahead_margin:
        return GoverningStatus.AHEAD
    if completed >= required:
        return GoverningStatus.STABLE
    ratio = completed / required
    if ratio >= bands.falling_behind_ratio:
        return GoverningStatus.FALLING_BEHIND
    if ratio >= bands.at_risk_ratio:
        return GoverningStatus.AT_RISK
    return GoverningStatus.LOSING_STATUS


def meets_requirements(counts: ActivityCounts, requirements: ActivityCounts) -> bool:
    """True when every kind with a positive requirement is satisfied."""
    for kind in ActivityKind:
        required = requirements.get(kind)
        if required > 0 and counts.get(kind) < required:
            return False
    return True


@dataclass(frozen=True)
class EraRollupResult:
    era: int
    rolled_utc: datetime
    requirements: ActivityCounts
    required_total: int
    active_governors_next_era: int
    users_rolled: int
    status_counts: dict[str, int] = field(default_factory=dict)
    created: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "era": self.era,
            "rolled_utc": self.rolled_utc.isoformat(),
            "requirements": self.requirements.to_dict(),
            "required_total": self.required_total,
            "active_governors_next_era": self.active_governors_next_era,
            "users_rolled": self.users_rolled,
            "status_counts": dict(self.status_counts),
        }


def _status_counts(statuses: list[EraUserStatus]) -> dict[str, int]:
    counts = {status.value: 0 for status in GoverningStatus}
    for s in statuses:
        counts[s.status.value] += 1
    return counts


class EraRollupEngine:
    """Computes and freezes era rollups."""

    def __init__(self, store: GovernanceStore, resolver: PolicyResolver) -> None:
        self._store = store
        self._resolver = resolver

    def compute_statuses(
        self, era: int, requirements: ActivityCounts,
    ) -> list[EraUserStatus]:
        bands = self._resolver.status_bands()
        required_total = requirements.total()
        statuses: list[EraUserStatus] = []
        for row in self._store.list_era_activity(era):
            completed = row.counts.total()
            statuses.append(EraUserStatus(
                era=era,
                address=row.address,
                status=classify_governing_status(completed, required_total, bands),
                required_total=required_total,
                completed_total=completed,
                is_active_next_era=meets_requirements(row.counts, requirements),
                counts=row.counts,
            ))
        return statuses

    def rollup(self, era: int, now: datetime) -> EraRollupResult:
        existing = self._store.get_era_rollup(era)
        if existing is not None:
            return self._from_stored(existing)

        requirements = self._resolver.era_requirements()
        statuses = self.compute_statuses(era, requirements)
        rollup = EraRollup(
            era=era,
            requirements=requirements,
            required_total=requirements.total(),
            active_governors_next_era=sum(1 for s in statuses if s.is_active_next_era),
            rolled_utc=now,
        )
        if not self._store.store_era_rollup(rollup, statuses):
            # Lost the race to a concurrent rollup; report what was stored.
            return self._from_stored(self._store.get_era_rollup(era))

        logger.info(
            "era %d rolled up: users=%d active_next_era=%d",
            era, len(statuses), rollup.active_governors_next_era,
        )
        return EraRollupResult(
            era=era,
            rolled_utc=rollup.rolled_utc,
            requirements=requirements,
            required_total=rollup.required_total,
            active_governors_next_era=rollup.active_governors_next_era,
            users_rolled=len(statuses),
            status_counts=_status_counts(statuses),
            created=True,
        )

    def _from_stored(self, rollup: EraRollup) -> EraRollupResult:
        statuses = self._store.list_era_user_statuses(rollup.era)
        return EraRollupResult(
            era=rollup.era,
            rolled_utc=rollup.rolled_utc,
            requirements=rollup.requirements,
            required_total=rollup.required_total,
            active_governors_next_era=rollup.active_governors_next_era,
            users_rolled=len(statuses),
            status_counts=_status_counts(statuses),
        )
