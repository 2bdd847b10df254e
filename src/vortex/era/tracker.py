"""Era activity tracker: snapshots, per-address counters and quotas.

Counters are incremented by the service only after the store reports
that a write created something new (a first vote, a first report, a
milestone transition), so retries and concurrent duplicates never
double-count.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from vortex.external.clock import Clock
from vortex.models.era import ActivityCounts, ActivityKind, EraSnapshot
from vortex.persistence.base import GovernanceStore
from vortex.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaViolation:
    """An address has used up its per-era allowance for one activity kind."""
    kind: ActivityKind
    era: int
    limit: int
    used: int

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "era": self.era,
            "limit": self.limit,
            "used": self.used,
        }


class EraActivityTracker:
    """Tracks activity for the clock's current era."""

    def __init__(
        self,
        store: GovernanceStore,
        clock: Clock,
        resolver: PolicyResolver,
    ) -> None:
        self._store = store
        self._clock = clock
        self._resolver = resolver

    def current_era(self) -> int:
        return self._clock.current_era()

    def ensure_snapshot(self, era: Optional[int] = None) -> EraSnapshot:
        """Make sure the era has a snapshot, seeding it with the fallback count."""
        target = self.current_era() if era is None else era
        return self._store.ensure_era_snapshot(
            target, self._resolver.active_governors_fallback(), self._clock.now(),
        )

    def active_governors_for_current_era(self) -> int:
        snapshot = self._store.get_era_snapshot(self.current_era())
        if snapshot is None:
            return self._resolver.active_governors_fallback()
        return snapshot.active_governors

    def set_active_governors(self, era: int, active_governors: int) -> EraSnapshot:
        return self._store.set_era_snapshot(
            era, max(0, int(active_governors)), self._clock.now(),
        )

    def activity(self, address: str, era: Optional[int] = None) -> ActivityCounts:
        target = self.current_era() if era is None else era
        return self._store.get_era_activity(target, address)

    def check_quota(
        self, address: str, kind: ActivityKind,
    ) -> Optional[QuotaViolation]:
        """Return a violation if one more action of this kind would exceed the quota."""
        limit = self._resolver.era_quota(kind)
        if limit is None:
            return None
        era = self.current_era()
        used = self._store.get_era_activity(era, address).get(kind)
        if used >= limit:
            logger.warning(
                "era quota exceeded: address=%s kind=%s era=%d used=%d limit=%d",
                address, kind.value, era, used, limit,
            )
            return QuotaViolation(kind=kind, era=era, limit=limit, used=used)
        return None

    def increment(self, address: str, delta: ActivityCounts) -> ActivityCounts:
        """Add delta to the current era's counters for address."""
        return self._store.increment_era_activity(self.current_era(), address, delta)

    def record(self, address: str, kind: ActivityKind) -> ActivityCounts:
        return self.increment(address, ActivityCounts.single(kind))
