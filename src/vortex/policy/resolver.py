"""Policy resolver: loads governance_params.json and runtime_policy.json
and exposes every governance decision parameter as a typed method call.

No magic. No defaults. If a value is missing from the config, it fails loud.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from vortex.models.chamber import (
    DEFAULT_MULTIPLIER_TIMES10,
    Chamber,
    multiplier_to_times10,
    normalize_chamber_id,
)
from vortex.models.era import ActivityCounts, ActivityKind


@dataclass(frozen=True)
class PoolQuorumPolicy:
    attention_quorum: float
    upvote_floor_fraction: float
    upvote_floor_min: int


@dataclass(frozen=True)
class ChamberQuorumPolicy:
    quorum_fraction: float
    passing_fraction: float


@dataclass(frozen=True)
class StatusBands:
    """Thresholds that map completed/required activity to a governing status."""
    ahead_margin: int
    falling_behind_ratio: float
    at_risk_ratio: float


@dataclass(frozen=True)
class CourtPolicy:
    live_report_threshold: int
    min_verdicts: int
    guilty_fraction: float


@dataclass(frozen=True)
class StageWindowPolicy:
    enabled: bool
    pool_seconds: int
    vote_seconds: int


@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_seconds: int


@dataclass(frozen=True)
class EligibilityPolicy:
    bypass: bool
    eligible_addresses: frozenset[str]
    cache_ttl_seconds: int


class PolicyResolver:
    """Loads and resolves all governance parameters and runtime policy.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        pool = resolver.pool_quorum_policy()
        floor = resolver.upvote_floor(active_governors=100)
    """

    def __init__(self, params: dict[str, Any], policy: dict[str, Any]) -> None:
        self._params = params
        self._policy = policy
        self._validate_versions()
        self._chambers = self._load_chambers()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load from the canonical config directory."""
        params = _load_json(config_dir / "governance_params.json")
        policy = _load_json(config_dir / "runtime_policy.json")
        return cls(params, policy)

    def _validate_versions(self) -> None:
        if "version" not in self._params:
            raise ValueError("governance_params.json missing version")
        if "version" not in self._policy:
            raise ValueError("runtime_policy.json missing version")

    def _load_chambers(self) -> dict[str, Chamber]:
        result: dict[str, Chamber] = {}
        for raw in self._params["chambers"]:
            chamber_id = normalize_chamber_id(raw["id"])
            if chamber_id in result:
                raise ValueError(f"Duplicate chamber id in config: {chamber_id}")
            result[chamber_id] = Chamber(
                chamber_id=chamber_id,
                title=raw["title"],
                multiplier_times10=multiplier_to_times10(raw["multiplier"]),
            )
        return result

    # ------------------------------------------------------------------
    # Quorum parameters
    # ------------------------------------------------------------------

    def pool_quorum_policy(self) -> PoolQuorumPolicy:
        p = self._params["pool"]
        return PoolQuorumPolicy(
            attention_quorum=p["attention_quorum"],
            upvote_floor_fraction=p["upvote_floor_fraction"],
            upvote_floor_min=p["upvote_floor_min"],
        )

    def upvote_floor(self, active_governors: int) -> int:
        """Absolute number of upvotes a pool proposal needs to advance."""
        p = self.pool_quorum_policy()
        active = max(0, int(active_governors))
        return max(p.upvote_floor_min, math.ceil(active * p.upvote_floor_fraction))

    def chamber_quorum_policy(self) -> ChamberQuorumPolicy:
        c = self._params["chamber"]
        return ChamberQuorumPolicy(
            quorum_fraction=c["quorum_fraction"],
            passing_fraction=c["passing_fraction"],
        )

    def active_governors_fallback(self) -> int:
        """Active governor count used when an era has no snapshot."""
        return int(self._params["active_governors_fallback"])

    # ------------------------------------------------------------------
    # Era requirements, quotas and status bands
    # ------------------------------------------------------------------

    def era_requirements(self) -> ActivityCounts:
        req = self._params["era_requirements"]
        return ActivityCounts(**{kind.value: int(req[kind.value]) for kind in ActivityKind})

    def era_quota(self, kind: ActivityKind) -> Optional[int]:
        """Per-era limit for one activity kind, or None when unlimited."""
        value = self._params["era_quotas"][kind.value]
        return None if value is None else int(value)

    def status_bands(self) -> StatusBands:
        b = self._params["governing_status_bands"]
        return StatusBands(
            ahead_margin=b["ahead_margin"],
            falling_behind_ratio=b["falling_behind_ratio"],
            at_risk_ratio=b["at_risk_ratio"],
        )

    # ------------------------------------------------------------------
    # Chambers
    # ------------------------------------------------------------------

    def chambers(self) -> list[Chamber]:
        """Genesis chambers, seeded into the store on service start."""
        return list(self._chambers.values())

    def chamber(self, chamber_id: str) -> Optional[Chamber]:
        return self._chambers.get(normalize_chamber_id(chamber_id))

    def chamber_multiplier_times10(self, chamber_id: str) -> int:
        """Configured multiplier × 10; unknown chambers count as 1.0."""
        chamber = self.chamber(chamber_id)
        if chamber is None:
            return DEFAULT_MULTIPLIER_TIMES10
        return chamber.multiplier_times10

    # ------------------------------------------------------------------
    # Courts
    # ------------------------------------------------------------------

    def court_policy(self) -> CourtPolicy:
        c = self._params["courts"]
        return CourtPolicy(
            live_report_threshold=c["live_report_threshold"],
            min_verdicts=c["min_verdicts"],
            guilty_fraction=c["guilty_fraction"],
        )

    # ------------------------------------------------------------------
    # Runtime: storage, era clock, stage windows
    # ------------------------------------------------------------------

    def storage_backend(self) -> str:
        backend = self._policy["storage"]["backend"]
        if backend not in ("memory", "sqlite"):
            raise ValueError(f"Unknown storage backend: {backend}")
        return backend

    def sqlite_path(self) -> Path:
        return Path(self._policy["storage"]["sqlite_path"])

    def event_log_path(self) -> Optional[Path]:
        value = self._policy["storage"]["event_log_path"]
        return None if value is None else Path(value)

    def era_seconds(self) -> int:
        return int(self._policy["era"]["era_seconds"])

    def dynamic_active_governors(self) -> bool:
        return bool(self._policy["era"]["dynamic_active_governors"])

    def stage_windows(self) -> StageWindowPolicy:
        w = self._policy["stage_windows"]
        return StageWindowPolicy(
            enabled=w["enabled"],
            pool_seconds=w["pool_seconds"],
            vote_seconds=w["vote_seconds"],
        )

    # ------------------------------------------------------------------
    # Runtime: command guards
    # ------------------------------------------------------------------

    def rate_limit(self, bucket: str) -> RateLimitPolicy:
        """Return the rate limit for a bucket ("per_ip" or "per_address")."""
        limits = self._policy["rate_limits"]
        if bucket not in limits:
            raise ValueError(f"Unknown rate limit bucket: {bucket}")
        r = limits[bucket]
        return RateLimitPolicy(limit=r["limit"], window_seconds=r["window_seconds"])

    def idempotency_min_key_length(self) -> int:
        return int(self._policy["idempotency"]["min_key_length"])

    def eligibility_policy(self) -> EligibilityPolicy:
        e = self._policy["eligibility"]
        return EligibilityPolicy(
            bypass=e["bypass"],
            eligible_addresses=frozenset(a.strip() for a in e["eligible_addresses"]),
            cache_ttl_seconds=e["cache_ttl_seconds"],
        )


def _load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file or raise with clear path."""
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)
