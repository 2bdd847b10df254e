"""Eligibility gate: may this address act as a governor right now?

The authoritative answer comes from an external oracle (a validator-set
RPC in production). The gate in front of it short-circuits on the
bypass flag and the configured allow-list, and caches oracle answers
for a TTL. An oracle failure is not an exception for callers: it is an
ineligible result with reason "rpc_error".
"""

from __future__ import annotations

import abc
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from vortex.external.clock import Clock
from vortex.policy.resolver import EligibilityPolicy

logger = logging.getLogger(__name__)

REASON_NOT_IN_VALIDATOR_SET = "not_in_validator_set"
REASON_RPC_ERROR = "rpc_error"


class OracleError(Exception):
    """The eligibility oracle could not answer."""


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    expires_utc: datetime
    reason: Optional[str] = None


class EligibilityOracle(abc.ABC):

    @abc.abstractmethod
    def is_active_governor(self, address: str) -> bool:
        """Raises OracleError when the answer cannot be obtained."""


class StaticEligibilityOracle(EligibilityOracle):
    """Oracle backed by a fixed set of addresses."""

    def __init__(self, addresses: Iterable[str] = ()) -> None:
        self._addresses = {a.strip() for a in addresses}

    def add(self, address: str) -> None:
        self._addresses.add(address.strip())

    def is_active_governor(self, address: str) -> bool:
        return address in self._addresses


class CachedEligibilityGate:
    """Bypass flag, allow-list and TTL cache in front of an oracle."""

    def __init__(
        self,
        oracle: EligibilityOracle,
        policy: EligibilityPolicy,
        clock: Clock,
    ) -> None:
        self._oracle = oracle
        self._policy = policy
        self._clock = clock
        self._allow = {a.lower() for a in policy.eligible_addresses}
        self._cache: dict[str, EligibilityResult] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock.now()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def _expiry(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self._policy.cache_ttl_seconds)

    def check(self, address: str) -> EligibilityResult:
        now = self._clock.now()
        if self._policy.bypass or address.lower() in self._allow:
            return EligibilityResult(eligible=True, expires_utc=self._expiry(now))

        with self._lock:
            cached = self._cache.get(address)
        if cached is not None and cached.expires_utc > now:
            return cached

        try:
            eligible = self._oracle.is_active_governor(address)
            reason = None if eligible else REASON_NOT_IN_VALIDATOR_SET
        except OracleError as exc:
            logger.warning("eligibility oracle failed for %s: %s", address, exc)
            eligible = False
            reason = REASON_RPC_ERROR

        result = EligibilityResult(
            eligible=eligible, expires_utc=self._expiry(now), reason=reason,
        )
        with self._lock:
            self._sweep(now)
            self._cache[address] = result
        return result

    def _sweep(self, now: datetime) -> None:
        """Drop expired answers, at most once per TTL."""
        if now < self._next_sweep:
            return
        self._cache = {
            a: r for a, r in self._cache.items() if r.expires_utc > now
        }
        self._next_sweep = self._expiry(now)

    def invalidate(self, address: Optional[str] = None) -> None:
        with self._lock:
            if address is None:
                self._cache.clear()
            else:
                self._cache.pop(address, None)
