"""Command guards: fixed-window rate limiting and admin controls.

AdminControls holds the global write freeze and per-address action
locks. Locks may carry an expiry; an expired lock no longer applies.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from vortex.external.clock import Clock
from vortex.policy.resolver import RateLimitPolicy


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_utc: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_utc": self.reset_utc.isoformat(),
        }


class RateLimiter:
    """Fixed-window counters keyed by bucket name (e.g. "ip:1.2.3.4").

    Windows that have reset are swept out at most once per sweep_seconds.
    """

    def __init__(self, clock: Clock, sweep_seconds: int = 60) -> None:
        self._clock = clock
        self._windows: dict[str, tuple[datetime, int]] = {}
        self._lock = threading.Lock()
        self._sweep_interval = timedelta(seconds=sweep_seconds)
        self._next_sweep = clock.now() + self._sweep_interval

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def _sweep(self, now: datetime) -> None:
        if now < self._next_sweep:
            return
        self._windows = {
            bucket: window for bucket, window in self._windows.items()
            if window[0] > now
        }
        self._next_sweep = now + self._sweep_interval

    def consume(self, bucket: str, policy: RateLimitPolicy) -> RateLimitDecision:
        now = self._clock.now()
        with self._lock:
            self._sweep(now)
            reset_utc, used = self._windows.get(bucket, (now, 0))
            if now >= reset_utc:
                reset_utc = now + timedelta(seconds=policy.window_seconds)
                used = 0
            if used >= policy.limit:
                return RateLimitDecision(
                    allowed=False, limit=policy.limit, remaining=0, reset_utc=reset_utc,
                )
            used += 1
            self._windows[bucket] = (reset_utc, used)
            return RateLimitDecision(
                allowed=True,
                limit=policy.limit,
                remaining=policy.limit - used,
                reset_utc=reset_utc,
            )


@dataclass(frozen=True)
class ActionLock:
    address: str
    reason: str
    locked_until: Optional[datetime] = None


class AdminControls:

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._writes_frozen = False
        self._locks: dict[str, ActionLock] = {}
        self._lock = threading.Lock()

    @property
    def writes_frozen(self) -> bool:
        return self._writes_frozen

    def set_writes_frozen(self, frozen: bool) -> None:
        self._writes_frozen = frozen

    def lock_address(
        self,
        address: str,
        reason: str,
        locked_until: Optional[datetime] = None,
    ) -> ActionLock:
        entry = ActionLock(address=address, reason=reason, locked_until=locked_until)
        with self._lock:
            self._locks[address] = entry
        return entry

    def unlock_address(self, address: str) -> None:
        with self._lock:
            self._locks.pop(address, None)

    def action_lock(self, address: str) -> Optional[ActionLock]:
        """The lock currently in force for address, if any."""
        with self._lock:
            entry = self._locks.get(address)
        if entry is None:
            return None
        if entry.locked_until is not None and entry.locked_until <= self._clock.now():
            return None
        return entry
