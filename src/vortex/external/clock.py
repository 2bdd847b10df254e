"""Governance clock: the source of the current era and of "now".

The clock is advanced from outside (an admin tick), never by commands.
StoreClock keeps the era in the governance store so it survives restarts
alongside the era activity it indexes. SimulationClock keeps everything
in process with a settable time so eras and stage windows can be driven
deterministically.
"""

from __future__ import annotations

import abc
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from vortex.models.era import ClockSnapshot
from vortex.persistence.base import GovernanceStore


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Clock(abc.ABC):

    @abc.abstractmethod
    def now(self) -> datetime: ...

    @abc.abstractmethod
    def snapshot(self) -> ClockSnapshot: ...

    @abc.abstractmethod
    def advance_from(self, era: int) -> bool:
        """Move era -> era + 1 if era is still current; stamp updated_utc with now()."""

    def advance_era(self) -> ClockSnapshot:
        """Move to the next era unconditionally."""
        while not self.advance_from(self.current_era()):
            pass
        return self.snapshot()

    def current_era(self) -> int:
        return self.snapshot().current_era

    @property
    def updated_utc(self) -> datetime:
        return self.snapshot().updated_utc


class StoreClock(Clock):
    """Clock whose era lives in the governance store (clock_state)."""

    def __init__(
        self,
        store: GovernanceStore,
        time_source: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._time_source = time_source or utc_now

    def now(self) -> datetime:
        return self._time_source()

    def snapshot(self) -> ClockSnapshot:
        state = self._store.get_clock_state()
        if state is None:
            state = self._store.ensure_clock_state(self.now())
        return state

    def advance_from(self, era: int) -> bool:
        self.snapshot()
        return self._store.advance_clock_era(era, self.now())


class SimulationClock(Clock):
    """In-process clock with a manually controlled time source."""

    def __init__(
        self,
        start_utc: Optional[datetime] = None,
        current_era: int = 0,
    ) -> None:
        start = start_utc or utc_now()
        self._lock = threading.Lock()
        self._now = start
        self._snapshot = ClockSnapshot(current_era=current_era, updated_utc=start)

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set_now(self, when: datetime) -> None:
        with self._lock:
            self._now = when

    def advance_time(self, seconds: float) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(seconds=seconds)
            return self._now

    def snapshot(self) -> ClockSnapshot:
        with self._lock:
            return self._snapshot

    def advance_from(self, era: int) -> bool:
        with self._lock:
            if self._snapshot.current_era != era:
                return False
            self._snapshot = ClockSnapshot(current_era=era + 1, updated_utc=self._now)
            return True
