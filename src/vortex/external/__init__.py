"""External collaborators: clock, eligibility gate, guards and read models."""

from vortex.external.clock import Clock, ClockSnapshot, SimulationClock, StoreClock
from vortex.external.eligibility import (
    CachedEligibilityGate,
    EligibilityOracle,
    EligibilityResult,
    OracleError,
    StaticEligibilityOracle,
)
from vortex.external.guards import AdminControls, RateLimitDecision, RateLimiter
from vortex.external.read_models import ReadModelCache, project_proposal

__all__ = [
    "AdminControls",
    "CachedEligibilityGate",
    "Clock",
    "ClockSnapshot",
    "EligibilityOracle",
    "EligibilityResult",
    "OracleError",
    "RateLimitDecision",
    "RateLimiter",
    "ReadModelCache",
    "SimulationClock",
    "StaticEligibilityOracle",
    "StoreClock",
    "project_proposal",
]
