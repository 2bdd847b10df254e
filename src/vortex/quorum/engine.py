"""Quorum evaluators: pure functions deciding when a proposal advances.

Pool quorum (attention): enough active governors engaged AND the upvote
floor reached.

Chamber quorum (decision): enough active governors engaged AND the yes
share of engaged votes reaches the passing fraction with at least one yes.

Pure computation: no side effects. Both evaluators are re-run on every
vote against freshly aggregated counts; out-of-range inputs are clamped
rather than rejected.
"""

from __future__ import annotations

import math
from dataclasses import dataclass


def _clamp_fraction(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, value))


def _non_negative_int(value: float) -> int:
    if math.isnan(value):
        return 0
    return max(0, math.floor(value))


def _quorum_needed(active_governors: int, fraction: float) -> int:
    if active_governors <= 0:
        return 0
    return math.ceil(active_governors * fraction)


@dataclass(frozen=True)
class PoolQuorumInputs:
    attention_quorum: float
    active_governors: int
    upvote_floor: int


@dataclass(frozen=True)
class PoolQuorumResult:
    engaged: int
    engaged_needed: int
    upvotes: int
    upvote_floor: int
    attention_met: bool
    upvote_met: bool

    @property
    def should_advance(self) -> bool:
        return self.attention_met and self.upvote_met


def evaluate_pool_quorum(
    inputs: PoolQuorumInputs,
    upvotes: int,
    downvotes: int,
) -> PoolQuorumResult:
    """Evaluate the pool attention quorum for the given vote counts."""
    quorum = _clamp_fraction(inputs.attention_quorum)
    active = _non_negative_int(inputs.active_governors)
    up = max(0, upvotes)
    down = max(0, downvotes)

    engaged = up + down
    engaged_needed = _quorum_needed(active, quorum)
    attention_met = active > 0 and engaged >= engaged_needed
    upvote_met = up >= inputs.upvote_floor

    return PoolQuorumResult(
        engaged=engaged,
        engaged_needed=engaged_needed,
        upvotes=up,
        upvote_floor=inputs.upvote_floor,
        attention_met=attention_met,
        upvote_met=upvote_met,
    )


@dataclass(frozen=True)
class ChamberQuorumInputs:
    quorum_fraction: float
    active_governors: int
    passing_fraction: float


@dataclass(frozen=True)
class ChamberQuorumResult:
    engaged: int
    quorum_needed: int
    quorum_met: bool
    yes_fraction: float
    pass_met: bool

    @property
    def should_advance(self) -> bool:
        return self.quorum_met and self.pass_met


def evaluate_chamber_quorum(
    inputs: ChamberQuorumInputs,
    yes: int,
    no: int,
    abstain: int,
) -> ChamberQuorumResult:
    """Evaluate the chamber quorum and passing threshold.

    Abstentions count toward quorum and toward the yes-fraction
    denominator, so they make passing harder.
    """
    quorum = _clamp_fraction(inputs.quorum_fraction)
    passing = _clamp_fraction(inputs.passing_fraction)
    active = _non_negative_int(inputs.active_governors)
    yes = max(0, yes)
    no = max(0, no)
    abstain = max(0, abstain)

    engaged = yes + no + abstain
    quorum_needed = _quorum_needed(active, quorum)
    quorum_met = active > 0 and engaged >= quorum_needed
    yes_fraction = yes / engaged if engaged > 0 else 0.0
    pass_met = engaged > 0 and yes >= 1 and yes_fraction >= passing

    return ChamberQuorumResult(
        engaged=engaged,
        quorum_needed=quorum_needed,
        quorum_met=quorum_met,
        yes_fraction=yes_fraction,
        pass_met=pass_met,
    )
