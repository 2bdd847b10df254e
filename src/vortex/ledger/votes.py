"""Vote ledgers for the pool and chamber stages.

One row per (proposal, voter), last write wins. Counts are always
aggregated from the stored rows, never kept as running totals, so a
re-vote simply moves one vote from one bucket to another.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from vortex.models.proposal import (
    MAX_SCORE,
    MIN_SCORE,
    ChamberChoice,
    ChamberCounts,
    ChamberVote,
    PoolCounts,
    PoolDirection,
)
from vortex.persistence.base import GovernanceStore


@dataclass(frozen=True)
class PoolCastResult:
    created: bool
    counts: PoolCounts


@dataclass(frozen=True)
class ChamberCastResult:
    created: bool
    counts: ChamberCounts


def validate_chamber_vote(choice: ChamberChoice, score: Optional[int]) -> list[str]:
    """Return validation errors for a chamber vote (empty list if valid)."""
    errors: list[str] = []
    if score is None:
        return errors
    if choice is not ChamberChoice.YES:
        errors.append(f"Score is only allowed on yes votes, got choice {choice.value}")
    if isinstance(score, bool) or not isinstance(score, int):
        errors.append(f"Score must be an integer, got {score!r}")
    elif not MIN_SCORE <= score <= MAX_SCORE:
        errors.append(f"Score must be between {MIN_SCORE} and {MAX_SCORE}, got {score}")
    return errors


class PoolVoteLedger:
    """Attention votes on proposals in the pool stage."""

    def __init__(self, store: GovernanceStore) -> None:
        self._store = store

    def cast(
        self, proposal_id: str, voter_address: str, direction: PoolDirection,
    ) -> PoolCastResult:
        created = self._store.upsert_pool_vote(proposal_id, voter_address, direction)
        return PoolCastResult(created=created, counts=self.counts(proposal_id))

    def has_voted(self, proposal_id: str, voter_address: str) -> bool:
        return self._store.get_pool_vote(proposal_id, voter_address) is not None

    def counts(self, proposal_id: str) -> PoolCounts:
        return self._store.pool_vote_counts(proposal_id)


class ChamberVoteLedger:
    """Decision votes on proposals in the chamber vote stage."""

    def __init__(self, store: GovernanceStore) -> None:
        self._store = store

    def cast(
        self,
        proposal_id: str,
        voter_address: str,
        choice: ChamberChoice,
        score: Optional[int] = None,
    ) -> ChamberCastResult:
        """Record a vote. Raises ValueError for an invalid score."""
        errors = validate_chamber_vote(choice, score)
        if errors:
            raise ValueError("; ".join(errors))
        created = self._store.upsert_chamber_vote(ChamberVote(
            proposal_id=proposal_id,
            voter_address=voter_address,
            choice=choice,
            score=score,
        ))
        return ChamberCastResult(created=created, counts=self.counts(proposal_id))

    def has_voted(self, proposal_id: str, voter_address: str) -> bool:
        return self._store.get_chamber_vote(proposal_id, voter_address) is not None

    def counts(self, proposal_id: str) -> ChamberCounts:
        return self._store.chamber_vote_counts(proposal_id)

    def average_yes_score(self, proposal_id: str) -> Optional[float]:
        """Mean score of yes votes that carry one, or None if there are none."""
        scores = self._store.chamber_yes_scores(proposal_id)
        if not scores:
            return None
        return sum(scores) / len(scores)
