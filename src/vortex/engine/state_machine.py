"""Proposal lifecycle state machine.

    POOL → VOTE → BUILD

Only forward edges are legal and each edge is applied with
compare-and-set on the source stage, so when several votes race to
trigger the same transition exactly one of them applies it.
"""

from __future__ import annotations

from datetime import datetime

from vortex.models.proposal import ProposalStage
from vortex.persistence.base import GovernanceStore


LEGAL_TRANSITIONS: dict[ProposalStage, frozenset[ProposalStage]] = {
    ProposalStage.POOL: frozenset({ProposalStage.VOTE}),
    ProposalStage.VOTE: frozenset({ProposalStage.BUILD}),
    ProposalStage.BUILD: frozenset(),
}


class ProposalStateMachine:
    """Validates and applies proposal stage transitions."""

    def __init__(self, store: GovernanceStore) -> None:
        self._store = store

    @staticmethod
    def validate_transition(
        from_stage: ProposalStage, to_stage: ProposalStage,
    ) -> list[str]:
        """Return errors for an illegal edge (empty list if legal)."""
        if to_stage not in LEGAL_TRANSITIONS[from_stage]:
            return [
                f"Illegal stage transition: {from_stage.value} -> {to_stage.value}"
            ]
        return []

    def transition(
        self,
        proposal_id: str,
        from_stage: ProposalStage,
        to_stage: ProposalStage,
        now: datetime,
    ) -> bool:
        """Apply a transition if the stored stage still equals from_stage.

        Returns False when the proposal has already moved on (or does not
        exist). Raises ValueError for an illegal edge.
        """
        errors = self.validate_transition(from_stage, to_stage)
        if errors:
            raise ValueError(errors[0])
        return self._store.transition_proposal_stage(
            proposal_id, from_stage, to_stage, now,
        )
