"""Tests for the proposal state machine: forward-only, compare-and-set transitions."""

from datetime import datetime, timedelta, timezone

import pytest

from vortex.engine.state_machine import ProposalStateMachine
from vortex.models.proposal import Proposal, ProposalPayload, ProposalStage
from vortex.persistence.base import GovernanceStore


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _make_proposal(proposal_id: str = "p-1", stage: ProposalStage = ProposalStage.POOL) -> Proposal:
    return Proposal(
        proposal_id=proposal_id,
        author_address="author",
        chamber_id="engineering",
        title="Upgrade",
        summary="",
        payload=ProposalPayload(team_slots_total=3, milestones_total=2),
        stage=stage,
        created_utc=T0,
        updated_utc=T0,
    )


class TestValidateTransition:
    @pytest.mark.parametrize("src,dst", [
        (ProposalStage.POOL, ProposalStage.VOTE),
        (ProposalStage.VOTE, ProposalStage.BUILD),
    ])
    def test_forward_edges_legal(self, src: ProposalStage, dst: ProposalStage) -> None:
        assert ProposalStateMachine.validate_transition(src, dst) == []

    @pytest.mark.parametrize("src,dst", [
        (ProposalStage.POOL, ProposalStage.BUILD),
        (ProposalStage.VOTE, ProposalStage.POOL),
        (ProposalStage.BUILD, ProposalStage.VOTE),
        (ProposalStage.POOL, ProposalStage.POOL),
    ])
    def test_other_edges_illegal(self, src: ProposalStage, dst: ProposalStage) -> None:
        errors = ProposalStateMachine.validate_transition(src, dst)
        assert len(errors) == 1
        assert "Illegal" in errors[0]


class TestTransition:
    def test_applies_once(self, store: GovernanceStore) -> None:
        store.insert_proposal(_make_proposal())
        sm = ProposalStateMachine(store)
        later = T0 + timedelta(hours=1)
        assert sm.transition("p-1", ProposalStage.POOL, ProposalStage.VOTE, later)
        assert not sm.transition("p-1", ProposalStage.POOL, ProposalStage.VOTE, later)
        proposal = store.get_proposal("p-1")
        assert proposal.stage is ProposalStage.VOTE
        assert proposal.updated_utc == later

    def test_stale_source_stage_is_noop(self, store: GovernanceStore) -> None:
        store.insert_proposal(_make_proposal(stage=ProposalStage.VOTE))
        sm = ProposalStateMachine(store)
        assert not sm.transition("p-1", ProposalStage.POOL, ProposalStage.VOTE, T0)
        assert store.get_proposal("p-1").stage is ProposalStage.VOTE

    def test_missing_proposal(self, store: GovernanceStore) -> None:
        sm = ProposalStateMachine(store)
        assert not sm.transition("nope", ProposalStage.POOL, ProposalStage.VOTE, T0)

    def test_illegal_edge_raises(self, store: GovernanceStore) -> None:
        store.insert_proposal(_make_proposal())
        sm = ProposalStateMachine(store)
        with pytest.raises(ValueError, match="Illegal"):
            sm.transition("p-1", ProposalStage.POOL, ProposalStage.BUILD, T0)
        assert store.get_proposal("p-1").stage is ProposalStage.POOL
