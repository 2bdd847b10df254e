"""Tests for the formation engine: team capacity and forward-only milestones."""

from datetime import datetime, timezone

import pytest

from vortex.formation.engine import FormationEngine
from vortex.models.errors import ErrorCode
from vortex.models.formation import MilestoneStatus
from vortex.models.proposal import Proposal, ProposalPayload, ProposalStage
from vortex.persistence.base import GovernanceStore


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _make_proposal(slots: int = 2, milestones: int = 2) -> Proposal:
    return Proposal(
        proposal_id="p-1",
        author_address="author",
        chamber_id="product",
        title="Onboarding revamp",
        summary="",
        payload=ProposalPayload(team_slots_total=slots, milestones_total=milestones),
        stage=ProposalStage.BUILD,
        created_utc=T0,
        updated_utc=T0,
    )


@pytest.fixture
def engine(store: GovernanceStore) -> FormationEngine:
    e = FormationEngine(store)
    e.seed_project(_make_proposal(), T0)
    return e


class TestSeeding:
    def test_seed_is_insert_if_absent(self, store: GovernanceStore) -> None:
        engine = FormationEngine(store)
        assert engine.seed_project(_make_proposal(slots=3), T0)
        assert not engine.seed_project(_make_proposal(slots=9), T0)
        project = store.get_formation_project("p-1")
        assert project.team_slots_total == 3
        assert project.team_filled == 0
        assert project.milestones_completed == 0

    def test_negative_payload_clamped(self, store: GovernanceStore) -> None:
        engine = FormationEngine(store)
        engine.seed_project(_make_proposal(slots=-1, milestones=-4), T0)
        project = store.get_formation_project("p-1")
        assert project.team_slots_total == 0
        assert project.milestones_total == 0


class TestJoin:
    def test_join_until_full(self, engine: FormationEngine) -> None:
        assert engine.join("p-1", "a", "dev", T0).changed
        assert engine.join("p-1", "b", None, T0).changed
        result = engine.join("p-1", "c", None, T0)
        assert not result.success
        assert result.code is ErrorCode.TEAM_FULL

    def test_rejoin_is_noop_even_when_full(self, engine: FormationEngine) -> None:
        engine.join("p-1", "a", None, T0)
        engine.join("p-1", "b", None, T0)
        result = engine.join("p-1", "a", None, T0)
        assert result.success
        assert not result.changed
        assert result.project.team_filled == 2

    def test_join_without_project(self, store: GovernanceStore) -> None:
        result = FormationEngine(store).join("missing", "a", None, T0)
        assert result.code is ErrorCode.FORMATION_MISSING

    def test_would_count(self, engine: FormationEngine) -> None:
        assert engine.join_would_count("p-1", "a")
        engine.join("p-1", "a", None, T0)
        assert not engine.join_would_count("p-1", "a")


class TestMilestones:
    def test_submit_then_unlock(self, engine: FormationEngine, store: GovernanceStore) -> None:
        submitted = engine.submit_milestone("p-1", 1, T0)
        assert submitted.changed
        assert submitted.milestone_status is MilestoneStatus.SUBMITTED

        unlocked = engine.request_unlock("p-1", 1, T0)
        assert unlocked.success
        assert unlocked.project.milestones_completed == 1
        assert store.get_milestone_status("p-1", 1) is MilestoneStatus.UNLOCKED

    def test_resubmit_is_noop(self, engine: FormationEngine) -> None:
        engine.submit_milestone("p-1", 2, T0)
        again = engine.submit_milestone("p-1", 2, T0)
        assert again.success
        assert not again.changed

    def test_unlock_requires_submission(self, engine: FormationEngine) -> None:
        result = engine.request_unlock("p-1", 1, T0)
        assert result.code is ErrorCode.MILESTONE_NOT_SUBMITTED

    def test_double_unlock(self, engine: FormationEngine, store: GovernanceStore) -> None:
        engine.submit_milestone("p-1", 1, T0)
        engine.request_unlock("p-1", 1, T0)
        result = engine.request_unlock("p-1", 1, T0)
        assert result.code is ErrorCode.MILESTONE_ALREADY_UNLOCKED
        assert store.get_formation_project("p-1").milestones_completed == 1

    def test_submit_after_unlock(self, engine: FormationEngine) -> None:
        engine.submit_milestone("p-1", 1, T0)
        engine.request_unlock("p-1", 1, T0)
        result = engine.submit_milestone("p-1", 1, T0)
        assert result.code is ErrorCode.MILESTONE_ALREADY_UNLOCKED

    @pytest.mark.parametrize("index", [0, 3, -1])
    def test_index_out_of_range(self, engine: FormationEngine, index: int) -> None:
        assert engine.submit_milestone("p-1", index, T0).code is ErrorCode.MILESTONE_OUT_OF_RANGE
        assert engine.request_unlock("p-1", index, T0).code is ErrorCode.MILESTONE_OUT_OF_RANGE
