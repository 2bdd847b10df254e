"""Tests for CM awards: half-up rounding, chamber multipliers and award-once."""

from datetime import datetime, timedelta, timezone

import pytest

from vortex.awards.engine import AwardEngine, round_half_up
from vortex.models.proposal import Proposal, ProposalPayload, ProposalStage
from vortex.persistence.base import GovernanceStore
from vortex.policy.resolver import PolicyResolver


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _make_proposal(
    proposal_id: str = "p-1", author: str = "author", chamber_id: str = "engineering",
) -> Proposal:
    return Proposal(
        proposal_id=proposal_id,
        author_address=author,
        chamber_id=chamber_id,
        title="Indexer",
        summary="",
        payload=ProposalPayload(),
        stage=ProposalStage.VOTE,
        created_utc=T0,
        updated_utc=T0,
    )


class TestRoundHalfUp:
    @pytest.mark.parametrize("value,expected", [
        (0.5, 1), (1.5, 2), (2.5, 3), (2.4999, 2), (72.5, 73), (10, 10),
    ])
    def test_rounds_halves_up(self, value: float, expected: int) -> None:
        assert round_half_up(value) == expected


class TestComputeAward:
    def test_engineering_multiplier(self, store: GovernanceStore, resolver: PolicyResolver) -> None:
        award = AwardEngine(store, resolver).compute_award(_make_proposal(), 7.25, T0)
        assert award.lcm_points == 73
        assert award.chamber_multiplier_times10 == 15
        assert award.mcm_points == 110
        assert award.avg_score == 7

    def test_unknown_chamber_uses_unit_multiplier(
        self, store: GovernanceStore, resolver: PolicyResolver,
    ) -> None:
        award = AwardEngine(store, resolver).compute_award(
            _make_proposal(chamber_id="Unknown"), 8.0, T0,
        )
        assert award.chamber_id == "unknown"
        assert award.lcm_points == 80
        assert award.mcm_points == 80


class TestAwardOnce:
    def test_second_award_returns_stored(
        self, store: GovernanceStore, resolver: PolicyResolver,
    ) -> None:
        engine = AwardEngine(store, resolver)
        first = engine.award_once(_make_proposal(), 8.0, T0)
        second = engine.award_once(_make_proposal(), 3.0, T0 + timedelta(hours=1))
        assert first.created
        assert not second.created
        assert second.award.lcm_points == first.award.lcm_points == 80

    def test_acm_and_chamber_stats(
        self, store: GovernanceStore, resolver: PolicyResolver,
    ) -> None:
        engine = AwardEngine(store, resolver)
        engine.award_once(_make_proposal("p-1"), 8.0, T0)
        engine.award_once(_make_proposal("p-2", chamber_id="design"), 5.0, T0)
        engine.award_once(_make_proposal("p-3", author="other"), 6.0, T0)

        assert engine.acm_points("author") == 120 + 70
        stats = engine.chamber_stats("Engineering")
        assert stats.awards == 2
        assert stats.lcm_points == 80 + 60
        assert stats.mcm_points == 120 + 90
