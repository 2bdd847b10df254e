"""Concurrency tests: racing triggers apply each state change exactly once."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

from conftest import make_resolver

from vortex.awards.engine import AwardEngine
from vortex.chambers.engine import ChamberRegistry
from vortex.era.rollup import EraRollupEngine
from vortex.external.clock import SimulationClock, StoreClock
from vortex.models.court import Verdict
from vortex.models.era import ActivityCounts
from vortex.models.errors import ErrorCode
from vortex.models.proposal import (
    ChamberChoice,
    PoolDirection,
    Proposal,
    ProposalPayload,
    ProposalStage,
)
from vortex.persistence.base import GovernanceStore
from vortex.persistence.event_log import EventKind, EventLog
from vortex.service import GovernanceService


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
THREADS = 8


def _race(fn: Callable[[int], object], n: int = THREADS) -> list[object]:
    barrier = threading.Barrier(n)
    results: list[object] = [None] * n
    errors: list[BaseException] = []

    def run(i: int) -> None:
        barrier.wait()
        try:
            results[i] = fn(i)
        except BaseException as e:
            errors.append(e)

    threads = [threading.Thread(target=run, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert not errors, errors
    return results


def _make_service(store: GovernanceStore, log: EventLog) -> GovernanceService:
    svc = GovernanceService(
        make_resolver(), store=store, clock=SimulationClock(start_utc=T0), event_log=log,
    )
    store.set_era_snapshot(0, 2, T0)
    return svc


class TestConcurrentTransitions:
    def test_pool_transition_applies_once(self, store: GovernanceStore) -> None:
        log = EventLog()
        svc = _make_service(store, log)
        svc.create_proposal("p-1", "author", "general", "Title")

        results = _race(lambda i: svc.cast_pool_vote("p-1", f"g{i}", PoolDirection.UP))
        advanced = [r for r in results if r.success and r.data["advanced"]]
        assert len(advanced) == 1
        assert store.get_proposal("p-1").stage is ProposalStage.VOTE
        assert len(log.events(EventKind.STAGE_TRANSITION)) == 1

    def test_chamber_pass_awards_and_seeds_once(self, store: GovernanceStore) -> None:
        log = EventLog()
        svc = _make_service(store, log)
        svc.create_proposal(
            "p-1", "author", "general", "Title",
            payload=ProposalPayload(team_slots_total=2, milestones_total=1),
        )
        svc.cast_pool_vote("p-1", "a", PoolDirection.UP)
        assert store.get_proposal("p-1").stage is ProposalStage.VOTE

        _race(lambda i: svc.cast_chamber_vote("p-1", f"g{i}", ChamberChoice.YES, 7))
        assert store.get_proposal("p-1").stage is ProposalStage.BUILD
        assert len(log.events(EventKind.CM_AWARDED)) == 1
        assert len(log.events(EventKind.FORMATION_SEEDED)) == 1
        assert store.get_formation_project("p-1").team_filled == 0


class TestConcurrentWrites:
    def test_joins_never_exceed_capacity(self, store: GovernanceStore) -> None:
        svc = _make_service(store, EventLog())
        svc.create_proposal(
            "p-1", "author", "general", "Title",
            payload=ProposalPayload(team_slots_total=3, milestones_total=1),
        )
        svc.cast_pool_vote("p-1", "a", PoolDirection.UP)
        svc.cast_chamber_vote("p-1", "a", ChamberChoice.YES, 5)

        results = _race(lambda i: svc.join_formation("p-1", f"m{i}"))
        assert sum(1 for r in results if r.success) == 3
        assert store.get_formation_project("p-1").team_filled == 3
        assert len(store.list_formation_members("p-1")) == 3

    def test_same_voter_counted_once(self, store: GovernanceStore) -> None:
        svc = _make_service(store, EventLog())
        store.set_era_snapshot(0, 1000, T0)
        svc.create_proposal("p-1", "author", "general", "Title")
        _race(lambda i: svc.cast_pool_vote("p-1", "alice", PoolDirection.UP))
        assert store.pool_vote_counts("p-1").upvotes == 1
        assert store.get_era_activity(0, "alice").pool_votes == 1

    def test_rollup_written_once(self, store: GovernanceStore) -> None:
        resolver = make_resolver()
        store.increment_era_activity(0, "alice", ActivityCounts(pool_votes=1, chamber_votes=1))
        engine = EraRollupEngine(store, resolver)
        results = _race(lambda i: engine.rollup(0, T0))
        assert sum(1 for r in results if r.created) == 1
        assert {r.active_governors_next_era for r in results} == {1}

    def test_award_once(self, store: GovernanceStore) -> None:
        engine = AwardEngine(store, make_resolver())
        proposal = Proposal(
            proposal_id="p-1", author_address="author", chamber_id="general",
            title="T", summary="", payload=ProposalPayload(), stage=ProposalStage.VOTE,
            created_utc=T0, updated_utc=T0,
        )
        results = _race(lambda i: engine.award_once(proposal, float(i + 1), T0))
        assert sum(1 for r in results if r.created) == 1
        assert len({r.award.lcm_points for r in results}) == 1

    def test_verdicts_racing_resolution(self, store: GovernanceStore) -> None:
        log = EventLog()
        svc = _make_service(store, log)
        svc.open_court_case("c-1", "Spam", base_reports=5)
        for voter in ("a", "b", "c", "d"):
            svc.cast_court_verdict("c-1", voter, Verdict.GUILTY)

        results = _race(lambda i: svc.cast_court_verdict("c-1", f"v{i}", Verdict.GUILTY))
        accepted = [r for r in results if r.success]
        rejected = [r for r in results if not r.success]
        assert all(r.code is ErrorCode.CASE_NOT_LIVE for r in rejected)
        assert sum(1 for r in accepted if r.data["resolved"]) == 1
        assert store.court_verdict_tally("c-1").total == 4 + len(accepted)
        assert len(log.events(EventKind.COURT_CASE_RESOLVED)) == 1

        late = svc.cast_court_verdict("c-1", "late", Verdict.NOT_GUILTY)
        assert late.code is ErrorCode.CASE_NOT_LIVE
        assert store.court_verdict_tally("c-1").total == 4 + len(accepted)

    def test_chamber_created_once(self, store: GovernanceStore) -> None:
        registry = ChamberRegistry(store, make_resolver())
        proposal = Proposal(
            proposal_id="p-1", author_address="author", chamber_id="general",
            title="T", summary="",
            payload=ProposalPayload(content={
                "metaGovernance": {"action": "chamber.create", "chamberId": "research"},
            }),
            stage=ProposalStage.VOTE, created_utc=T0, updated_utc=T0,
        )
        results = _race(lambda i: registry.apply_governance(proposal, T0))
        assert sum(1 for r in results if r.applied) == 1
        assert store.get_chamber("research").created_by_proposal_id == "p-1"

    def test_due_era_advances_once(self, store: GovernanceStore) -> None:
        resolver = make_resolver()
        now = [T0]
        clock = StoreClock(store, time_source=lambda: now[0])
        clock.snapshot()
        now[0] = T0 + timedelta(seconds=resolver.era_seconds())
        log = EventLog()
        svc = GovernanceService(resolver, store=store, clock=clock, event_log=log)

        results = _race(lambda i: svc.tick_clock(rollup=False))
        assert sum(1 for r in results if r.data["advanced"]) == 1
        assert store.get_clock_state().current_era == 1
        assert len(log.events(EventKind.ERA_ADVANCED)) == 1
