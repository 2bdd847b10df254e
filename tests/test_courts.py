"""Tests for the courts engine: report thresholds, verdicts and resolution."""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

import pytest

from vortex.courts.engine import CourtsEngine, evaluate_resolution
from vortex.models.court import CaseStatus, CourtCase, Verdict, VerdictOutcome, VerdictTally
from vortex.models.errors import ErrorCode
from vortex.persistence.base import GovernanceStore
from vortex.persistence.memory_store import MemoryStore
from vortex.policy.resolver import CourtPolicy, PolicyResolver


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
POLICY = CourtPolicy(live_report_threshold=5, min_verdicts=5, guilty_fraction=2 / 3)


class _StaleReadStore(MemoryStore):
    """Serves a live copy of the case for the next stale_reads reads."""

    def __init__(self) -> None:
        super().__init__()
        self.stale_reads = 0

    def get_court_case(self, case_id: str) -> Optional[CourtCase]:
        case = super().get_court_case(case_id)
        if case is not None and self.stale_reads > 0:
            self.stale_reads -= 1
            return replace(case, status=CaseStatus.LIVE)
        return case


@pytest.fixture
def courts(store: GovernanceStore, resolver: PolicyResolver) -> CourtsEngine:
    return CourtsEngine(store, resolver)


class TestEvaluateResolution:
    def test_not_enough_verdicts(self) -> None:
        assert evaluate_resolution(VerdictTally(guilty=4), POLICY) is None

    def test_guilty_at_two_thirds(self) -> None:
        assert evaluate_resolution(VerdictTally(guilty=4, not_guilty=2), POLICY) is Verdict.GUILTY

    def test_not_guilty_below_fraction(self) -> None:
        assert (
            evaluate_resolution(VerdictTally(guilty=3, not_guilty=2), POLICY)
            is Verdict.NOT_GUILTY
        )


class TestOpenCase:
    def test_opens_below_threshold(self, courts: CourtsEngine) -> None:
        result = courts.open_case("c-1", "Spam", 2, T0)
        assert result.changed
        assert result.case.status is CaseStatus.OPEN
        assert result.total_reports == 2

    def test_starts_live_at_threshold(self, courts: CourtsEngine) -> None:
        result = courts.open_case("c-1", "Spam", 5, T0)
        assert result.case.status is CaseStatus.LIVE

    def test_open_is_insert_if_absent(self, courts: CourtsEngine) -> None:
        courts.open_case("c-1", "Spam", 1, T0)
        again = courts.open_case("c-1", "Other", 9, T0)
        assert not again.changed
        assert again.case.title == "Spam"
        assert again.case.status is CaseStatus.OPEN


class TestReports:
    def test_distinct_reporters_push_case_live(self, courts: CourtsEngine) -> None:
        courts.open_case("c-1", "Spam", 3, T0)
        assert not courts.report("c-1", "a", T0).became_live
        result = courts.report("c-1", "b", T0)
        assert result.became_live
        assert result.total_reports == 5
        assert result.case.status is CaseStatus.LIVE

    def test_duplicate_report_not_counted(self, courts: CourtsEngine) -> None:
        courts.open_case("c-1", "Spam", 0, T0)
        assert courts.report("c-1", "a", T0).changed
        again = courts.report("c-1", "a", T0)
        assert again.success
        assert not again.changed
        assert again.total_reports == 1

    def test_missing_case(self, courts: CourtsEngine) -> None:
        assert courts.report("nope", "a", T0).code is ErrorCode.COURT_CASE_MISSING


class TestVerdicts:
    def test_verdict_requires_live_case(self, courts: CourtsEngine) -> None:
        courts.open_case("c-1", "Spam", 0, T0)
        result = courts.cast_verdict("c-1", "a", Verdict.GUILTY, T0)
        assert result.code is ErrorCode.CASE_NOT_LIVE

    def test_resolves_after_min_verdicts(self, courts: CourtsEngine) -> None:
        courts.open_case("c-1", "Spam", 5, T0)
        for voter in ("a", "b", "c", "d"):
            assert not courts.cast_verdict("c-1", voter, Verdict.GUILTY, T0).resolved
        result = courts.cast_verdict("c-1", "e", Verdict.NOT_GUILTY, T0)
        assert result.resolved
        assert result.case.status is CaseStatus.RESOLVED
        assert result.case.outcome is Verdict.GUILTY

    def test_revote_overwrites(self, courts: CourtsEngine, store: GovernanceStore) -> None:
        courts.open_case("c-1", "Spam", 5, T0)
        assert courts.cast_verdict("c-1", "a", Verdict.GUILTY, T0).changed
        result = courts.cast_verdict("c-1", "a", Verdict.NOT_GUILTY, T0)
        assert not result.changed
        assert result.tally == VerdictTally(guilty=0, not_guilty=1)

    def test_resolved_case_rejects_verdicts(self, courts: CourtsEngine) -> None:
        courts.open_case("c-1", "Spam", 5, T0)
        for voter in ("a", "b", "c", "d", "e"):
            courts.cast_verdict("c-1", voter, Verdict.NOT_GUILTY, T0)
        result = courts.cast_verdict("c-1", "f", Verdict.GUILTY, T0)
        assert result.code is ErrorCode.CASE_NOT_LIVE

    def test_upsert_applies_only_while_live(self, store: GovernanceStore) -> None:
        store.insert_court_case(CourtCase(
            case_id="c-1", title="Spam", status=CaseStatus.LIVE, base_reports=5,
            created_utc=T0, updated_utc=T0,
        ))
        assert store.upsert_court_verdict("c-1", "a", Verdict.GUILTY, T0) is VerdictOutcome.CREATED
        assert store.upsert_court_verdict("c-1", "a", Verdict.NOT_GUILTY, T0) is VerdictOutcome.UPDATED
        store.transition_court_case(
            "c-1", CaseStatus.LIVE, CaseStatus.RESOLVED, T0, outcome=Verdict.NOT_GUILTY,
        )
        assert (
            store.upsert_court_verdict("c-1", "b", Verdict.GUILTY, T0)
            is VerdictOutcome.CASE_NOT_LIVE
        )
        assert store.court_verdict_tally("c-1") == VerdictTally(guilty=0, not_guilty=1)

    def test_resolution_between_read_and_write(self, resolver: PolicyResolver) -> None:
        store = _StaleReadStore()
        courts = CourtsEngine(store, resolver)
        courts.open_case("c-1", "Spam", 5, T0)
        store.transition_court_case(
            "c-1", CaseStatus.LIVE, CaseStatus.RESOLVED, T0, outcome=Verdict.GUILTY,
        )
        store.stale_reads = 1
        result = courts.cast_verdict("c-1", "late", Verdict.NOT_GUILTY, T0)
        assert result.code is ErrorCode.CASE_NOT_LIVE
        assert store.court_verdict_tally("c-1").total == 0
