"""Courts engine: dispute cases, reports and verdicts.

A case opens with a number of base reports (reports filed before the
case entered the system). Distinct reporters add to that; once the total
reaches the live threshold an open case goes live. Live cases collect
one verdict per voter (last write wins) and resolve once enough verdicts
are in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from vortex.models.court import (
    CaseStatus,
    CourtCase,
    Verdict,
    VerdictOutcome,
    VerdictTally,
)
from vortex.models.errors import ErrorCode
from vortex.persistence.base import GovernanceStore
from vortex.policy.resolver import CourtPolicy, PolicyResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CourtActionResult:
    success: bool
    code: Optional[ErrorCode] = None
    errors: list[str] = field(default_factory=list)
    changed: bool = False
    case: Optional[CourtCase] = None
    total_reports: Optional[int] = None
    tally: Optional[VerdictTally] = None
    became_live: bool = False
    resolved: bool = False


def evaluate_resolution(
    tally: VerdictTally, policy: CourtPolicy,
) -> Optional[Verdict]:
    """Return the outcome once enough verdicts are in, else None."""
    if tally.total <= 0 or tally.total < policy.min_verdicts:
        return None
    if tally.guilty / tally.total >= policy.guilty_fraction:
        return Verdict.GUILTY
    return Verdict.NOT_GUILTY


def _missing(case_id: str) -> CourtActionResult:
    return CourtActionResult(
        success=False,
        code=ErrorCode.COURT_CASE_MISSING,
        errors=[f"Court case not found: {case_id}"],
    )


def _not_live(case_id: str, status: CaseStatus) -> CourtActionResult:
    return CourtActionResult(
        success=False,
        code=ErrorCode.CASE_NOT_LIVE,
        errors=[f"Court case {case_id} is {status.value}, not live"],
    )


class CourtsEngine:

    def __init__(self, store: GovernanceStore, resolver: PolicyResolver) -> None:
        self._store = store
        self._resolver = resolver

    def total_reports(self, case: CourtCase) -> int:
        return case.base_reports + self._store.count_court_reports(case.case_id)

    def report_would_count(self, case_id: str, reporter_address: str) -> bool:
        return not self._store.has_court_report(case_id, reporter_address)

    def verdict_would_count(self, case_id: str, voter_address: str) -> bool:
        return self._store.get_court_verdict(case_id, voter_address) is None

    def open_case(
        self,
        case_id: str,
        title: str,
        base_reports: int,
        now: datetime,
    ) -> CourtActionResult:
        """Seed a case; it starts live when base reports already meet the threshold."""
        policy = self._resolver.court_policy()
        base = max(0, base_reports)
        status = (
            CaseStatus.LIVE if base >= policy.live_report_threshold
            else CaseStatus.OPEN
        )
        created = self._store.insert_court_case(CourtCase(
            case_id=case_id,
            title=title,
            status=status,
            base_reports=base,
            created_utc=now,
            updated_utc=now,
        ))
        case = self._store.get_court_case(case_id)
        return CourtActionResult(
            success=True,
            changed=created,
            case=case,
            total_reports=self.total_reports(case),
        )

    def report(
        self, case_id: str, reporter_address: str, now: datetime,
    ) -> CourtActionResult:
        case = self._store.get_court_case(case_id)
        if case is None:
            return _missing(case_id)

        created = self._store.add_court_report(case_id, reporter_address, now)
        total = self.total_reports(case)
        became_live = False
        threshold = self._resolver.court_policy().live_report_threshold
        if case.status is CaseStatus.OPEN and total >= threshold:
            became_live = self._store.transition_court_case(
                case_id, CaseStatus.OPEN, CaseStatus.LIVE, now,
            )
            if became_live:
                logger.info("court case %s is live (%d reports)", case_id, total)

        return CourtActionResult(
            success=True,
            changed=created,
            case=self._store.get_court_case(case_id),
            total_reports=total,
            became_live=became_live,
        )

    def cast_verdict(
        self,
        case_id: str,
        voter_address: str,
        verdict: Verdict,
        now: datetime,
    ) -> CourtActionResult:
        case = self._store.get_court_case(case_id)
        if case is None:
            return _missing(case_id)
        if case.status is not CaseStatus.LIVE:
            return _not_live(case_id, case.status)

        outcome = self._store.upsert_court_verdict(case_id, voter_address, verdict, now)
        if outcome is VerdictOutcome.CASE_NOT_LIVE:
            # Resolved between the read above and the write.
            return _not_live(case_id, self._store.get_court_case(case_id).status)
        created = outcome is VerdictOutcome.CREATED
        tally = self._store.court_verdict_tally(case_id)
        decision = evaluate_resolution(tally, self._resolver.court_policy())
        resolved = False
        if decision is not None:
            resolved = self._store.transition_court_case(
                case_id, CaseStatus.LIVE, CaseStatus.RESOLVED, now, outcome=decision,
            )
            if resolved:
                logger.info(
                    "court case %s resolved: %s (%d/%d guilty)",
                    case_id, decision.value, tally.guilty, tally.total,
                )

        return CourtActionResult(
            success=True,
            changed=created,
            case=self._store.get_court_case(case_id),
            tally=tally,
            resolved=resolved,
        )
