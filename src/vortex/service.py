"""Vortex service: unified facade for the governance engine.

This is the primary interface for programmatic access to Vortex.
It orchestrates all subsystems:
- Proposal lifecycle (pool → chamber vote → build)
- Vote ledgers and quorum evaluation
- CM awards for passed proposals
- Formation (team joins, milestone unlocks)
- Courts (reports, verdicts, resolution)
- Era accounting (activity counters, quotas, rollups, clock ticks)
- Audit (governance event log)

All operations produce typed results. Domain rule violations come back
as a failed ServiceResult carrying an ErrorCode; they are never raised.
Every committed store write is followed by an audit event. If the event
log fails after the write has committed, the write stands, the result
carries a warning and the service is flagged audit-degraded.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from vortex.awards.engine import AwardEngine
from vortex.chambers.engine import ChamberRegistry
from vortex.courts.engine import CourtActionResult, CourtsEngine
from vortex.engine.state_machine import ProposalStateMachine
from vortex.era.rollup import (
    EraRollupEngine,
    classify_governing_status,
    meets_requirements,
)
from vortex.era.tracker import EraActivityTracker
from vortex.external.clock import Clock, StoreClock
from vortex.external.read_models import ReadModelCache, project_proposal
from vortex.formation.engine import FormationEngine, FormationResult
from vortex.ledger.votes import (
    ChamberVoteLedger,
    PoolVoteLedger,
    validate_chamber_vote,
)
from vortex.models.chamber import ChamberAction, normalize_chamber_id
from vortex.models.court import CaseStatus, Verdict
from vortex.models.era import ActivityKind
from vortex.models.errors import ErrorCode
from vortex.models.proposal import (
    ChamberChoice,
    PoolDirection,
    Proposal,
    ProposalPayload,
    ProposalStage,
)
from vortex.persistence import open_event_log, open_store
from vortex.persistence.base import GovernanceStore
from vortex.persistence.event_log import EventKind, EventLog, EventRecord
from vortex.policy.resolver import PolicyResolver
from vortex.quorum.engine import (
    ChamberQuorumInputs,
    PoolQuorumInputs,
    evaluate_chamber_quorum,
    evaluate_pool_quorum,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    code: Optional[ErrorCode] = None


def _fail(
    code: ErrorCode, message: str, data: Optional[dict[str, Any]] = None,
) -> ServiceResult:
    return ServiceResult(success=False, errors=[message], data=data or {}, code=code)


def _from_engine(result: FormationResult | CourtActionResult) -> ServiceResult:
    return ServiceResult(success=False, errors=list(result.errors), code=result.code)


class GovernanceService:
    """Unified governance engine facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = GovernanceService(resolver, store=MemoryStore())

        service.create_proposal("p-1", author, "engineering", "Title", "Summary",
                                ProposalPayload(team_slots_total=3, milestones_total=2))
        service.cast_pool_vote("p-1", voter, PoolDirection.UP)
        service.cast_chamber_vote("p-1", voter, ChamberChoice.YES, score=8)
        service.join_formation("p-1", member)

        # Era boundary (admin)
        service.tick_clock(force_advance=True)
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        store: Optional[GovernanceStore] = None,
        clock: Optional[Clock] = None,
        event_log: Optional[EventLog] = None,
        read_models: Optional[ReadModelCache] = None,
    ) -> None:
        self._resolver = resolver
        self._store = store if store is not None else open_store(resolver)
        self._clock = clock if clock is not None else StoreClock(self._store)
        self._event_log = event_log if event_log is not None else open_event_log(resolver)
        self._read_models = read_models

        self._pool_ledger = PoolVoteLedger(self._store)
        self._chamber_ledger = ChamberVoteLedger(self._store)
        self._state_machine = ProposalStateMachine(self._store)
        self._tracker = EraActivityTracker(self._store, self._clock, resolver)
        self._rollup_engine = EraRollupEngine(self._store, resolver)
        self._formation = FormationEngine(self._store)
        self._courts = CourtsEngine(self._store, resolver)
        self._chambers = ChamberRegistry(self._store, resolver)
        self._chambers.ensure_genesis(self._clock.now())
        self._awards = AwardEngine(self._store, resolver, self._chambers)

        # Initialize counter from persisted log to avoid ID collision on restart
        self._event_counter = self._event_log.count if self._event_log is not None else 0
        self._event_lock = threading.Lock()

        # Set when an audit event could not be written after its store
        # write committed. Store state is correct; the event log has a gap.
        self._audit_degraded: bool = False

    @property
    def store(self) -> GovernanceStore:
        return self._store

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def audit_degraded(self) -> bool:
        return self._audit_degraded

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def create_proposal(
        self,
        proposal_id: str,
        author_address: str,
        chamber_id: str,
        title: str,
        summary: str = "",
        payload: Optional[ProposalPayload] = None,
    ) -> ServiceResult:
        """Create a proposal in the pool stage."""
        payload = payload or ProposalPayload()
        errors: list[str] = []
        if not proposal_id.strip():
            errors.append("Proposal id must not be empty")
        if not title.strip():
            errors.append("Proposal title must not be empty")
        if payload.team_slots_total < 0:
            errors.append("team_slots_total must be >= 0")
        if payload.milestones_total < 0:
            errors.append("milestones_total must be >= 0")
        try:
            json.dumps(payload.content)
        except (TypeError, ValueError) as e:
            errors.append(f"Proposal content must be JSON-serializable: {e}")
        if errors:
            return ServiceResult(
                success=False, errors=errors, code=ErrorCode.INVALID_COMMAND,
            )

        now = self._clock.now()
        proposal = Proposal(
            proposal_id=proposal_id,
            author_address=author_address,
            chamber_id=normalize_chamber_id(chamber_id),
            title=title,
            summary=summary,
            payload=payload,
            stage=ProposalStage.POOL,
            created_utc=now,
            updated_utc=now,
        )
        if not self._store.insert_proposal(proposal):
            return _fail(
                ErrorCode.PROPOSAL_EXISTS, f"Proposal already exists: {proposal_id}",
            )
        self._tracker.ensure_snapshot()

        warnings = self._record_event(
            EventKind.PROPOSAL_CREATED,
            author_address,
            {
                "proposal_id": proposal_id,
                "chamber_id": proposal.chamber_id,
                "payload": payload.to_dict(),
            },
        )
        self._refresh_read_model(proposal_id)
        return self._ok({
            "proposal_id": proposal_id,
            "stage": proposal.stage.value,
            "chamber_id": proposal.chamber_id,
        }, warnings)

    def get_proposal(self, proposal_id: str) -> ServiceResult:
        proposal = self._store.get_proposal(proposal_id)
        if proposal is None:
            return _fail(
                ErrorCode.PROPOSAL_MISSING, f"Proposal not found: {proposal_id}",
            )
        view = project_proposal(
            proposal,
            pool=self._pool_ledger.counts(proposal_id),
            chamber=self._chamber_ledger.counts(proposal_id),
            formation=self._store.get_formation_project(proposal_id),
        )
        award = self._store.get_cm_award(proposal_id)
        if award is not None:
            view["cm_award"] = {
                "avg_score": award.avg_score,
                "lcm_points": award.lcm_points,
                "mcm_points": award.mcm_points,
            }
        return ServiceResult(success=True, data=view)

    def _proposal_in_stage(
        self, proposal_id: str, stage: ProposalStage,
    ) -> tuple[Optional[Proposal], Optional[ServiceResult]]:
        proposal = self._store.get_proposal(proposal_id)
        if proposal is None:
            return None, _fail(
                ErrorCode.PROPOSAL_MISSING, f"Proposal not found: {proposal_id}",
            )
        if proposal.stage is not stage:
            return None, _fail(
                ErrorCode.STAGE_MISMATCH,
                f"Proposal {proposal_id} is in {proposal.stage.value}, "
                f"expected {stage.value}",
                {"stage": proposal.stage.value},
            )
        return proposal, None

    # ------------------------------------------------------------------
    # Pool stage
    # ------------------------------------------------------------------

    def cast_pool_vote(
        self,
        proposal_id: str,
        voter_address: str,
        direction: PoolDirection,
    ) -> ServiceResult:
        """Cast (or change) an attention vote; may advance the proposal to VOTE."""
        _, error = self._proposal_in_stage(proposal_id, ProposalStage.POOL)
        if error:
            return error

        if not self._pool_ledger.has_voted(proposal_id, voter_address):
            error = self._quota_error(voter_address, ActivityKind.POOL_VOTES)
            if error:
                return error

        cast = self._pool_ledger.cast(proposal_id, voter_address, direction)
        if cast.created:
            self._tracker.record(voter_address, ActivityKind.POOL_VOTES)
        warnings = self._record_event(
            EventKind.POOL_VOTE_CAST,
            voter_address,
            {
                "proposal_id": proposal_id,
                "direction": direction.label,
                "created": cast.created,
            },
        )

        active = self._tracker.active_governors_for_current_era()
        quorum = evaluate_pool_quorum(
            PoolQuorumInputs(
                attention_quorum=self._resolver.pool_quorum_policy().attention_quorum,
                active_governors=active,
                upvote_floor=self._resolver.upvote_floor(active),
            ),
            upvotes=cast.counts.upvotes,
            downvotes=cast.counts.downvotes,
        )

        advanced = False
        if quorum.should_advance:
            advanced = self._state_machine.transition(
                proposal_id, ProposalStage.POOL, ProposalStage.VOTE, self._clock.now(),
            )
            if advanced:
                warnings += self._record_transition(
                    proposal_id, ProposalStage.POOL, ProposalStage.VOTE,
                )

        self._refresh_read_model(proposal_id)
        current = self._store.get_proposal(proposal_id)
        return self._ok({
            "proposal_id": proposal_id,
            "direction": direction.label,
            "created": cast.created,
            "counts": {
                "upvotes": cast.counts.upvotes,
                "downvotes": cast.counts.downvotes,
            },
            "quorum": {
                "active_governors": active,
                "engaged": quorum.engaged,
                "engaged_needed": quorum.engaged_needed,
                "upvote_floor": quorum.upvote_floor,
                "attention_met": quorum.attention_met,
                "upvote_met": quorum.upvote_met,
            },
            "advanced": advanced,
            "stage": current.stage.value,
        }, warnings)

    # ------------------------------------------------------------------
    # Chamber vote stage
    # ------------------------------------------------------------------

    def cast_chamber_vote(
        self,
        proposal_id: str,
        voter_address: str,
        choice: ChamberChoice,
        score: Optional[int] = None,
    ) -> ServiceResult:
        """Cast (or change) a chamber vote.

        When the chamber quorum is met and the vote passes:
        1. The proposer is awarded CM once (if any yes vote carries a score).
        2. Formation-eligible proposals move to BUILD and their formation
           project is seeded.
        """
        score_errors = validate_chamber_vote(choice, score)
        if score_errors:
            return ServiceResult(
                success=False, errors=score_errors, code=ErrorCode.INVALID_SCORE,
            )
        proposal, error = self._proposal_in_stage(proposal_id, ProposalStage.VOTE)
        if error:
            return error

        if not self._chamber_ledger.has_voted(proposal_id, voter_address):
            error = self._quota_error(voter_address, ActivityKind.CHAMBER_VOTES)
            if error:
                return error

        cast = self._chamber_ledger.cast(proposal_id, voter_address, choice, score)
        if cast.created:
            self._tracker.record(voter_address, ActivityKind.CHAMBER_VOTES)
        warnings = self._record_event(
            EventKind.CHAMBER_VOTE_CAST,
            voter_address,
            {
                "proposal_id": proposal_id,
                "choice": choice.value,
                "score": score,
                "created": cast.created,
            },
        )

        policy = self._resolver.chamber_quorum_policy()
        active = self._tracker.active_governors_for_current_era()
        quorum = evaluate_chamber_quorum(
            ChamberQuorumInputs(
                quorum_fraction=policy.quorum_fraction,
                active_governors=active,
                passing_fraction=policy.passing_fraction,
            ),
            yes=cast.counts.yes,
            no=cast.counts.no,
            abstain=cast.counts.abstain,
        )

        data: dict[str, Any] = {
            "proposal_id": proposal_id,
            "choice": choice.value,
            "created": cast.created,
            "counts": {
                "yes": cast.counts.yes,
                "no": cast.counts.no,
                "abstain": cast.counts.abstain,
            },
            "quorum": {
                "active_governors": active,
                "engaged": quorum.engaged,
                "quorum_needed": quorum.quorum_needed,
                "quorum_met": quorum.quorum_met,
                "yes_fraction": quorum.yes_fraction,
                "pass_met": quorum.pass_met,
            },
            "passed": quorum.should_advance,
            "advanced": False,
        }

        if quorum.should_advance:
            warnings += self._on_chamber_pass(proposal, data)

        self._refresh_read_model(proposal_id)
        data["stage"] = self._store.get_proposal(proposal_id).stage.value
        return self._ok(data, warnings)

    def _on_chamber_pass(
        self, proposal: Proposal, data: dict[str, Any],
    ) -> list[str]:
        warnings: list[str] = []
        now = self._clock.now()
        proposal_id = proposal.proposal_id

        avg_score = self._chamber_ledger.average_yes_score(proposal_id)
        if avg_score is not None:
            outcome = self._awards.award_once(proposal, avg_score, now)
            data["cm_award"] = {
                "lcm_points": outcome.award.lcm_points,
                "mcm_points": outcome.award.mcm_points,
                "created": outcome.created,
            }
            if outcome.created:
                warnings += self._record_event(
                    EventKind.CM_AWARDED,
                    outcome.award.proposer_id,
                    {
                        "proposal_id": proposal_id,
                        "chamber_id": outcome.award.chamber_id,
                        "avg_score": outcome.award.avg_score,
                        "lcm_points": outcome.award.lcm_points,
                        "mcm_points": outcome.award.mcm_points,
                    },
                )

        change = self._chambers.apply_governance(proposal, now)
        if change is not None:
            data["chamber_change"] = {
                "action": change.action.value,
                "chamber_id": change.chamber_id,
                "applied": change.applied,
            }
            if change.applied:
                kind = (
                    EventKind.CHAMBER_CREATED
                    if change.action is ChamberAction.CREATE
                    else EventKind.CHAMBER_DISSOLVED
                )
                warnings += self._record_event(
                    kind, "system",
                    {"proposal_id": proposal_id, "chamber_id": change.chamber_id},
                )

        if not proposal.payload.is_formation_eligible:
            return warnings

        advanced = self._state_machine.transition(
            proposal_id, ProposalStage.VOTE, ProposalStage.BUILD, now,
        )
        data["advanced"] = advanced
        if advanced:
            warnings += self._record_transition(
                proposal_id, ProposalStage.VOTE, ProposalStage.BUILD,
            )

        current = self._store.get_proposal(proposal_id)
        if current.stage is ProposalStage.BUILD and self._formation.seed_project(current, now):
            warnings += self._record_event(
                EventKind.FORMATION_SEEDED,
                "system",
                {
                    "proposal_id": proposal_id,
                    "team_slots_total": current.payload.team_slots_total,
                    "milestones_total": current.payload.milestones_total,
                },
            )
        return warnings

    # ------------------------------------------------------------------
    # Formation
    # ------------------------------------------------------------------

    def _formation_context(
        self, proposal_id: str,
    ) -> Optional[ServiceResult]:
        _, error = self._proposal_in_stage(proposal_id, ProposalStage.BUILD)
        if error:
            return error
        if self._store.get_formation_project(proposal_id) is None:
            return _fail(
                ErrorCode.FORMATION_MISSING,
                f"No formation project for proposal: {proposal_id}",
            )
        return None

    def join_formation(
        self,
        proposal_id: str,
        address: str,
        role: Optional[str] = None,
    ) -> ServiceResult:
        """Join the formation team. Re-joining is a no-op success."""
        error = self._formation_context(proposal_id)
        if error:
            return error
        if self._formation.join_would_count(proposal_id, address):
            error = self._quota_error(address, ActivityKind.FORMATION_ACTIONS)
            if error:
                return error

        result = self._formation.join(proposal_id, address, role, self._clock.now())
        if not result.success:
            return _from_engine(result)

        warnings: list[str] = []
        if result.changed:
            self._tracker.record(address, ActivityKind.FORMATION_ACTIONS)
            warnings = self._record_event(
                EventKind.FORMATION_JOINED,
                address,
                {"proposal_id": proposal_id, "role": role},
            )
        self._refresh_read_model(proposal_id)
        return self._ok({
            "proposal_id": proposal_id,
            "joined": result.changed,
            "team_filled": result.project.team_filled,
            "team_slots_total": result.project.team_slots_total,
        }, warnings)

    def submit_milestone(
        self,
        proposal_id: str,
        address: str,
        milestone_index: int,
        note: Optional[str] = None,
    ) -> ServiceResult:
        """Mark a milestone as submitted. Re-submitting is a no-op success."""
        error = self._milestone_context(proposal_id, milestone_index)
        if error:
            return error
        if self._formation.submit_would_count(proposal_id, milestone_index):
            error = self._quota_error(address, ActivityKind.FORMATION_ACTIONS)
            if error:
                return error

        result = self._formation.submit_milestone(
            proposal_id, milestone_index, self._clock.now(),
        )
        if not result.success:
            return _from_engine(result)

        warnings: list[str] = []
        if result.changed:
            self._tracker.record(address, ActivityKind.FORMATION_ACTIONS)
            warnings = self._record_event(
                EventKind.MILESTONE_SUBMITTED,
                address,
                {
                    "proposal_id": proposal_id,
                    "milestone_index": milestone_index,
                    "note": note,
                },
            )
        return self._ok({
            "proposal_id": proposal_id,
            "milestone_index": milestone_index,
            "status": result.milestone_status.value,
            "changed": result.changed,
        }, warnings)

    def request_milestone_unlock(
        self,
        proposal_id: str,
        address: str,
        milestone_index: int,
    ) -> ServiceResult:
        """Unlock a submitted milestone and count it as completed."""
        error = self._milestone_context(proposal_id, milestone_index)
        if error:
            return error
        if self._formation.unlock_would_count(proposal_id, milestone_index):
            error = self._quota_error(address, ActivityKind.FORMATION_ACTIONS)
            if error:
                return error

        result = self._formation.request_unlock(
            proposal_id, milestone_index, self._clock.now(),
        )
        if not result.success:
            return _from_engine(result)

        self._tracker.record(address, ActivityKind.FORMATION_ACTIONS)
        warnings = self._record_event(
            EventKind.MILESTONE_UNLOCKED,
            address,
            {"proposal_id": proposal_id, "milestone_index": milestone_index},
        )
        self._refresh_read_model(proposal_id)
        return self._ok({
            "proposal_id": proposal_id,
            "milestone_index": milestone_index,
            "status": result.milestone_status.value,
            "milestones_completed": result.project.milestones_completed,
            "milestones_total": result.project.milestones_total,
        }, warnings)

    def _milestone_context(
        self, proposal_id: str, milestone_index: int,
    ) -> Optional[ServiceResult]:
        error = self._formation_context(proposal_id)
        if error:
            return error
        project = self._store.get_formation_project(proposal_id)
        index_error = self._formation.check_index(project, milestone_index)
        if index_error:
            return _from_engine(index_error)
        return None

    def get_formation_project(self, proposal_id: str) -> ServiceResult:
        project = self._store.get_formation_project(proposal_id)
        if project is None:
            return _fail(
                ErrorCode.FORMATION_MISSING,
                f"No formation project for proposal: {proposal_id}",
            )
        milestones = {
            str(i): self._store.get_milestone_status(proposal_id, i).value
            for i in range(1, project.milestones_total + 1)
        }
        return ServiceResult(success=True, data={
            "proposal_id": proposal_id,
            "team_slots_total": project.team_slots_total,
            "team_filled": project.team_filled,
            "milestones_total": project.milestones_total,
            "milestones_completed": project.milestones_completed,
            "progress": project.progress,
            "milestones": milestones,
        })

    def list_formation_members(self, proposal_id: str) -> ServiceResult:
        if self._store.get_formation_project(proposal_id) is None:
            return _fail(
                ErrorCode.FORMATION_MISSING,
                f"No formation project for proposal: {proposal_id}",
            )
        members = self._store.list_formation_members(proposal_id)
        return ServiceResult(success=True, data={
            "proposal_id": proposal_id,
            "members": [
                {
                    "address": m.member_address,
                    "role": m.role,
                    "joined_utc": m.joined_utc.isoformat(),
                }
                for m in members
            ],
        })

    # ------------------------------------------------------------------
    # Courts
    # ------------------------------------------------------------------

    def open_court_case(
        self,
        case_id: str,
        title: str,
        base_reports: int = 0,
        actor_id: str = "system",
    ) -> ServiceResult:
        """Seed a court case (insert-if-absent)."""
        if not case_id.strip():
            return _fail(ErrorCode.INVALID_COMMAND, "Case id must not be empty")
        result = self._courts.open_case(case_id, title, base_reports, self._clock.now())
        warnings: list[str] = []
        if result.changed:
            warnings = self._record_event(
                EventKind.COURT_CASE_OPENED,
                actor_id,
                {
                    "case_id": case_id,
                    "base_reports": result.case.base_reports,
                    "status": result.case.status.value,
                },
            )
        return self._ok(self._case_data(result), warnings)

    def report_court_case(self, case_id: str, reporter_address: str) -> ServiceResult:
        if self._store.get_court_case(case_id) is None:
            return _fail(
                ErrorCode.COURT_CASE_MISSING, f"Court case not found: {case_id}",
            )
        if self._courts.report_would_count(case_id, reporter_address):
            error = self._quota_error(reporter_address, ActivityKind.COURT_ACTIONS)
            if error:
                return error

        result = self._courts.report(case_id, reporter_address, self._clock.now())
        if not result.success:
            return _from_engine(result)

        warnings: list[str] = []
        if result.changed:
            self._tracker.record(reporter_address, ActivityKind.COURT_ACTIONS)
            warnings += self._record_event(
                EventKind.COURT_REPORTED,
                reporter_address,
                {"case_id": case_id, "total_reports": result.total_reports},
            )
        if result.became_live:
            warnings += self._record_event(
                EventKind.COURT_CASE_LIVE,
                "system",
                {"case_id": case_id, "total_reports": result.total_reports},
            )
        data = self._case_data(result)
        data["reported"] = result.changed
        return self._ok(data, warnings)

    def cast_court_verdict(
        self,
        case_id: str,
        voter_address: str,
        verdict: Verdict,
    ) -> ServiceResult:
        case = self._store.get_court_case(case_id)
        if case is None:
            return _fail(
                ErrorCode.COURT_CASE_MISSING, f"Court case not found: {case_id}",
            )
        # Checked here as well as in the engine so a non-live case never
        # trips the quota first.
        if case.status is not CaseStatus.LIVE:
            return _fail(
                ErrorCode.CASE_NOT_LIVE,
                f"Court case {case_id} is {case.status.value}, not live",
            )
        if self._courts.verdict_would_count(case_id, voter_address):
            error = self._quota_error(voter_address, ActivityKind.COURT_ACTIONS)
            if error:
                return error

        result = self._courts.cast_verdict(
            case_id, voter_address, verdict, self._clock.now(),
        )
        if not result.success:
            return _from_engine(result)

        if result.changed:
            self._tracker.record(voter_address, ActivityKind.COURT_ACTIONS)
        warnings = self._record_event(
            EventKind.COURT_VERDICT_CAST,
            voter_address,
            {"case_id": case_id, "verdict": verdict.value, "created": result.changed},
        )
        if result.resolved:
            warnings += self._record_event(
                EventKind.COURT_CASE_RESOLVED,
                "system",
                {
                    "case_id": case_id,
                    "outcome": result.case.outcome.value,
                    "guilty": result.tally.guilty,
                    "not_guilty": result.tally.not_guilty,
                },
            )
        data = self._case_data(result)
        data["tally"] = {
            "guilty": result.tally.guilty,
            "not_guilty": result.tally.not_guilty,
        }
        data["resolved"] = result.resolved
        return self._ok(data, warnings)

    def get_court_case(self, case_id: str) -> ServiceResult:
        case = self._store.get_court_case(case_id)
        if case is None:
            return _fail(
                ErrorCode.COURT_CASE_MISSING, f"Court case not found: {case_id}",
            )
        tally = self._store.court_verdict_tally(case_id)
        return ServiceResult(success=True, data={
            "case_id": case.case_id,
            "title": case.title,
            "status": case.status.value,
            "outcome": case.outcome.value if case.outcome else None,
            "total_reports": self._courts.total_reports(case),
            "tally": {"guilty": tally.guilty, "not_guilty": tally.not_guilty},
        })

    @staticmethod
    def _case_data(result: CourtActionResult) -> dict[str, Any]:
        case = result.case
        data: dict[str, Any] = {
            "case_id": case.case_id,
            "status": case.status.value,
            "outcome": case.outcome.value if case.outcome else None,
        }
        if result.total_reports is not None:
            data["total_reports"] = result.total_reports
        return data

    # ------------------------------------------------------------------
    # Eras
    # ------------------------------------------------------------------

    def rollup_era(self, era: Optional[int] = None) -> ServiceResult:
        """Freeze governing statuses for an era (idempotent)."""
        target = self._clock.current_era() if era is None else era
        result = self._rollup_engine.rollup(target, self._clock.now())
        warnings: list[str] = []
        if result.created:
            warnings = self._record_event(
                EventKind.ERA_ROLLED_UP,
                "system",
                {
                    "era": target,
                    "users_rolled": result.users_rolled,
                    "active_governors_next_era": result.active_governors_next_era,
                },
            )
        return self._ok(result.to_dict(), warnings)

    def tick_clock(
        self,
        force_advance: bool = False,
        rollup: bool = True,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Admin clock tick: roll up, advance the era when due, close stage windows."""
        now = now or self._clock.now()
        snapshot = self._clock.snapshot()
        from_era = snapshot.current_era
        self._tracker.ensure_snapshot(from_era)

        era_seconds = self._resolver.era_seconds()
        elapsed = (now - snapshot.updated_utc).total_seconds()
        due = force_advance or elapsed >= era_seconds

        warnings: list[str] = []
        data: dict[str, Any] = {
            "now": now.isoformat(),
            "era_seconds": era_seconds,
            "due": due,
        }

        if rollup:
            rolled = self.rollup_era(from_era)
            data["rollup"] = rolled.data
            if "warning" in rolled.data:
                warnings.append(rolled.data.pop("warning"))
            if self._resolver.dynamic_active_governors():
                self._tracker.set_active_governors(
                    from_era + 1, rolled.data["active_governors_next_era"],
                )

        to_era = from_era
        advanced = False
        if due:
            # Concurrent ticks for the same era advance it once.
            advanced = self._clock.advance_from(from_era)
            to_era = from_era + 1 if advanced else self._clock.current_era()
            self._tracker.ensure_snapshot(to_era)
            if advanced:
                logger.info("era advanced: %d -> %d", from_era, to_era)
                warnings += self._record_event(
                    EventKind.ERA_ADVANCED,
                    "system",
                    {"from_era": from_era, "to_era": to_era},
                )

        ended = self._close_stage_windows(now)
        if ended:
            data["ended_windows"] = [w for w, _ in ended]
            for _, warning in ended:
                warnings += warning

        data.update({"advanced": advanced, "from_era": from_era, "to_era": to_era})
        return self._ok(data, warnings)

    def _close_stage_windows(
        self, now: datetime,
    ) -> list[tuple[dict[str, Any], list[str]]]:
        policy = self._resolver.stage_windows()
        if not policy.enabled:
            return []
        window_seconds = {
            ProposalStage.POOL: policy.pool_seconds,
            ProposalStage.VOTE: policy.vote_seconds,
        }
        ended: list[tuple[dict[str, Any], list[str]]] = []
        for proposal in self._store.list_proposals():
            seconds = window_seconds.get(proposal.stage)
            if not seconds or seconds <= 0:
                continue
            ends_utc = proposal.updated_utc + timedelta(seconds=seconds)
            if now < ends_utc:
                continue
            emitted = self._store.mark_stage_window_ended(
                proposal.proposal_id, proposal.stage, ends_utc,
            )
            warnings: list[str] = []
            if emitted:
                warnings = self._record_event(
                    EventKind.STAGE_WINDOW_ENDED,
                    "system",
                    {
                        "proposal_id": proposal.proposal_id,
                        "stage": proposal.stage.value,
                        "ended_utc": ends_utc.isoformat(),
                    },
                )
            ended.append(({
                "proposal_id": proposal.proposal_id,
                "stage": proposal.stage.value,
                "ended_utc": ends_utc.isoformat(),
                "emitted": emitted,
            }, warnings))
        return ended

    # ------------------------------------------------------------------
    # Read-side queries
    # ------------------------------------------------------------------

    def governance_status(self, address: str) -> ServiceResult:
        """Current-era activity and provisional governing status for an address."""
        era = self._clock.current_era()
        counts = self._tracker.activity(address, era)
        requirements = self._resolver.era_requirements()
        required_total = requirements.total()
        completed_total = counts.total()
        status = classify_governing_status(
            completed_total, required_total, self._resolver.status_bands(),
        )
        data: dict[str, Any] = {
            "address": address,
            "era": era,
            "counts": counts.to_dict(),
            "requirements": requirements.to_dict(),
            "required_total": required_total,
            "completed_total": completed_total,
            "status": status.value,
            "meets_requirements": meets_requirements(counts, requirements),
        }
        previous = self._store.get_era_user_status(era - 1, address) if era > 0 else None
        if previous is not None:
            data["previous_era"] = {
                "era": previous.era,
                "status": previous.status.value,
                "is_active": previous.is_active_next_era,
            }
        return ServiceResult(success=True, data=data)

    def acm_points(self, address: str) -> ServiceResult:
        awards = self._store.list_cm_awards(proposer_id=address)
        return ServiceResult(success=True, data={
            "address": address,
            "acm": sum(a.mcm_points for a in awards),
            "awards": [
                {
                    "proposal_id": a.proposal_id,
                    "chamber_id": a.chamber_id,
                    "lcm_points": a.lcm_points,
                    "mcm_points": a.mcm_points,
                }
                for a in awards
            ],
        })

    def chamber_cm_stats(self, chamber_id: str) -> ServiceResult:
        stats = self._awards.chamber_stats(chamber_id)
        return ServiceResult(success=True, data={
            "chamber_id": stats.chamber_id,
            "awards": stats.awards,
            "lcm_points": stats.lcm_points,
            "mcm_points": stats.mcm_points,
        })

    def list_chambers(self, include_dissolved: bool = False) -> ServiceResult:
        return ServiceResult(success=True, data={
            "chambers": [
                c.to_dict() for c in self._chambers.list(include_dissolved)
            ],
        })

    def get_chamber(self, chamber_id: str) -> ServiceResult:
        chamber = self._chambers.get(chamber_id)
        if chamber is None:
            return _fail(
                ErrorCode.CHAMBER_MISSING, f"Chamber not found: {chamber_id}",
            )
        return ServiceResult(success=True, data=chamber.to_dict())

    def status(self) -> dict[str, Any]:
        """Return a summary of the current governance state."""
        by_stage = {stage.value: 0 for stage in ProposalStage}
        for proposal in self._store.list_proposals():
            by_stage[proposal.stage.value] += 1
        snapshot = self._clock.snapshot()
        return {
            "era": {
                "current": snapshot.current_era,
                "updated_utc": snapshot.updated_utc.isoformat(),
                "active_governors": self._tracker.active_governors_for_current_era(),
            },
            "proposals": {
                "total": sum(by_stage.values()),
                "by_stage": by_stage,
            },
            "events": self._event_log.count if self._event_log is not None else 0,
            "audit_degraded": self._audit_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _quota_error(
        self, address: str, kind: ActivityKind,
    ) -> Optional[ServiceResult]:
        violation = self._tracker.check_quota(address, kind)
        if violation is None:
            return None
        return _fail(
            ErrorCode.ERA_QUOTA_EXCEEDED,
            f"Era quota exceeded for {kind.value}: "
            f"{violation.used}/{violation.limit} in era {violation.era}",
            violation.to_dict(),
        )

    def _record_transition(
        self, proposal_id: str, from_stage: ProposalStage, to_stage: ProposalStage,
    ) -> list[str]:
        logger.info(
            "proposal %s advanced: %s -> %s",
            proposal_id, from_stage.value, to_stage.value,
        )
        return self._record_event(
            EventKind.STAGE_TRANSITION,
            "system",
            {
                "proposal_id": proposal_id,
                "from_stage": from_stage.value,
                "to_stage": to_stage.value,
            },
        )

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record_event(
        self, kind: EventKind, actor_id: str, payload: dict[str, Any],
    ) -> list[str]:
        """Append an audit event after a committed write.

        MUST NOT undo the write: on failure the service is flagged
        audit-degraded and a warning is returned for the result.
        """
        if self._event_log is None:
            return []
        with self._event_lock:
            try:
                self._event_log.append(EventRecord.create(
                    event_id=self._next_event_id(),
                    event_kind=kind,
                    actor_id=actor_id,
                    payload=payload,
                    timestamp_utc=self._clock.now(),
                ))
                return []
            except (TypeError, ValueError, OSError) as e:
                self._audit_degraded = True
                logger.warning("audit degraded: %s event not recorded: %s", kind.value, e)
                return [f"Audit degraded: {e}; state committed but event log has a gap"]

    def _refresh_read_model(self, proposal_id: str) -> None:
        if self._read_models is None:
            return
        proposal = self._store.get_proposal(proposal_id)
        if proposal is None:
            return
        self._read_models.put(proposal_id, project_proposal(
            proposal,
            pool=self._pool_ledger.counts(proposal_id),
            chamber=self._chamber_ledger.counts(proposal_id),
            formation=self._store.get_formation_project(proposal_id),
        ))

    @staticmethod
    def _ok(data: dict[str, Any], warnings: list[str]) -> ServiceResult:
        if warnings:
            data["warning"] = "; ".join(warnings)
        return ServiceResult(success=True, data=data)
