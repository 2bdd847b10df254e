"""In-memory governance store.

Used for tests and single-process simulations. One re-entrant lock
serializes every primitive, which gives each method the same atomicity
the SQLite store gets from its transactions.
"""

from __future__ import annotations

import dataclasses
import threading
from datetime import datetime
from typing import Optional

from vortex.models.award import CmAward
from vortex.models.chamber import Chamber, ChamberStatus
from vortex.models.court import (
    CaseStatus,
    CourtCase,
    Verdict,
    VerdictOutcome,
    VerdictTally,
)
from vortex.models.era import (
    ActivityCounts,
    ClockSnapshot,
    EraRollup,
    EraSnapshot,
    EraUserActivity,
    EraUserStatus,
)
from vortex.models.formation import (
    FormationMember,
    FormationProject,
    JoinOutcome,
    MilestoneStatus,
)
from vortex.models.idempotency import IdempotencyRecord
from vortex.models.proposal import (
    ChamberChoice,
    ChamberCounts,
    ChamberVote,
    PoolCounts,
    PoolDirection,
    Proposal,
    ProposalStage,
)
from vortex.persistence.base import GovernanceStore


class MemoryStore(GovernanceStore):
    """Dict-backed store. State is lost when the process exits."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._proposals: dict[str, Proposal] = {}
        self._pool_votes: dict[tuple[str, str], PoolDirection] = {}
        self._chamber_votes: dict[tuple[str, str], ChamberVote] = {}
        self._clock: Optional[ClockSnapshot] = None
        self._era_snapshots: dict[int, EraSnapshot] = {}
        self._era_activity: dict[tuple[int, str], ActivityCounts] = {}
        self._era_rollups: dict[int, EraRollup] = {}
        self._era_statuses: dict[tuple[int, str], EraUserStatus] = {}
        self._chambers: dict[str, Chamber] = {}
        self._cm_awards: dict[str, CmAward] = {}
        self._projects: dict[str, FormationProject] = {}
        self._members: dict[tuple[str, str], FormationMember] = {}
        self._milestones: dict[tuple[str, int], MilestoneStatus] = {}
        self._cases: dict[str, CourtCase] = {}
        self._reports: set[tuple[str, str]] = set()
        self._verdicts: dict[tuple[str, str], Verdict] = {}
        self._ended_windows: set[tuple[str, str, datetime]] = set()
        self._idempotency: dict[str, IdempotencyRecord] = {}

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def insert_proposal(self, proposal: Proposal) -> bool:
        with self._lock:
            if proposal.proposal_id in self._proposals:
                return False
            self._proposals[proposal.proposal_id] = proposal
            return True

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        with self._lock:
            return self._proposals.get(proposal_id)

    def list_proposals(
        self, stage: Optional[ProposalStage] = None,
    ) -> list[Proposal]:
        with self._lock:
            proposals = sorted(
                self._proposals.values(),
                key=lambda p: (p.created_utc, p.proposal_id),
            )
        if stage is None:
            return proposals
        return [p for p in proposals if p.stage == stage]

    def transition_proposal_stage(
        self,
        proposal_id: str,
        from_stage: ProposalStage,
        to_stage: ProposalStage,
        now: datetime,
    ) -> bool:
        with self._lock:
            current = self._proposals.get(proposal_id)
            if current is None or current.stage != from_stage:
                return False
            self._proposals[proposal_id] = dataclasses.replace(
                current, stage=to_stage, updated_utc=now,
            )
            return True

    # ------------------------------------------------------------------
    # Vote ledgers
    # ------------------------------------------------------------------

    def upsert_pool_vote(
        self, proposal_id: str, voter_address: str, direction: PoolDirection,
    ) -> bool:
        key = (proposal_id, voter_address)
        with self._lock:
            created = key not in self._pool_votes
            self._pool_votes[key] = direction
            return created

    def get_pool_vote(
        self, proposal_id: str, voter_address: str,
    ) -> Optional[PoolDirection]:
        with self._lock:
            return self._pool_votes.get((proposal_id, voter_address))

    def pool_vote_counts(self, proposal_id: str) -> PoolCounts:
        with self._lock:
            directions = [
                d for (pid, _), d in self._pool_votes.items() if pid == proposal_id
            ]
        return PoolCounts(
            upvotes=sum(1 for d in directions if d is PoolDirection.UP),
            downvotes=sum(1 for d in directions if d is PoolDirection.DOWN),
        )

    def upsert_chamber_vote(self, vote: ChamberVote) -> bool:
        key = (vote.proposal_id, vote.voter_address)
        with self._lock:
            created = key not in self._chamber_votes
            self._chamber_votes[key] = vote
            return created

    def get_chamber_vote(
        self, proposal_id: str, voter_address: str,
    ) -> Optional[ChamberVote]:
        with self._lock:
            return self._chamber_votes.get((proposal_id, voter_address))

    def _votes_for(self, proposal_id: str) -> list[ChamberVote]:
        with self._lock:
            return [
                v for (pid, _), v in self._chamber_votes.items()
                if pid == proposal_id
            ]

    def chamber_vote_counts(self, proposal_id: str) -> ChamberCounts:
        votes = self._votes_for(proposal_id)
        return ChamberCounts(
            yes=sum(1 for v in votes if v.choice is ChamberChoice.YES),
            no=sum(1 for v in votes if v.choice is ChamberChoice.NO),
            abstain=sum(1 for v in votes if v.choice is ChamberChoice.ABSTAIN),
        )

    def chamber_yes_scores(self, proposal_id: str) -> list[int]:
        return [
            v.score for v in self._votes_for(proposal_id)
            if v.choice is ChamberChoice.YES and v.score is not None
        ]

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def get_clock_state(self) -> Optional[ClockSnapshot]:
        with self._lock:
            return self._clock

    def ensure_clock_state(self, now: datetime) -> ClockSnapshot:
        with self._lock:
            if self._clock is None:
                self._clock = ClockSnapshot(current_era=0, updated_utc=now)
            return self._clock

    def advance_clock_era(self, from_era: int, now: datetime) -> bool:
        with self._lock:
            if self._clock is None or self._clock.current_era != from_era:
                return False
            self._clock = ClockSnapshot(current_era=from_era + 1, updated_utc=now)
            return True

    # ------------------------------------------------------------------
    # Eras
    # ------------------------------------------------------------------

    def get_era_snapshot(self, era: int) -> Optional[EraSnapshot]:
        with self._lock:
            return self._era_snapshots.get(era)

    def ensure_era_snapshot(
        self, era: int, active_governors: int, now: datetime,
    ) -> EraSnapshot:
        with self._lock:
            existing = self._era_snapshots.get(era)
            if existing is not None:
                return existing
            snapshot = EraSnapshot(
                era=era, active_governors=active_governors, created_utc=now,
            )
            self._era_snapshots[era] = snapshot
            return snapshot

    def set_era_snapshot(
        self, era: int, active_governors: int, now: datetime,
    ) -> EraSnapshot:
        with self._lock:
            existing = self._era_snapshots.get(era)
            created = existing.created_utc if existing else now
            snapshot = EraSnapshot(
                era=era, active_governors=active_governors, created_utc=created,
            )
            self._era_snapshots[era] = snapshot
            return snapshot

    def increment_era_activity(
        self, era: int, address: str, delta: ActivityCounts,
    ) -> ActivityCounts:
        key = (era, address)
        with self._lock:
            updated = self._era_activity.get(key, ActivityCounts()).plus(delta)
            self._era_activity[key] = updated
            return updated

    def get_era_activity(self, era: int, address: str) -> ActivityCounts:
        with self._lock:
            return self._era_activity.get((era, address), ActivityCounts())

    def list_era_activity(self, era: int) -> list[EraUserActivity]:
        with self._lock:
            rows = [
                EraUserActivity(era=e, address=address, counts=counts)
                for (e, address), counts in self._era_activity.items()
                if e == era
            ]
        return sorted(rows, key=lambda r: r.address)

    def get_era_rollup(self, era: int) -> Optional[EraRollup]:
        with self._lock:
            return self._era_rollups.get(era)

    def store_era_rollup(
        self, rollup: EraRollup, statuses: list[EraUserStatus],
    ) -> bool:
        with self._lock:
            if rollup.era in self._era_rollups:
                return False
            self._era_rollups[rollup.era] = rollup
            for status in statuses:
                self._era_statuses.setdefault((status.era, status.address), status)
            return True

    def list_era_user_statuses(self, era: int) -> list[EraUserStatus]:
        with self._lock:
            rows = [s for (e, _), s in self._era_statuses.items() if e == era]
        return sorted(rows, key=lambda s: s.address)

    def get_era_user_status(
        self, era: int, address: str,
    ) -> Optional[EraUserStatus]:
        with self._lock:
            return self._era_statuses.get((era, address))

    # ------------------------------------------------------------------
    # Chambers
    # ------------------------------------------------------------------

    def insert_chamber(self, chamber: Chamber) -> bool:
        with self._lock:
            if chamber.chamber_id in self._chambers:
                return False
            self._chambers[chamber.chamber_id] = chamber
            return True

    def get_chamber(self, chamber_id: str) -> Optional[Chamber]:
        with self._lock:
            return self._chambers.get(chamber_id)

    def list_chambers(self, include_dissolved: bool = False) -> list[Chamber]:
        with self._lock:
            rows = [
                c for c in self._chambers.values()
                if include_dissolved or c.status is ChamberStatus.ACTIVE
            ]
        return sorted(rows, key=lambda c: (c.title, c.chamber_id))

    def dissolve_chamber(
        self, chamber_id: str, proposal_id: str, now: datetime,
    ) -> bool:
        with self._lock:
            chamber = self._chambers.get(chamber_id)
            if chamber is None or chamber.status is not ChamberStatus.ACTIVE:
                return False
            self._chambers[chamber_id] = dataclasses.replace(
                chamber,
                status=ChamberStatus.DISSOLVED,
                updated_utc=now,
                dissolved_utc=now,
                dissolved_by_proposal_id=proposal_id,
            )
            return True

    # ------------------------------------------------------------------
    # CM awards
    # ------------------------------------------------------------------

    def insert_cm_award(self, award: CmAward) -> bool:
        with self._lock:
            if award.proposal_id in self._cm_awards:
                return False
            self._cm_awards[award.proposal_id] = award
            return True

    def get_cm_award(self, proposal_id: str) -> Optional[CmAward]:
        with self._lock:
            return self._cm_awards.get(proposal_id)

    def list_cm_awards(
        self,
        proposer_id: Optional[str] = None,
        chamber_id: Optional[str] = None,
    ) -> list[CmAward]:
        with self._lock:
            awards = list(self._cm_awards.values())
        if proposer_id is not None:
            awards = [a for a in awards if a.proposer_id == proposer_id]
        if chamber_id is not None:
            awards = [a for a in awards if a.chamber_id == chamber_id]
        return sorted(awards, key=lambda a: (a.created_utc, a.proposal_id))

    # ------------------------------------------------------------------
    # Formation
    # ------------------------------------------------------------------

    def insert_formation_project(self, project: FormationProject) -> bool:
        with self._lock:
            if project.proposal_id in self._projects:
                return False
            self._projects[project.proposal_id] = project
            return True

    def get_formation_project(
        self, proposal_id: str,
    ) -> Optional[FormationProject]:
        with self._lock:
            return self._projects.get(proposal_id)

    def add_formation_member(
        self,
        proposal_id: str,
        member_address: str,
        role: Optional[str],
        now: datetime,
    ) -> JoinOutcome:
        key = (proposal_id, member_address)
        with self._lock:
            if key in self._members:
                return JoinOutcome.ALREADY_MEMBER
            project = self._projects[proposal_id]
            if project.is_team_full:
                return JoinOutcome.TEAM_FULL
            self._members[key] = FormationMember(
                proposal_id=proposal_id,
                member_address=member_address,
                role=role,
                joined_utc=now,
            )
            self._projects[proposal_id] = dataclasses.replace(
                project, team_filled=project.team_filled + 1,
            )
            return JoinOutcome.JOINED

    def list_formation_members(self, proposal_id: str) -> list[FormationMember]:
        with self._lock:
            members = [
                m for (pid, _), m in self._members.items() if pid == proposal_id
            ]
        return sorted(members, key=lambda m: (m.joined_utc, m.member_address))

    def get_milestone_status(
        self, proposal_id: str, milestone_index: int,
    ) -> MilestoneStatus:
        with self._lock:
            return self._milestones.get(
                (proposal_id, milestone_index), MilestoneStatus.PENDING,
            )

    def submit_milestone(
        self, proposal_id: str, milestone_index: int, now: datetime,
    ) -> bool:
        key = (proposal_id, milestone_index)
        with self._lock:
            if self._milestones.get(key, MilestoneStatus.PENDING) is not MilestoneStatus.PENDING:
                return False
            self._milestones[key] = MilestoneStatus.SUBMITTED
            return True

    def unlock_milestone(
        self, proposal_id: str, milestone_index: int, now: datetime,
    ) -> bool:
        key = (proposal_id, milestone_index)
        with self._lock:
            if self._milestones.get(key) is not MilestoneStatus.SUBMITTED:
                return False
            self._milestones[key] = MilestoneStatus.UNLOCKED
            project = self._projects[proposal_id]
            self._projects[proposal_id] = dataclasses.replace(
                project,
                milestones_completed=min(
                    project.milestones_total, project.milestones_completed + 1,
                ),
            )
            return True

    # ------------------------------------------------------------------
    # Courts
    # ------------------------------------------------------------------

    def insert_court_case(self, case: CourtCase) -> bool:
        with self._lock:
            if case.case_id in self._cases:
                return False
            self._cases[case.case_id] = case
            return True

    def get_court_case(self, case_id: str) -> Optional[CourtCase]:
        with self._lock:
            return self._cases.get(case_id)

    def add_court_report(
        self, case_id: str, reporter_address: str, now: datetime,
    ) -> bool:
        key = (case_id, reporter_address)
        with self._lock:
            if key in self._reports:
                return False
            self._reports.add(key)
            return True

    def has_court_report(self, case_id: str, reporter_address: str) -> bool:
        with self._lock:
            return (case_id, reporter_address) in self._reports

    def count_court_reports(self, case_id: str) -> int:
        with self._lock:
            return sum(1 for cid, _ in self._reports if cid == case_id)

    def transition_court_case(
        self,
        case_id: str,
        from_status: CaseStatus,
        to_status: CaseStatus,
        now: datetime,
        outcome: Optional[Verdict] = None,
    ) -> bool:
        with self._lock:
            case = self._cases.get(case_id)
            if case is None or case.status != from_status:
                return False
            self._cases[case_id] = dataclasses.replace(
                case,
                status=to_status,
                updated_utc=now,
                outcome=outcome if outcome is not None else case.outcome,
            )
            return True

    def upsert_court_verdict(
        self, case_id: str, voter_address: str, verdict: Verdict, now: datetime,
    ) -> VerdictOutcome:
        key = (case_id, voter_address)
        with self._lock:
            case = self._cases.get(case_id)
            if case is None or case.status is not CaseStatus.LIVE:
                return VerdictOutcome.CASE_NOT_LIVE
            created = key not in self._verdicts
            self._verdicts[key] = verdict
            return VerdictOutcome.CREATED if created else VerdictOutcome.UPDATED

    def get_court_verdict(
        self, case_id: str, voter_address: str,
    ) -> Optional[Verdict]:
        with self._lock:
            return self._verdicts.get((case_id, voter_address))

    def court_verdict_tally(self, case_id: str) -> VerdictTally:
        with self._lock:
            verdicts = [v for (cid, _), v in self._verdicts.items() if cid == case_id]
        return VerdictTally(
            guilty=sum(1 for v in verdicts if v is Verdict.GUILTY),
            not_guilty=sum(1 for v in verdicts if v is Verdict.NOT_GUILTY),
        )

    # ------------------------------------------------------------------
    # Stage windows
    # ------------------------------------------------------------------

    def mark_stage_window_ended(
        self, proposal_id: str, stage: ProposalStage, ends_utc: datetime,
    ) -> bool:
        key = (proposal_id, stage.value, ends_utc)
        with self._lock:
            if key in self._ended_windows:
                return False
            self._ended_windows.add(key)
            return True

    # ------------------------------------------------------------------
    # Idempotency
    # ------------------------------------------------------------------

    def get_idempotency_record(self, key: str) -> Optional[IdempotencyRecord]:
        with self._lock:
            return self._idempotency.get(key)

    def put_idempotency_record(self, record: IdempotencyRecord) -> bool:
        with self._lock:
            if record.key in self._idempotency:
                return False
            self._idempotency[record.key] = record
            return True
