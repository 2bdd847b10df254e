"""Storage interface for all governance state.

Every primitive is atomic on its own. Writes that other components race
on are expressed as insert-if-absent (returning whether the row was
created) or compare-and-set (returning whether the transition applied),
so callers can count side effects exactly once without holding locks
across calls.
"""

from __future__ import annotations

import abc
from datetime import datetime
from typing import Optional

from vortex.models.award import CmAward
from vortex.models.chamber import Chamber
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
    ChamberCounts,
    ChamberVote,
    PoolCounts,
    PoolDirection,
    Proposal,
    ProposalStage,
)


class GovernanceStore(abc.ABC):
    """Abstract governance store. See MemoryStore and SqliteStore."""

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def insert_proposal(self, proposal: Proposal) -> bool:
        """Insert a proposal. Returns False if the id already exists."""

    @abc.abstractmethod
    def get_proposal(self, proposal_id: str) -> Optional[Proposal]: ...

    @abc.abstractmethod
    def list_proposals(
        self, stage: Optional[ProposalStage] = None,
    ) -> list[Proposal]: ...

    @abc.abstractmethod
    def transition_proposal_stage(
        self,
        proposal_id: str,
        from_stage: ProposalStage,
        to_stage: ProposalStage,
        now: datetime,
    ) -> bool:
        """Compare-and-set the stage; also resets the stage-start timestamp.

        Returns True only for the caller whose update applied.
        """

    # ------------------------------------------------------------------
    # Vote ledgers
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def upsert_pool_vote(
        self, proposal_id: str, voter_address: str, direction: PoolDirection,
    ) -> bool:
        """Last-write-wins pool vote. Returns True when a new row was created."""

    @abc.abstractmethod
    def get_pool_vote(
        self, proposal_id: str, voter_address: str,
    ) -> Optional[PoolDirection]: ...

    @abc.abstractmethod
    def pool_vote_counts(self, proposal_id: str) -> PoolCounts: ...

    @abc.abstractmethod
    def upsert_chamber_vote(self, vote: ChamberVote) -> bool:
        """Last-write-wins chamber vote. Returns True when a new row was created."""

    @abc.abstractmethod
    def get_chamber_vote(
        self, proposal_id: str, voter_address: str,
    ) -> Optional[ChamberVote]: ...

    @abc.abstractmethod
    def chamber_vote_counts(self, proposal_id: str) -> ChamberCounts: ...

    @abc.abstractmethod
    def chamber_yes_scores(self, proposal_id: str) -> list[int]:
        """Scores of current yes votes that carry one."""

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def get_clock_state(self) -> Optional[ClockSnapshot]: ...

    @abc.abstractmethod
    def ensure_clock_state(self, now: datetime) -> ClockSnapshot:
        """Insert era 0 at now if no clock row exists; returns the stored row."""

    @abc.abstractmethod
    def advance_clock_era(self, from_era: int, now: datetime) -> bool:
        """Compare-and-set from_era -> from_era + 1, stamping updated_utc."""

    # ------------------------------------------------------------------
    # Eras
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def get_era_snapshot(self, era: int) -> Optional[EraSnapshot]: ...

    @abc.abstractmethod
    def ensure_era_snapshot(
        self, era: int, active_governors: int, now: datetime,
    ) -> EraSnapshot:
        """Insert-if-absent; returns the stored snapshot either way."""

    @abc.abstractmethod
    def set_era_snapshot(
        self, era: int, active_governors: int, now: datetime,
    ) -> EraSnapshot:
        """Insert or overwrite the active-governor count for an era."""

    @abc.abstractmethod
    def increment_era_activity(
        self, era: int, address: str, delta: ActivityCounts,
    ) -> ActivityCounts:
        """Add delta to the address's counters; returns the new totals."""

    @abc.abstractmethod
    def get_era_activity(self, era: int, address: str) -> ActivityCounts: ...

    @abc.abstractmethod
    def list_era_activity(self, era: int) -> list[EraUserActivity]: ...

    @abc.abstractmethod
    def get_era_rollup(self, era: int) -> Optional[EraRollup]: ...

    @abc.abstractmethod
    def store_era_rollup(
        self, rollup: EraRollup, statuses: list[EraUserStatus],
    ) -> bool:
        """Write a rollup and its statuses together, insert-if-absent.

        Returns False (and writes nothing) when the era is already rolled.
        """

    @abc.abstractmethod
    def list_era_user_statuses(self, era: int) -> list[EraUserStatus]: ...

    @abc.abstractmethod
    def get_era_user_status(
        self, era: int, address: str,
    ) -> Optional[EraUserStatus]: ...

    # ------------------------------------------------------------------
    # Chambers
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def insert_chamber(self, chamber: Chamber) -> bool:
        """Insert-if-absent on chamber id. Dissolved chambers keep their row."""

    @abc.abstractmethod
    def get_chamber(self, chamber_id: str) -> Optional[Chamber]: ...

    @abc.abstractmethod
    def list_chambers(self, include_dissolved: bool = False) -> list[Chamber]:
        """Chambers ordered by title."""

    @abc.abstractmethod
    def dissolve_chamber(
        self, chamber_id: str, proposal_id: str, now: datetime,
    ) -> bool:
        """Compare-and-set active -> dissolved. Returns True only when applied."""

    # ------------------------------------------------------------------
    # CM awards
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def insert_cm_award(self, award: CmAward) -> bool:
        """Insert-if-absent on proposal id."""

    @abc.abstractmethod
    def get_cm_award(self, proposal_id: str) -> Optional[CmAward]: ...

    @abc.abstractmethod
    def list_cm_awards(
        self,
        proposer_id: Optional[str] = None,
        chamber_id: Optional[str] = None,
    ) -> list[CmAward]: ...

    # ------------------------------------------------------------------
    # Formation
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def insert_formation_project(self, project: FormationProject) -> bool:
        """Insert-if-absent on proposal id."""

    @abc.abstractmethod
    def get_formation_project(
        self, proposal_id: str,
    ) -> Optional[FormationProject]: ...

    @abc.abstractmethod
    def add_formation_member(
        self,
        proposal_id: str,
        member_address: str,
        role: Optional[str],
        now: datetime,
    ) -> JoinOutcome:
        """Add a member and bump team_filled atomically, respecting capacity."""

    @abc.abstractmethod
    def list_formation_members(self, proposal_id: str) -> list[FormationMember]: ...

    @abc.abstractmethod
    def get_milestone_status(
        self, proposal_id: str, milestone_index: int,
    ) -> MilestoneStatus:
        """Milestones without a stored row are pending."""

    @abc.abstractmethod
    def submit_milestone(
        self, proposal_id: str, milestone_index: int, now: datetime,
    ) -> bool:
        """pending → submitted. Returns True only when the transition applied."""

    @abc.abstractmethod
    def unlock_milestone(
        self, proposal_id: str, milestone_index: int, now: datetime,
    ) -> bool:
        """submitted → unlocked, bumping milestones_completed (capped)."""

    # ------------------------------------------------------------------
    # Courts
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def insert_court_case(self, case: CourtCase) -> bool: ...

    @abc.abstractmethod
    def get_court_case(self, case_id: str) -> Optional[CourtCase]: ...

    @abc.abstractmethod
    def add_court_report(
        self, case_id: str, reporter_address: str, now: datetime,
    ) -> bool:
        """Insert-if-absent on (case, reporter)."""

    @abc.abstractmethod
    def has_court_report(self, case_id: str, reporter_address: str) -> bool: ...

    @abc.abstractmethod
    def count_court_reports(self, case_id: str) -> int:
        """Distinct reporters, excluding the case's base reports."""

    @abc.abstractmethod
    def transition_court_case(
        self,
        case_id: str,
        from_status: CaseStatus,
        to_status: CaseStatus,
        now: datetime,
        outcome: Optional[Verdict] = None,
    ) -> bool:
        """Compare-and-set the case status."""

    @abc.abstractmethod
    def upsert_court_verdict(
        self, case_id: str, voter_address: str, verdict: Verdict, now: datetime,
    ) -> VerdictOutcome:
        """Last-write-wins verdict, applied only while the case is live.

        The status check and the write happen in one atomic step, so a
        verdict racing a resolution is rejected with CASE_NOT_LIVE.
        """

    @abc.abstractmethod
    def get_court_verdict(
        self, case_id: str, voter_address: str,
    ) -> Optional[Verdict]: ...

    @abc.abstractmethod
    def court_verdict_tally(self, case_id: str) -> VerdictTally: ...

    # ------------------------------------------------------------------
    # Stage windows
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def mark_stage_window_ended(
        self, proposal_id: str, stage: ProposalStage, ends_utc: datetime,
    ) -> bool:
        """Insert-if-absent on (proposal, stage, window end)."""

    # ------------------------------------------------------------------
    # Idempotency
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def get_idempotency_record(self, key: str) -> Optional[IdempotencyRecord]: ...

    @abc.abstractmethod
    def put_idempotency_record(self, record: IdempotencyRecord) -> bool:
        """Insert-if-absent on key."""

    def close(self) -> None:
        """Release resources. No-op for stores that hold none."""
