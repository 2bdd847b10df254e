"""Formation engine: team staffing and milestone unlocks for passed proposals.

Team joins are capped by the project's slot count. Milestones move
forward only (pending → submitted → unlocked); every move is a
conditional update at the store, so `changed` on a result is True only
for the caller whose write actually applied. The service uses that flag
to count era activity exactly once.

Stage checks (the proposal must be in BUILD) are the service's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from vortex.models.errors import ErrorCode
from vortex.models.formation import (
    FormationProject,
    JoinOutcome,
    MilestoneStatus,
)
from vortex.models.proposal import Proposal
from vortex.persistence.base import GovernanceStore


@dataclass(frozen=True)
class FormationResult:
    success: bool
    code: Optional[ErrorCode] = None
    errors: list[str] = field(default_factory=list)
    changed: bool = False
    project: Optional[FormationProject] = None
    milestone_status: Optional[MilestoneStatus] = None


def _fail(code: ErrorCode, message: str) -> FormationResult:
    return FormationResult(success=False, code=code, errors=[message])


class FormationEngine:

    def __init__(self, store: GovernanceStore) -> None:
        self._store = store

    def seed_project(self, proposal: Proposal, now: datetime) -> bool:
        """Create the formation project from the proposal payload if absent."""
        return self._store.insert_formation_project(FormationProject(
            proposal_id=proposal.proposal_id,
            team_slots_total=max(0, proposal.payload.team_slots_total),
            team_filled=0,
            milestones_total=max(0, proposal.payload.milestones_total),
            milestones_completed=0,
            created_utc=now,
        ))

    def _project_or_error(
        self, proposal_id: str,
    ) -> tuple[Optional[FormationProject], Optional[FormationResult]]:
        project = self._store.get_formation_project(proposal_id)
        if project is None:
            return None, _fail(
                ErrorCode.FORMATION_MISSING,
                f"No formation project for proposal: {proposal_id}",
            )
        return project, None

    @staticmethod
    def check_index(
        project: FormationProject, milestone_index: int,
    ) -> Optional[FormationResult]:
        if not 1 <= milestone_index <= project.milestones_total:
            return _fail(
                ErrorCode.MILESTONE_OUT_OF_RANGE,
                f"Milestone {milestone_index} out of range "
                f"1..{project.milestones_total}",
            )
        return None

    # ------------------------------------------------------------------
    # Would-count checks (run before quota enforcement)
    # ------------------------------------------------------------------

    def is_member(self, proposal_id: str, address: str) -> bool:
        return any(
            m.member_address == address
            for m in self._store.list_formation_members(proposal_id)
        )

    def join_would_count(self, proposal_id: str, address: str) -> bool:
        return not self.is_member(proposal_id, address)

    def submit_would_count(self, proposal_id: str, milestone_index: int) -> bool:
        status = self._store.get_milestone_status(proposal_id, milestone_index)
        return status is MilestoneStatus.PENDING

    def unlock_would_count(self, proposal_id: str, milestone_index: int) -> bool:
        status = self._store.get_milestone_status(proposal_id, milestone_index)
        return status is MilestoneStatus.SUBMITTED

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def join(
        self,
        proposal_id: str,
        address: str,
        role: Optional[str],
        now: datetime,
    ) -> FormationResult:
        project, error = self._project_or_error(proposal_id)
        if error:
            return error

        outcome = self._store.add_formation_member(proposal_id, address, role, now)
        if outcome is JoinOutcome.TEAM_FULL:
            return _fail(
                ErrorCode.TEAM_FULL,
                f"Team is full ({project.team_slots_total} slots)",
            )
        return FormationResult(
            success=True,
            changed=outcome is JoinOutcome.JOINED,
            project=self._store.get_formation_project(proposal_id),
        )

    def submit_milestone(
        self, proposal_id: str, milestone_index: int, now: datetime,
    ) -> FormationResult:
        project, error = self._project_or_error(proposal_id)
        if error:
            return error
        error = self.check_index(project, milestone_index)
        if error:
            return error

        status = self._store.get_milestone_status(proposal_id, milestone_index)
        if status is MilestoneStatus.UNLOCKED:
            return _fail(
                ErrorCode.MILESTONE_ALREADY_UNLOCKED,
                f"Milestone {milestone_index} is already unlocked",
            )
        changed = False
        if status is MilestoneStatus.PENDING:
            changed = self._store.submit_milestone(proposal_id, milestone_index, now)
        return FormationResult(
            success=True,
            changed=changed,
            project=project,
            milestone_status=self._store.get_milestone_status(
                proposal_id, milestone_index,
            ),
        )

    def request_unlock(
        self, proposal_id: str, milestone_index: int, now: datetime,
    ) -> FormationResult:
        project, error = self._project_or_error(proposal_id)
        if error:
            return error
        error = self.check_index(project, milestone_index)
        if error:
            return error

        status = self._store.get_milestone_status(proposal_id, milestone_index)
        if status is MilestoneStatus.UNLOCKED:
            return _fail(
                ErrorCode.MILESTONE_ALREADY_UNLOCKED,
                f"Milestone {milestone_index} is already unlocked",
            )
        if status is not MilestoneStatus.SUBMITTED:
            return _fail(
                ErrorCode.MILESTONE_NOT_SUBMITTED,
                f"Milestone {milestone_index} has not been submitted",
            )
        if not self._store.unlock_milestone(proposal_id, milestone_index, now):
            return _fail(
                ErrorCode.MILESTONE_ALREADY_UNLOCKED,
                f"Milestone {milestone_index} is already unlocked",
            )
        return FormationResult(
            success=True,
            changed=True,
            project=self._store.get_formation_project(proposal_id),
            milestone_status=MilestoneStatus.UNLOCKED,
        )
