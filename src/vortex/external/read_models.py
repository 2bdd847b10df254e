"""Read-model cache: denormalized proposal views for list/detail pages.

Best effort only. The service patches entries after a write commits;
nothing in the write path ever reads from here.
"""

from __future__ import annotations

import threading
from typing import Any, Optional

from vortex.models.formation import FormationProject
from vortex.models.proposal import ChamberCounts, PoolCounts, Proposal


def project_proposal(
    proposal: Proposal,
    pool: Optional[PoolCounts] = None,
    chamber: Optional[ChamberCounts] = None,
    formation: Optional[FormationProject] = None,
) -> dict[str, Any]:
    """Build the read-model view of a proposal."""
    view: dict[str, Any] = {
        "id": proposal.proposal_id,
        "title": proposal.title,
        "summary": proposal.summary,
        "chamber_id": proposal.chamber_id,
        "author": proposal.author_address,
        "stage": proposal.stage.value,
        "stage_started_utc": proposal.updated_utc.isoformat(),
    }
    if pool is not None:
        view["pool"] = {"upvotes": pool.upvotes, "downvotes": pool.downvotes}
    if chamber is not None:
        view["chamber"] = {
            "yes": chamber.yes, "no": chamber.no, "abstain": chamber.abstain,
        }
    if formation is not None:
        view["formation"] = {
            "team_filled": formation.team_filled,
            "team_slots_total": formation.team_slots_total,
            "milestones_completed": formation.milestones_completed,
            "milestones_total": formation.milestones_total,
        }
    return view


class ReadModelCache:

    def __init__(self) -> None:
        self._views: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def put(self, proposal_id: str, view: dict[str, Any]) -> None:
        with self._lock:
            self._views[proposal_id] = view

    def get(self, proposal_id: str) -> Optional[dict[str, Any]]:
        with self._lock:
            view = self._views.get(proposal_id)
        return dict(view) if view is not None else None
