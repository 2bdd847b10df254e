"""Durable governance store on SQLite.

A single connection in autocommit mode is shared behind a re-entrant
lock; every write primitive runs in its own BEGIN IMMEDIATE transaction
so check-then-write sequences (created flags, compare-and-set, capped
increments) are atomic. The schema is created on open.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

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
    GoverningStatus,
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
    ProposalPayload,
    ProposalStage,
)
from vortex.persistence.base import GovernanceStore

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS proposals (
    proposal_id TEXT PRIMARY KEY,
    author_address TEXT NOT NULL,
    chamber_id TEXT NOT NULL,
    title TEXT NOT NULL,
    summary TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    stage TEXT NOT NULL,
    created_utc TEXT NOT NULL,
    updated_utc TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS pool_votes (
    proposal_id TEXT NOT NULL,
    voter_address TEXT NOT NULL,
    direction INTEGER NOT NULL,
    PRIMARY KEY (proposal_id, voter_address)
);
CREATE TABLE IF NOT EXISTS chamber_votes (
    proposal_id TEXT NOT NULL,
    voter_address TEXT NOT NULL,
    choice TEXT NOT NULL,
    score INTEGER,
    PRIMARY KEY (proposal_id, voter_address)
);
CREATE TABLE IF NOT EXISTS clock_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    current_era INTEGER NOT NULL,
    updated_utc TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS chambers (
    chamber_id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    status TEXT NOT NULL,
    multiplier_times10 INTEGER NOT NULL,
    created_by_proposal_id TEXT,
    dissolved_by_proposal_id TEXT,
    created_utc TEXT,
    updated_utc TEXT,
    dissolved_utc TEXT
);
CREATE TABLE IF NOT EXISTS era_snapshots (
    era INTEGER PRIMARY KEY,
    active_governors INTEGER NOT NULL,
    created_utc TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS era_user_activity (
    era INTEGER NOT NULL,
    address TEXT NOT NULL,
    pool_votes INTEGER NOT NULL DEFAULT 0,
    chamber_votes INTEGER NOT NULL DEFAULT 0,
    court_actions INTEGER NOT NULL DEFAULT 0,
    formation_actions INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (era, address)
);
CREATE TABLE IF NOT EXISTS era_rollups (
    era INTEGER PRIMARY KEY,
    req_pool_votes INTEGER NOT NULL,
    req_chamber_votes INTEGER NOT NULL,
    req_court_actions INTEGER NOT NULL,
    req_formation_actions INTEGER NOT NULL,
    required_total INTEGER NOT NULL,
    active_governors_next_era INTEGER NOT NULL,
    rolled_utc TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS era_user_statuses (
    era INTEGER NOT NULL,
    address TEXT NOT NULL,
    status TEXT NOT NULL,
    required_total INTEGER NOT NULL,
    completed_total INTEGER NOT NULL,
    is_active_next_era INTEGER NOT NULL,
    pool_votes INTEGER NOT NULL,
    chamber_votes INTEGER NOT NULL,
    court_actions INTEGER NOT NULL,
    formation_actions INTEGER NOT NULL,
    PRIMARY KEY (era, address)
);
CREATE TABLE IF NOT EXISTS cm_awards (
    proposal_id TEXT PRIMARY KEY,
    proposer_id TEXT NOT NULL,
    chamber_id TEXT NOT NULL,
    avg_score INTEGER,
    lcm_points INTEGER NOT NULL,
    chamber_multiplier_times10 INTEGER NOT NULL,
    mcm_points INTEGER NOT NULL,
    created_utc TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS formation_projects (
    proposal_id TEXT PRIMARY KEY,
    team_slots_total INTEGER NOT NULL,
    team_filled INTEGER NOT NULL,
    milestones_total INTEGER NOT NULL,
    milestones_completed INTEGER NOT NULL,
    created_utc TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS formation_members (
    proposal_id TEXT NOT NULL,
    member_address TEXT NOT NULL,
    role TEXT,
    joined_utc TEXT NOT NULL,
    PRIMARY KEY (proposal_id, member_address)
);
CREATE TABLE IF NOT EXISTS formation_milestones (
    proposal_id TEXT NOT NULL,
    milestone_index INTEGER NOT NULL,
    status TEXT NOT NULL,
    updated_utc TEXT NOT NULL,
    PRIMARY KEY (proposal_id, milestone_index)
);
CREATE TABLE IF NOT EXISTS court_cases (
    case_id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    status TEXT NOT NULL,
    base_reports INTEGER NOT NULL,
    outcome TEXT,
    created_utc TEXT NOT NULL,
    updated_utc TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS court_reports (
    case_id TEXT NOT NULL,
    reporter_address TEXT NOT NULL,
    created_utc TEXT NOT NULL,
    PRIMARY KEY (case_id, reporter_address)
);
CREATE TABLE IF NOT EXISTS court_verdicts (
    case_id TEXT NOT NULL,
    voter_address TEXT NOT NULL,
    verdict TEXT NOT NULL,
    updated_utc TEXT NOT NULL,
    PRIMARY KEY (case_id, voter_address)
);
CREATE TABLE IF NOT EXISTS stage_window_ends (
    proposal_id TEXT NOT NULL,
    stage TEXT NOT NULL,
    ends_utc TEXT NOT NULL,
    PRIMARY KEY (proposal_id, stage, ends_utc)
);
CREATE TABLE IF NOT EXISTS idempotency_keys (
    key TEXT PRIMARY KEY,
    address TEXT NOT NULL,
    fingerprint TEXT NOT NULL,
    status INTEGER NOT NULL,
    response_json TEXT NOT NULL,
    created_utc TEXT NOT NULL
);
"""


def _ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _parse_ts(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _counts(row: sqlite3.Row, prefix: str = "") -> ActivityCounts:
    return ActivityCounts(
        pool_votes=row[f"{prefix}pool_votes"],
        chamber_votes=row[f"{prefix}chamber_votes"],
        court_actions=row[f"{prefix}court_actions"],
        formation_actions=row[f"{prefix}formation_actions"],
    )


class SqliteStore(GovernanceStore):
    """SQLite-backed store. Pass ":memory:" for a throwaway database."""

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(
            self.db_path,
            isolation_level=None,
            check_same_thread=False,
            timeout=30.0,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        with self._lock:
            self._conn.executescript(_SCHEMA)
        logger.info("sqlite store opened at %s", self.db_path)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def _fetchone(self, sql: str, params: tuple[Any, ...]) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    @staticmethod
    def _proposal(row: sqlite3.Row) -> Proposal:
        return Proposal(
            proposal_id=row["proposal_id"],
            author_address=row["author_address"],
            chamber_id=row["chamber_id"],
            title=row["title"],
            summary=row["summary"],
            payload=ProposalPayload.from_dict(json.loads(row["payload_json"])),
            stage=ProposalStage(row["stage"]),
            created_utc=_parse_ts(row["created_utc"]),
            updated_utc=_parse_ts(row["updated_utc"]),
        )

    def insert_proposal(self, proposal: Proposal) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO proposals (
                    proposal_id, author_address, chamber_id, title, summary,
                    payload_json, stage, created_utc, updated_utc
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    proposal.proposal_id,
                    proposal.author_address,
                    proposal.chamber_id,
                    proposal.title,
                    proposal.summary,
                    json.dumps(proposal.payload.to_dict(), sort_keys=True),
                    proposal.stage.value,
                    _ts(proposal.created_utc),
                    _ts(proposal.updated_utc),
                ),
            )
            return cur.rowcount > 0

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        row = self._fetchone(
            "SELECT * FROM proposals WHERE proposal_id = ?", (proposal_id,),
        )
        return self._proposal(row) if row else None

    def list_proposals(
        self, stage: Optional[ProposalStage] = None,
    ) -> list[Proposal]:
        if stage is None:
            rows = self._fetchall(
                "SELECT * FROM proposals ORDER BY created_utc, proposal_id",
            )
        else:
            rows = self._fetchall(
                "SELECT * FROM proposals WHERE stage = ? "
                "ORDER BY created_utc, proposal_id",
                (stage.value,),
            )
        return [self._proposal(r) for r in rows]

    def transition_proposal_stage(
        self,
        proposal_id: str,
        from_stage: ProposalStage,
        to_stage: ProposalStage,
        now: datetime,
    ) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE proposals SET stage = ?, updated_utc = ? "
                "WHERE proposal_id = ? AND stage = ?",
                (to_stage.value, _ts(now), proposal_id, from_stage.value),
            )
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Vote ledgers
    # ------------------------------------------------------------------

    def upsert_pool_vote(
        self, proposal_id: str, voter_address: str, direction: PoolDirection,
    ) -> bool:
        with self._transaction() as conn:
            existing = conn.execute(
                "SELECT 1 FROM pool_votes WHERE proposal_id = ? AND voter_address = ?",
                (proposal_id, voter_address),
            ).fetchone()
            conn.execute(
                """
                INSERT INTO pool_votes (proposal_id, voter_address, direction)
                VALUES (?, ?, ?)
                ON CONFLICT(proposal_id, voter_address)
                DO UPDATE SET direction = excluded.direction
                """,
                (proposal_id, voter_address, int(direction)),
            )
            return existing is None

    def get_pool_vote(
        self, proposal_id: str, voter_address: str,
    ) -> Optional[PoolDirection]:
        row = self._fetchone(
            "SELECT direction FROM pool_votes "
            "WHERE proposal_id = ? AND voter_address = ?",
            (proposal_id, voter_address),
        )
        return PoolDirection(row["direction"]) if row else None

    def pool_vote_counts(self, proposal_id: str) -> PoolCounts:
        row = self._fetchone(
            """
            SELECT
                COALESCE(SUM(CASE WHEN direction = 1 THEN 1 ELSE 0 END), 0) AS up,
                COALESCE(SUM(CASE WHEN direction = -1 THEN 1 ELSE 0 END), 0) AS down
            FROM pool_votes WHERE proposal_id = ?
            """,
            (proposal_id,),
        )
        return PoolCounts(upvotes=row["up"], downvotes=row["down"])

    def upsert_chamber_vote(self, vote: ChamberVote) -> bool:
        with self._transaction() as conn:
            existing = conn.execute(
                "SELECT 1 FROM chamber_votes WHERE proposal_id = ? AND voter_address = ?",
                (vote.proposal_id, vote.voter_address),
            ).fetchone()
            conn.execute(
                """
                INSERT INTO chamber_votes (proposal_id, voter_address, choice, score)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(proposal_id, voter_address)
                DO UPDATE SET choice = excluded.choice, score = excluded.score
                """,
                (vote.proposal_id, vote.voter_address, vote.choice.value, vote.score),
            )
            return existing is None

    def get_chamber_vote(
        self, proposal_id: str, voter_address: str,
    ) -> Optional[ChamberVote]:
        row = self._fetchone(
            "SELECT * FROM chamber_votes WHERE proposal_id = ? AND voter_address = ?",
            (proposal_id, voter_address),
        )
        if row is None:
            return None
        return ChamberVote(
            proposal_id=row["proposal_id"],
            voter_address=row["voter_address"],
            choice=ChamberChoice(row["choice"]),
            score=row["score"],
        )

    def chamber_vote_counts(self, proposal_id: str) -> ChamberCounts:
        rows = self._fetchall(
            "SELECT choice, COUNT(*) AS n FROM chamber_votes "
            "WHERE proposal_id = ? GROUP BY choice",
            (proposal_id,),
        )
        by_choice = {r["choice"]: r["n"] for r in rows}
        return ChamberCounts(
            yes=by_choice.get(ChamberChoice.YES.value, 0),
            no=by_choice.get(ChamberChoice.NO.value, 0),
            abstain=by_choice.get(ChamberChoice.ABSTAIN.value, 0),
        )

    def chamber_yes_scores(self, proposal_id: str) -> list[int]:
        rows = self._fetchall(
            "SELECT score FROM chamber_votes "
            "WHERE proposal_id = ? AND choice = ? AND score IS NOT NULL",
            (proposal_id, ChamberChoice.YES.value),
        )
        return [r["score"] for r in rows]

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    @staticmethod
    def _clock(row: sqlite3.Row) -> ClockSnapshot:
        return ClockSnapshot(
            current_era=row["current_era"],
            updated_utc=_parse_ts(row["updated_utc"]),
        )

    def get_clock_state(self) -> Optional[ClockSnapshot]:
        row = self._fetchone("SELECT * FROM clock_state WHERE id = 1", ())
        return self._clock(row) if row else None

    def ensure_clock_state(self, now: datetime) -> ClockSnapshot:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO clock_state (id, current_era, updated_utc) "
                "VALUES (1, 0, ?)",
                (_ts(now),),
            )
            row = conn.execute("SELECT * FROM clock_state WHERE id = 1").fetchone()
            return self._clock(row)

    def advance_clock_era(self, from_era: int, now: datetime) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE clock_state SET current_era = current_era + 1, updated_utc = ? "
                "WHERE id = 1 AND current_era = ?",
                (_ts(now), from_era),
            )
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Eras
    # ------------------------------------------------------------------

    @staticmethod
    def _snapshot(row: sqlite3.Row) -> EraSnapshot:
        return EraSnapshot(
            era=row["era"],
            active_governors=row["active_governors"],
            created_utc=_parse_ts(row["created_utc"]),
        )

    def get_era_snapshot(self, era: int) -> Optional[EraSnapshot]:
        row = self._fetchone("SELECT * FROM era_snapshots WHERE era = ?", (era,))
        return self._snapshot(row) if row else None

    def ensure_era_snapshot(
        self, era: int, active_governors: int, now: datetime,
    ) -> EraSnapshot:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO era_snapshots (era, active_governors, created_utc) "
                "VALUES (?, ?, ?)",
                (era, active_governors, _ts(now)),
            )
            row = conn.execute(
                "SELECT * FROM era_snapshots WHERE era = ?", (era,),
            ).fetchone()
            return self._snapshot(row)

    def set_era_snapshot(
        self, era: int, active_governors: int, now: datetime,
    ) -> EraSnapshot:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO era_snapshots (era, active_governors, created_utc)
                VALUES (?, ?, ?)
                ON CONFLICT(era) DO UPDATE SET active_governors = excluded.active_governors
                """,
                (era, active_governors, _ts(now)),
            )
            row = conn.execute(
                "SELECT * FROM era_snapshots WHERE era = ?", (era,),
            ).fetchone()
            return self._snapshot(row)

    def increment_era_activity(
        self, era: int, address: str, delta: ActivityCounts,
    ) -> ActivityCounts:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO era_user_activity (
                    era, address, pool_votes, chamber_votes,
                    court_actions, formation_actions
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(era, address) DO UPDATE SET
                    pool_votes = pool_votes + excluded.pool_votes,
                    chamber_votes = chamber_votes + excluded.chamber_votes,
                    court_actions = court_actions + excluded.court_actions,
                    formation_actions = formation_actions + excluded.formation_actions
                """,
                (
                    era,
                    address,
                    delta.pool_votes,
                    delta.chamber_votes,
                    delta.court_actions,
                    delta.formation_actions,
                ),
            )
            row = conn.execute(
                "SELECT * FROM era_user_activity WHERE era = ? AND address = ?",
                (era, address),
            ).fetchone()
            return _counts(row)

    def get_era_activity(self, era: int, address: str) -> ActivityCounts:
        row = self._fetchone(
            "SELECT * FROM era_user_activity WHERE era = ? AND address = ?",
            (era, address),
        )
        return _counts(row) if row else ActivityCounts()

    def list_era_activity(self, era: int) -> list[EraUserActivity]:
        rows = self._fetchall(
            "SELECT * FROM era_user_activity WHERE era = ? ORDER BY address",
            (era,),
        )
        return [
            EraUserActivity(era=r["era"], address=r["address"], counts=_counts(r))
            for r in rows
        ]

    def get_era_rollup(self, era: int) -> Optional[EraRollup]:
        row = self._fetchone("SELECT * FROM era_rollups WHERE era = ?", (era,))
        if row is None:
            return None
        return EraRollup(
            era=row["era"],
            requirements=_counts(row, prefix="req_"),
            required_total=row["required_total"],
            active_governors_next_era=row["active_governors_next_era"],
            rolled_utc=_parse_ts(row["rolled_utc"]),
        )

    def store_era_rollup(
        self, rollup: EraRollup, statuses: list[EraUserStatus],
    ) -> bool:
        req = rollup.requirements
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO era_rollups (
                    era, req_pool_votes, req_chamber_votes, req_court_actions,
                    req_formation_actions, required_total,
                    active_governors_next_era, rolled_utc
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rollup.era,
                    req.pool_votes,
                    req.chamber_votes,
                    req.court_actions,
                    req.formation_actions,
                    rollup.required_total,
                    rollup.active_governors_next_era,
                    _ts(rollup.rolled_utc),
                ),
            )
            if cur.rowcount == 0:
                return False
            conn.executemany(
                """
                INSERT OR IGNORE INTO era_user_statuses (
                    era, address, status, required_total, completed_total,
                    is_active_next_era, pool_votes, chamber_votes,
                    court_actions, formation_actions
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        s.era,
                        s.address,
                        s.status.value,
                        s.required_total,
                        s.completed_total,
                        int(s.is_active_next_era),
                        s.counts.pool_votes,
                        s.counts.chamber_votes,
                        s.counts.court_actions,
                        s.counts.formation_actions,
                    )
                    for s in statuses
                ],
            )
            return True

    @staticmethod
    def _status(row: sqlite3.Row) -> EraUserStatus:
        return EraUserStatus(
            era=row["era"],
            address=row["address"],
            status=GoverningStatus(row["status"]),
            required_total=row["required_total"],
            completed_total=row["completed_total"],
            is_active_next_era=bool(row["is_active_next_era"]),
            counts=_counts(row),
        )

    def list_era_user_statuses(self, era: int) -> list[EraUserStatus]:
        rows = self._fetchall(
            "SELECT * FROM era_user_statuses WHERE era = ? ORDER BY address",
            (era,),
        )
        return [self._status(r) for r in rows]

    def get_era_user_status(
        self, era: int, address: str,
    ) -> Optional[EraUserStatus]:
        row = self._fetchone(
            "SELECT * FROM era_user_statuses WHERE era = ? AND address = ?",
            (era, address),
        )
        return self._status(row) if row else None

    # ------------------------------------------------------------------
    # Chambers
    # ------------------------------------------------------------------

    @staticmethod
    def _chamber(row: sqlite3.Row) -> Chamber:
        def ts(key: str) -> Optional[datetime]:
            return _parse_ts(row[key]) if row[key] else None

        return Chamber(
            chamber_id=row["chamber_id"],
            title=row["title"],
            multiplier_times10=row["multiplier_times10"],
            status=ChamberStatus(row["status"]),
            created_utc=ts("created_utc"),
            updated_utc=ts("updated_utc"),
            created_by_proposal_id=row["created_by_proposal_id"],
            dissolved_by_proposal_id=row["dissolved_by_proposal_id"],
            dissolved_utc=ts("dissolved_utc"),
        )

    def insert_chamber(self, chamber: Chamber) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO chambers (
                    chamber_id, title, status, multiplier_times10,
                    created_by_proposal_id, dissolved_by_proposal_id,
                    created_utc, updated_utc, dissolved_utc
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    chamber.chamber_id,
                    chamber.title,
                    chamber.status.value,
                    chamber.multiplier_times10,
                    chamber.created_by_proposal_id,
                    chamber.dissolved_by_proposal_id,
                    _ts(chamber.created_utc) if chamber.created_utc else None,
                    _ts(chamber.updated_utc) if chamber.updated_utc else None,
                    _ts(chamber.dissolved_utc) if chamber.dissolved_utc else None,
                ),
            )
            return cur.rowcount > 0

    def get_chamber(self, chamber_id: str) -> Optional[Chamber]:
        row = self._fetchone(
            "SELECT * FROM chambers WHERE chamber_id = ?", (chamber_id,),
        )
        return self._chamber(row) if row else None

    def list_chambers(self, include_dissolved: bool = False) -> list[Chamber]:
        if include_dissolved:
            rows = self._fetchall("SELECT * FROM chambers ORDER BY title, chamber_id")
        else:
            rows = self._fetchall(
                "SELECT * FROM chambers WHERE status = ? ORDER BY title, chamber_id",
                (ChamberStatus.ACTIVE.value,),
            )
        return [self._chamber(r) for r in rows]

    def dissolve_chamber(
        self, chamber_id: str, proposal_id: str, now: datetime,
    ) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE chambers SET status = ?, dissolved_utc = ?, updated_utc = ?, "
                "dissolved_by_proposal_id = ? WHERE chamber_id = ? AND status = ?",
                (
                    ChamberStatus.DISSOLVED.value,
                    _ts(now),
                    _ts(now),
                    proposal_id,
                    chamber_id,
                    ChamberStatus.ACTIVE.value,
                ),
            )
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # CM awards
    # ------------------------------------------------------------------

    @staticmethod
    def _award(row: sqlite3.Row) -> CmAward:
        return CmAward(
            proposal_id=row["proposal_id"],
            proposer_id=row["proposer_id"],
            chamber_id=row["chamber_id"],
            avg_score=row["avg_score"],
            lcm_points=row["lcm_points"],
            chamber_multiplier_times10=row["chamber_multiplier_times10"],
            mcm_points=row["mcm_points"],
            created_utc=_parse_ts(row["created_utc"]),
        )

    def insert_cm_award(self, award: CmAward) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO cm_awards (
                    proposal_id, proposer_id, chamber_id, avg_score, lcm_points,
                    chamber_multiplier_times10, mcm_points, created_utc
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    award.proposal_id,
                    award.proposer_id,
                    award.chamber_id,
                    award.avg_score,
                    award.lcm_points,
                    award.chamber_multiplier_times10,
                    award.mcm_points,
                    _ts(award.created_utc),
                ),
            )
            return cur.rowcount > 0

    def get_cm_award(self, proposal_id: str) -> Optional[CmAward]:
        row = self._fetchone(
            "SELECT * FROM cm_awards WHERE proposal_id = ?", (proposal_id,),
        )
        return self._award(row) if row else None

    def list_cm_awards(
        self,
        proposer_id: Optional[str] = None,
        chamber_id: Optional[str] = None,
    ) -> list[CmAward]:
        clauses: list[str] = []
        params: list[Any] = []
        if proposer_id is not None:
            clauses.append("proposer_id = ?")
            params.append(proposer_id)
        if chamber_id is not None:
            clauses.append("chamber_id = ?")
            params.append(chamber_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetchall(
            f"SELECT * FROM cm_awards {where} ORDER BY created_utc, proposal_id",
            tuple(params),
        )
        return [self._award(r) for r in rows]

    # ------------------------------------------------------------------
    # Formation
    # ------------------------------------------------------------------

    @staticmethod
    def _project(row: sqlite3.Row) -> FormationProject:
        return FormationProject(
            proposal_id=row["proposal_id"],
            team_slots_total=row["team_slots_total"],
            team_filled=row["team_filled"],
            milestones_total=row["milestones_total"],
            milestones_completed=row["milestones_completed"],
            created_utc=_parse_ts(row["created_utc"]),
        )

    def insert_formation_project(self, project: FormationProject) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO formation_projects (
                    proposal_id, team_slots_total, team_filled,
                    milestones_total, milestones_completed, created_utc
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    project.proposal_id,
                    project.team_slots_total,
                    project.team_filled,
                    project.milestones_total,
                    project.milestones_completed,
                    _ts(project.created_utc),
                ),
            )
            return cur.rowcount > 0

    def get_formation_project(
        self, proposal_id: str,
    ) -> Optional[FormationProject]:
        row = self._fetchone(
            "SELECT * FROM formation_projects WHERE proposal_id = ?", (proposal_id,),
        )
        return self._project(row) if row else None

    def add_formation_member(
        self,
        proposal_id: str,
        member_address: str,
        role: Optional[str],
        now: datetime,
    ) -> JoinOutcome:
        with self._transaction() as conn:
            existing = conn.execute(
                "SELECT 1 FROM formation_members "
                "WHERE proposal_id = ? AND member_address = ?",
                (proposal_id, member_address),
            ).fetchone()
            if existing is not None:
                return JoinOutcome.ALREADY_MEMBER
            cur = conn.execute(
                "UPDATE formation_projects SET team_filled = team_filled + 1 "
                "WHERE proposal_id = ? AND team_filled < team_slots_total",
                (proposal_id,),
            )
            if cur.rowcount == 0:
                return JoinOutcome.TEAM_FULL
            conn.execute(
                "INSERT INTO formation_members "
                "(proposal_id, member_address, role, joined_utc) VALUES (?, ?, ?, ?)",
                (proposal_id, member_address, role, _ts(now)),
            )
            return JoinOutcome.JOINED

    def list_formation_members(self, proposal_id: str) -> list[FormationMember]:
        rows = self._fetchall(
            "SELECT * FROM formation_members WHERE proposal_id = ? "
            "ORDER BY joined_utc, member_address",
            (proposal_id,),
        )
        return [
            FormationMember(
                proposal_id=r["proposal_id"],
                member_address=r["member_address"],
                role=r["role"],
                joined_utc=_parse_ts(r["joined_utc"]),
            )
            for r in rows
        ]

    def get_milestone_status(
        self, proposal_id: str, milestone_index: int,
    ) -> MilestoneStatus:
        row = self._fetchone(
            "SELECT status FROM formation_milestones "
            "WHERE proposal_id = ? AND milestone_index = ?",
            (proposal_id, milestone_index),
        )
        return MilestoneStatus(row["status"]) if row else MilestoneStatus.PENDING

    def submit_milestone(
        self, proposal_id: str, milestone_index: int, now: datetime,
    ) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO formation_milestones (
                    proposal_id, milestone_index, status, updated_utc
                ) VALUES (?, ?, ?, ?)
                ON CONFLICT(proposal_id, milestone_index) DO UPDATE SET
                    status = excluded.status, updated_utc = excluded.updated_utc
                WHERE formation_milestones.status = ?
                """,
                (
                    proposal_id,
                    milestone_index,
                    MilestoneStatus.SUBMITTED.value,
                    _ts(now),
                    MilestoneStatus.PENDING.value,
                ),
            )
            return cur.rowcount > 0

    def unlock_milestone(
        self, proposal_id: str, milestone_index: int, now: datetime,
    ) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE formation_milestones SET status = ?, updated_utc = ? "
                "WHERE proposal_id = ? AND milestone_index = ? AND status = ?",
                (
                    MilestoneStatus.UNLOCKED.value,
                    _ts(now),
                    proposal_id,
                    milestone_index,
                    MilestoneStatus.SUBMITTED.value,
                ),
            )
            if cur.rowcount == 0:
                return False
            conn.execute(
                "UPDATE formation_projects "
                "SET milestones_completed = MIN(milestones_total, milestones_completed + 1) "
                "WHERE proposal_id = ?",
                (proposal_id,),
            )
            return True

    # ------------------------------------------------------------------
    # Courts
    # ------------------------------------------------------------------

    @staticmethod
    def _case(row: sqlite3.Row) -> CourtCase:
        return CourtCase(
            case_id=row["case_id"],
            title=row["title"],
            status=CaseStatus(row["status"]),
            base_reports=row["base_reports"],
            created_utc=_parse_ts(row["created_utc"]),
            updated_utc=_parse_ts(row["updated_utc"]),
            outcome=Verdict(row["outcome"]) if row["outcome"] else None,
        )

    def insert_court_case(self, case: CourtCase) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO court_cases (
                    case_id, title, status, base_reports, outcome,
                    created_utc, updated_utc
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    case.case_id,
                    case.title,
                    case.status.value,
                    case.base_reports,
                    case.outcome.value if case.outcome else None,
                    _ts(case.created_utc),
                    _ts(case.updated_utc),
                ),
            )
            return cur.rowcount > 0

    def get_court_case(self, case_id: str) -> Optional[CourtCase]:
        row = self._fetchone("SELECT * FROM court_cases WHERE case_id = ?", (case_id,))
        return self._case(row) if row else None

    def add_court_report(
        self, case_id: str, reporter_address: str, now: datetime,
    ) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO court_reports "
                "(case_id, reporter_address, created_utc) VALUES (?, ?, ?)",
                (case_id, reporter_address, _ts(now)),
            )
            return cur.rowcount > 0

    def has_court_report(self, case_id: str, reporter_address: str) -> bool:
        row = self._fetchone(
            "SELECT 1 FROM court_reports WHERE case_id = ? AND reporter_address = ?",
            (case_id, reporter_address),
        )
        return row is not None

    def count_court_reports(self, case_id: str) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) AS n FROM court_reports WHERE case_id = ?", (case_id,),
        )
        return row["n"]

    def transition_court_case(
        self,
        case_id: str,
        from_status: CaseStatus,
        to_status: CaseStatus,
        now: datetime,
        outcome: Optional[Verdict] = None,
    ) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE court_cases SET status = ?, updated_utc = ?, "
                "outcome = COALESCE(?, outcome) "
                "WHERE case_id = ? AND status = ?",
                (
                    to_status.value,
                    _ts(now),
                    outcome.value if outcome else None,
                    case_id,
                    from_status.value,
                ),
            )
            return cur.rowcount > 0

    def upsert_court_verdict(
        self, case_id: str, voter_address: str, verdict: Verdict, now: datetime,
    ) -> VerdictOutcome:
        with self._transaction() as conn:
            case = conn.execute(
                "SELECT status FROM court_cases WHERE case_id = ?", (case_id,),
            ).fetchone()
            if case is None or case["status"] != CaseStatus.LIVE.value:
                return VerdictOutcome.CASE_NOT_LIVE
            existing = conn.execute(
                "SELECT 1 FROM court_verdicts WHERE case_id = ? AND voter_address = ?",
                (case_id, voter_address),
            ).fetchone()
            conn.execute(
                """
                INSERT INTO court_verdicts (case_id, voter_address, verdict, updated_utc)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(case_id, voter_address) DO UPDATE SET
                    verdict = excluded.verdict, updated_utc = excluded.updated_utc
                """,
                (case_id, voter_address, verdict.value, _ts(now)),
            )
            if existing is None:
                return VerdictOutcome.CREATED
            return VerdictOutcome.UPDATED

    def get_court_verdict(
        self, case_id: str, voter_address: str,
    ) -> Optional[Verdict]:
        row = self._fetchone(
            "SELECT verdict FROM court_verdicts WHERE case_id = ? AND voter_address = ?",
            (case_id, voter_address),
        )
        return Verdict(row["verdict"]) if row else None

    def court_verdict_tally(self, case_id: str) -> VerdictTally:
        rows = self._fetchall(
            "SELECT verdict, COUNT(*) AS n FROM court_verdicts "
            "WHERE case_id = ? GROUP BY verdict",
            (case_id,),
        )
        by_verdict = {r["verdict"]: r["n"] for r in rows}
        return VerdictTally(
            guilty=by_verdict.get(Verdict.GUILTY.value, 0),
            not_guilty=by_verdict.get(Verdict.NOT_GUILTY.value, 0),
        )

    # ------------------------------------------------------------------
    # Stage windows
    # ------------------------------------------------------------------

    def mark_stage_window_ended(
        self, proposal_id: str, stage: ProposalStage, ends_utc: datetime,
    ) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO stage_window_ends "
                "(proposal_id, stage, ends_utc) VALUES (?, ?, ?)",
                (proposal_id, stage.value, _ts(ends_utc)),
            )
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Idempotency
    # ------------------------------------------------------------------

    def get_idempotency_record(self, key: str) -> Optional[IdempotencyRecord]:
        row = self._fetchone("SELECT * FROM idempotency_keys WHERE key = ?", (key,))
        if row is None:
            return None
        return IdempotencyRecord(
            key=row["key"],
            address=row["address"],
            fingerprint=row["fingerprint"],
            status=row["status"],
            response=json.loads(row["response_json"]),
            created_utc=_parse_ts(row["created_utc"]),
        )

    def put_idempotency_record(self, record: IdempotencyRecord) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO idempotency_keys (
                    key, address, fingerprint, status, response_json, created_utc
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.key,
                    record.address,
                    record.fingerprint,
                    record.status,
                    json.dumps(record.response, sort_keys=True),
                    _ts(record.created_utc),
                ),
            )
            return cur.rowcount > 0
