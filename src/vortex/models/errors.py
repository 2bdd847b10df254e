"""Error taxonomy: machine-readable failure codes and their kinds.

Domain rule violations are never raised. They travel back to the caller
as a failed result carrying one of these codes; the command processor
maps the code's kind to a caller-visible status.
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RATE_LIMIT = "rate_limit"
    UNAVAILABLE = "unavailable"
    INTERNAL = "internal"


class ErrorCode(str, enum.Enum):
    # Validation
    INVALID_COMMAND = "invalid_command"
    INVALID_SCORE = "invalid_score"
    # Authentication / authorization
    NOT_AUTHENTICATED = "not_authenticated"
    NOT_ELIGIBLE = "not_eligible"
    ACTION_LOCKED = "action_locked"
    WRITES_FROZEN = "writes_frozen"
    # Conflicts
    STAGE_MISMATCH = "stage_mismatch"
    IDEMPOTENCY_CONFLICT = "idempotency_conflict"
    PROPOSAL_EXISTS = "proposal_exists"
    TEAM_FULL = "team_full"
    MILESTONE_ALREADY_UNLOCKED = "milestone_already_unlocked"
    MILESTONE_NOT_SUBMITTED = "milestone_not_submitted"
    CASE_NOT_LIVE = "case_not_live"
    # Not found
    PROPOSAL_MISSING = "proposal_missing"
    FORMATION_MISSING = "formation_missing"
    COURT_CASE_MISSING = "court_case_missing"
    CHAMBER_MISSING = "chamber_missing"
    MILESTONE_OUT_OF_RANGE = "milestone_out_of_range"
    # Rate / quota
    RATE_LIMITED = "rate_limited"
    ERA_QUOTA_EXCEEDED = "era_quota_exceeded"
    # Infrastructure
    INTERNAL_ERROR = "internal_error"

    @property
    def kind(self) -> ErrorKind:
        return _KIND_BY_CODE[self]

    @property
    def status(self) -> int:
        return STATUS_BY_KIND[self.kind]


_KIND_BY_CODE: dict[ErrorCode, ErrorKind] = {
    ErrorCode.INVALID_COMMAND: ErrorKind.VALIDATION,
    ErrorCode.INVALID_SCORE: ErrorKind.VALIDATION,
    ErrorCode.NOT_AUTHENTICATED: ErrorKind.AUTHENTICATION,
    ErrorCode.NOT_ELIGIBLE: ErrorKind.AUTHORIZATION,
    ErrorCode.ACTION_LOCKED: ErrorKind.AUTHORIZATION,
    ErrorCode.WRITES_FROZEN: ErrorKind.UNAVAILABLE,
    ErrorCode.STAGE_MISMATCH: ErrorKind.CONFLICT,
    ErrorCode.IDEMPOTENCY_CONFLICT: ErrorKind.CONFLICT,
    ErrorCode.PROPOSAL_EXISTS: ErrorKind.CONFLICT,
    ErrorCode.TEAM_FULL: ErrorKind.CONFLICT,
    ErrorCode.MILESTONE_ALREADY_UNLOCKED: ErrorKind.CONFLICT,
    ErrorCode.MILESTONE_NOT_SUBMITTED: ErrorKind.CONFLICT,
    ErrorCode.CASE_NOT_LIVE: ErrorKind.CONFLICT,
    ErrorCode.PROPOSAL_MISSING: ErrorKind.NOT_FOUND,
    ErrorCode.FORMATION_MISSING: ErrorKind.NOT_FOUND,
    ErrorCode.COURT_CASE_MISSING: ErrorKind.NOT_FOUND,
    ErrorCode.CHAMBER_MISSING: ErrorKind.NOT_FOUND,
    ErrorCode.MILESTONE_OUT_OF_RANGE: ErrorKind.NOT_FOUND,
    ErrorCode.RATE_LIMITED: ErrorKind.RATE_LIMIT,
    ErrorCode.ERA_QUOTA_EXCEEDED: ErrorKind.RATE_LIMIT,
    ErrorCode.INTERNAL_ERROR: ErrorKind.INTERNAL,
}

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.UNAVAILABLE: 503,
    ErrorKind.INTERNAL: 500,
}
