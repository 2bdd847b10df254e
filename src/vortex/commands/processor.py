"""Command processor: the single write entry point for external callers.

Every command passes the same gates in a fixed order before it reaches
the service:

    shape → authentication → eligibility → write freeze → action lock
          → rate limits → idempotency → dispatch

Each gate answers with an HTTP-style status and an error body; nothing
raises to the caller. Only infrastructure failures inside dispatch
(sqlite3.Error, OSError) become internal_error.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError

from vortex.commands.schemas import (
    ChamberVoteCommand,
    Command,
    CourtReportCommand,
    CourtVerdictCommand,
    FormationJoinCommand,
    MilestoneSubmitCommand,
    MilestoneUnlockCommand,
    PoolVoteCommand,
    parse_command,
)
from vortex.external.eligibility import CachedEligibilityGate
from vortex.external.guards import AdminControls, RateLimiter
from vortex.models.errors import ErrorCode
from vortex.models.idempotency import IdempotencyRecord
from vortex.models.proposal import PoolDirection
from vortex.policy.resolver import PolicyResolver
from vortex.service import GovernanceService, ServiceResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandOutcome:
    """HTTP-shaped result of a command."""
    status: int
    body: dict[str, Any] = field(default_factory=dict)
    replayed: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _error(
    code: ErrorCode,
    message: str,
    details: Optional[dict[str, Any]] = None,
) -> CommandOutcome:
    body: dict[str, Any] = {"error": {"code": code.value, "message": message}}
    if details:
        body["error"]["details"] = details
    return CommandOutcome(status=code.status, body=body)


def command_fingerprint(command: Command) -> str:
    """sha256 over the canonical {type, payload} of a command."""
    canonical = json.dumps(
        {
            "type": command.type,
            "payload": command.payload.model_dump(mode="json", by_alias=True),
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class CommandProcessor:
    """Validates, guards and dispatches write commands.

    Usage:
        processor = CommandProcessor(service, resolver, gate=gate)
        outcome = processor.execute(
            {"type": "pool.vote", "payload": {"proposalId": "p-1", "direction": "up"}},
            address="5Fgov...",
            ip="10.0.0.1",
        )
        outcome.status  # 200
    """

    def __init__(
        self,
        service: GovernanceService,
        resolver: PolicyResolver,
        gate: Optional[CachedEligibilityGate] = None,
        admin: Optional[AdminControls] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self._service = service
        self._resolver = resolver
        self._gate = gate
        self._admin = admin if admin is not None else AdminControls(service.clock)
        self._rate_limiter = (
            rate_limiter if rate_limiter is not None else RateLimiter(service.clock)
        )

    @property
    def admin(self) -> AdminControls:
        return self._admin

    def execute(
        self,
        body: Any,
        address: Optional[str],
        ip: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> CommandOutcome:
        try:
            command = parse_command(body)
        except ValidationError as e:
            return _error(
                ErrorCode.INVALID_COMMAND,
                "Invalid command",
                {"issues": e.errors(include_url=False, include_context=False)},
            )

        address = address.strip() if address else ""
        if not address:
            return _error(ErrorCode.NOT_AUTHENTICATED, "Authentication required")

        if self._gate is not None:
            eligibility = self._gate.check(address)
            if not eligibility.eligible:
                return _error(
                    ErrorCode.NOT_ELIGIBLE,
                    "Address is not an active governor",
                    {"reason": eligibility.reason},
                )

        if self._admin.writes_frozen:
            return _error(ErrorCode.WRITES_FROZEN, "Writes are temporarily frozen")

        lock = self._admin.action_lock(address)
        if lock is not None:
            details: dict[str, Any] = {"reason": lock.reason}
            if lock.locked_until is not None:
                details["locked_until"] = lock.locked_until.isoformat()
            return _error(ErrorCode.ACTION_LOCKED, "Address is locked", details)

        limited = self._check_rate_limits(address, ip)
        if limited is not None:
            return limited

        key = idempotency_key or command.idempotency_key
        if key is None:
            return self._dispatch(command, address)

        min_length = self._resolver.idempotency_min_key_length()
        if len(key) < min_length:
            return _error(
                ErrorCode.INVALID_COMMAND,
                f"Idempotency key must be at least {min_length} characters",
            )
        return self._execute_idempotent(command, address, key)

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def _check_rate_limits(
        self, address: str, ip: Optional[str],
    ) -> Optional[CommandOutcome]:
        buckets = []
        if ip:
            buckets.append((f"ip:{ip}", self._resolver.rate_limit("per_ip")))
        buckets.append((f"address:{address}", self._resolver.rate_limit("per_address")))
        for bucket, policy in buckets:
            decision = self._rate_limiter.consume(bucket, policy)
            if not decision.allowed:
                logger.warning("rate limited: %s", bucket)
                return _error(
                    ErrorCode.RATE_LIMITED, "Too many requests", decision.to_dict(),
                )
        return None

    def _execute_idempotent(
        self, command: Command, address: str, key: str,
    ) -> CommandOutcome:
        store = self._service.store
        fingerprint = command_fingerprint(command)
        existing = store.get_idempotency_record(key)
        if existing is not None:
            if existing.address != address or existing.fingerprint != fingerprint:
                return _error(
                    ErrorCode.IDEMPOTENCY_CONFLICT,
                    "Idempotency key was already used for a different request",
                )
            return CommandOutcome(
                status=existing.status, body=dict(existing.response), replayed=True,
            )

        outcome = self._dispatch(command, address)
        if outcome.ok:
            stored = store.put_idempotency_record(IdempotencyRecord(
                key=key,
                address=address,
                fingerprint=fingerprint,
                status=outcome.status,
                response=outcome.body,
                created_utc=self._service.clock.now(),
            ))
            if not stored:
                logger.info("idempotency key %s stored concurrently", key)
        return outcome

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch(self, command: Command, address: str) -> CommandOutcome:
        try:
            result = self._run(command, address)
        except (sqlite3.Error, OSError):
            logger.exception("command %s failed", command.type)
            return _error(ErrorCode.INTERNAL_ERROR, "Internal error")
        if not result.success:
            code = result.code or ErrorCode.INTERNAL_ERROR
            return _error(code, "; ".join(result.errors), result.data or None)
        return CommandOutcome(
            status=200, body={"ok": True, "type": command.type, **result.data},
        )

    def _run(self, command: Command, address: str) -> ServiceResult:
        service = self._service
        p = command.payload
        if isinstance(command, PoolVoteCommand):
            return service.cast_pool_vote(
                p.proposal_id, address, PoolDirection.parse(p.direction),
            )
        if isinstance(command, ChamberVoteCommand):
            return service.cast_chamber_vote(p.proposal_id, address, p.choice, p.score)
        if isinstance(command, FormationJoinCommand):
            return service.join_formation(p.proposal_id, address, p.role)
        if isinstance(command, MilestoneSubmitCommand):
            return service.submit_milestone(
                p.proposal_id, address, p.milestone_index, p.note,
            )
        if isinstance(command, MilestoneUnlockCommand):
            return service.request_milestone_unlock(
                p.proposal_id, address, p.milestone_index,
            )
        if isinstance(command, CourtReportCommand):
            return service.report_court_case(p.case_id, address)
        if isinstance(command, CourtVerdictCommand):
            return service.cast_court_verdict(p.case_id, address, p.verdict)
        raise ValueError(f"Unhandled command type: {command.type}")
