"""
Pydantic schemas for governance write commands.

A command body is {"type": ..., "payload": {...}, "idempotencyKey": ...}.
Payload field names are camelCase on the wire and snake_case in Python.
"""
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from vortex.models.court import Verdict
from vortex.models.proposal import MAX_SCORE, MIN_SCORE, ChamberChoice


# ===========================
# Payloads
# ===========================

class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class PoolVotePayload(_Payload):
    proposal_id: str = Field(..., alias="proposalId", min_length=1)
    direction: Literal["up", "down"]


class ChamberVotePayload(_Payload):
    proposal_id: str = Field(..., alias="proposalId", min_length=1)
    choice: ChamberChoice
    score: Optional[int] = Field(None, ge=MIN_SCORE, le=MAX_SCORE)

    @model_validator(mode="after")
    def _score_only_with_yes(self) -> "ChamberVotePayload":
        if self.score is not None and self.choice is not ChamberChoice.YES:
            raise ValueError("score is only allowed on a yes vote")
        return self


class FormationJoinPayload(_Payload):
    proposal_id: str = Field(..., alias="proposalId", min_length=1)
    role: Optional[str] = None


class MilestoneSubmitPayload(_Payload):
    proposal_id: str = Field(..., alias="proposalId", min_length=1)
    milestone_index: int = Field(..., alias="milestoneIndex")
    note: Optional[str] = None


class MilestoneUnlockPayload(_Payload):
    proposal_id: str = Field(..., alias="proposalId", min_length=1)
    milestone_index: int = Field(..., alias="milestoneIndex")


class CourtReportPayload(_Payload):
    case_id: str = Field(..., alias="caseId", min_length=1)


class CourtVerdictPayload(_Payload):
    case_id: str = Field(..., alias="caseId", min_length=1)
    verdict: Verdict


# ===========================
# Commands
# ===========================

class _Command(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    idempotency_key: Optional[str] = Field(None, alias="idempotencyKey", min_length=8)


class PoolVoteCommand(_Command):
    type: Literal["pool.vote"]
    payload: PoolVotePayload


class ChamberVoteCommand(_Command):
    type: Literal["chamber.vote"]
    payload: ChamberVotePayload


class FormationJoinCommand(_Command):
    type: Literal["formation.join"]
    payload: FormationJoinPayload


class MilestoneSubmitCommand(_Command):
    type: Literal["formation.milestone.submit"]
    payload: MilestoneSubmitPayload


class MilestoneUnlockCommand(_Command):
    type: Literal["formation.milestone.requestUnlock"]
    payload: MilestoneUnlockPayload


class CourtReportCommand(_Command):
    type: Literal["court.case.report"]
    payload: CourtReportPayload


class CourtVerdictCommand(_Command):
    type: Literal["court.case.verdict"]
    payload: CourtVerdictPayload


Command = Annotated[
    Union[
        PoolVoteCommand,
        ChamberVoteCommand,
        FormationJoinCommand,
        MilestoneSubmitCommand,
        MilestoneUnlockCommand,
        CourtReportCommand,
        CourtVerdictCommand,
    ],
    Field(discriminator="type"),
]

COMMAND_ADAPTER: TypeAdapter[Command] = TypeAdapter(Command)


def parse_command(body: object) -> Command:
    """Validate a raw command body. Raises pydantic.ValidationError."""
    return COMMAND_ADAPTER.validate_python(body)
