"""Pipeline run request/response schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from attestgate.schemas.decision import DecisionRead, RuleResultRead
from attestgate.schemas.evidence import COMMIT_SHA_PATTERN, RUN_ID_PATTERN


class RunCreateRequest(BaseModel):
    """Schema for registering a pipeline run."""

    model_config = ConfigDict(extra="forbid")

    run_id: str | None = Field(None, min_length=1, max_length=128, pattern=RUN_ID_PATTERN)
    environment: str = Field(..., min_length=1, max_length=64)
    commit_sha: str = Field(..., pattern=COMMIT_SHA_PATTERN)


class RunRead(BaseModel):
    """Schema for a pipeline run."""

    model_config = ConfigDict(from_attributes=True)

    run_id: str
    environment: str
    commit_sha: str
    stages: list[str]
    current_stage: str
    status: str
    created_at: datetime
    updated_at: datetime
    cancelled_by: str | None = None
    cancel_reason: str | None = None


class AdvanceRequest(BaseModel):
    """Body for POST /api/runs/{run_id}/advance. The evaluation cutoff is always server time."""

    model_config = ConfigDict(extra="forbid")

    stage: str | None = Field(None, min_length=1, max_length=64)


class OverrideRequest(BaseModel):
    """Privileged per-rule waiver. Justification is mandatory."""

    model_config = ConfigDict(extra="forbid")

    stage: str = Field(..., min_length=1, max_length=64)
    rule_ids: list[str] = Field(..., min_length=1)
    actor: str = Field(..., min_length=1, max_length=255)
    justification: str = Field(..., min_length=1, max_length=4000)


class CancelRequest(BaseModel):
    """Body for POST /api/runs/{run_id}/cancel."""

    model_config = ConfigDict(extra="forbid")

    actor: str = Field(..., min_length=1, max_length=255)
    reason: str | None = Field(None, max_length=4000)


class AdvanceResponse(BaseModel):
    """Outcome of an advance or override request."""

    run_id: str
    stage: str
    status: str
    replayed: bool = Field(False, description="True when a prior decision was returned unchanged")
    decision: DecisionRead | None = None
    unsatisfied: list[RuleResultRead] = Field(default_factory=list)
    run: RunRead
