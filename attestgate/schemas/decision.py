"""Decision (audit log entry) read schemas."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class RuleResultRead(BaseModel):
    """One rule's outcome within a decision."""

    rule_id: str
    kind: str
    satisfied: bool
    reason: str
    detail: str = ""
    evidence_used: list[int] = Field(default_factory=list)


class DecisionRead(BaseModel):
    """Read DTO for one recorded decision."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    decision_id: uuid.UUID
    run_id: str
    sequence: int
    stage: str
    decision_type: str
    outcome: str
    resulting_status: str
    decided_by: str
    justification: str | None = None
    waived_rules: list[str] = Field(default_factory=list)
    policy_version: str | None = None
    policy_checksum: str | None = None
    as_of: datetime
    evidence_high_water: int
    rule_results: list[RuleResultRead] = Field(default_factory=list)
    created_at: datetime
    prev_hash: str | None = None
    entry_hash: str


class DecisionHistoryResponse(BaseModel):
    """Response for GET /api/runs/{run_id}/decisions."""

    run_id: str
    decisions: list[DecisionRead]


class ChainVerificationResponse(BaseModel):
    """Response for GET /internal/audit/verify."""

    run_id: str
    valid: bool
    entries_checked: int
    broken_at_sequence: int | None = None
    reason: str | None = None
