"""Evidence ingestion and read schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from attestgate.constants import EvidenceKind, EvidenceOutcome

RUN_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._:-]*$"
COMMIT_SHA_PATTERN = r"^[0-9a-f]{7,64}$"


class EvidenceSubmission(BaseModel):
    """One evidence record as submitted by a scanner, signer or reviewer."""

    model_config = ConfigDict(extra="forbid")

    run_id: str = Field(..., min_length=1, max_length=128, pattern=RUN_ID_PATTERN)
    commit_sha: str = Field(..., pattern=COMMIT_SHA_PATTERN)
    kind: EvidenceKind
    outcome: EvidenceOutcome
    payload: dict[str, Any] | None = Field(
        None, description="Opaque digest/reference plus optional numeric summary"
    )
    source_identity: str = Field(..., min_length=1, max_length=255)
    timestamp: AwareDatetime = Field(..., description="Producer time; used for freshness only")


class EvidenceRead(BaseModel):
    """Read DTO for one stored evidence record."""

    model_config = ConfigDict(from_attributes=True)

    seq: int = Field(..., description="Store-assigned sequence number (EvidenceId)")
    run_id: str
    commit_sha: str
    kind: str
    outcome: str
    payload: dict[str, Any] | None = None
    source_identity: str
    timestamp: datetime
    received_at: datetime


class EvidenceAppendResponse(BaseModel):
    """Response for POST /api/evidence."""

    seq: int
    duplicate: bool
    evidence: EvidenceRead


class EvidenceListResponse(BaseModel):
    """Response for GET /api/runs/{run_id}/evidence (newest first)."""

    run_id: str
    items: list[EvidenceRead]
