"""Evidence ingestion and read API.

Producers (scanners, signers, reviewers) authenticate with X-Evidence-Token.
Reads are available to gate callers with X-Gate-Token.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from attestgate.api.deps import get_db, require_evidence_token, require_gate_token
from attestgate.constants import EVIDENCE_KINDS
from attestgate.errors import InvalidEvidence
from attestgate.evidence.repository import query_evidence
from attestgate.evidence.store import ingest_evidence
from attestgate.schemas.evidence import (
    EvidenceAppendResponse,
    EvidenceListResponse,
    EvidenceRead,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/evidence", response_model=EvidenceAppendResponse, status_code=201)
def submit_evidence(
    response: Response,
    body: Any = Body(...),
    db: Session = Depends(get_db),
    _token: None = Depends(require_evidence_token),
) -> EvidenceAppendResponse:
    """Append one evidence record.

    201 for a new record, 200 when the identical (run, kind, source, timestamp)
    tuple was already recorded (the existing record is returned), 422 when the
    submission is malformed or untrusted (it is quarantined, never evaluated).
    """
    try:
        record, duplicate = ingest_evidence(db, body)
    except InvalidEvidence as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"reason": e.reason, "errors": e.errors},
        ) from None
    if duplicate:
        response.status_code = status.HTTP_200_OK
    return EvidenceAppendResponse(
        seq=record.seq,
        duplicate=duplicate,
        evidence=EvidenceRead.model_validate(record),
    )


@router.get("/runs/{run_id}/evidence", response_model=EvidenceListResponse)
def list_evidence(
    run_id: str,
    kind: str | None = Query(None, description="Restrict to one evidence kind"),
    as_of: datetime | None = Query(None, description="Hide evidence timestamped after this instant"),
    db: Session = Depends(get_db),
    _token: None = Depends(require_gate_token),
) -> EvidenceListResponse:
    """Evidence for a run, newest first by store sequence."""
    if kind is not None and kind not in EVIDENCE_KINDS:
        raise HTTPException(status_code=422, detail=f"Unknown evidence kind: {kind}")
    if as_of is not None and as_of.tzinfo is None:
        raise HTTPException(status_code=422, detail="as_of must include a timezone offset")
    rows = query_evidence(db, run_id, kind=kind, as_of=as_of)
    return EvidenceListResponse(
        run_id=run_id,
        items=[EvidenceRead.model_validate(r) for r in rows],
    )
