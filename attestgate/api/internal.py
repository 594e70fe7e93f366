"""Internal endpoints for operators and scripts: policy publication, audit export, retries.

Secured with the gate token (X-Gate-Token header). Not part of the public schema.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from attestgate.api.deps import get_db, require_gate_token
from attestgate.audit.log import decision_to_dict, export_decisions, verify_chain
from attestgate.config import get_settings
from attestgate.db.session import SessionLocal
from attestgate.gate.controller import retry_blocked_runs
from attestgate.policy.registry import get_active_policy_row, publish_policy
from attestgate.policy.validator import PolicyValidationError
from attestgate.schemas.decision import ChainVerificationResponse
from attestgate.schemas.policy import PolicyPublishRequest, PolicyRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", include_in_schema=False)


@router.post("/policies", response_model=PolicyRead, status_code=201)
def publish(
    body: PolicyPublishRequest,
    db: Session = Depends(get_db),
    _token: None = Depends(require_gate_token),
) -> PolicyRead:
    """Publish a policy document; it becomes active for every later admission check."""
    try:
        row = publish_policy(db, body.document, activated_by=body.activated_by)
    except PolicyValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from None
    return PolicyRead.model_validate(row)


@router.get("/policies/active", response_model=PolicyRead)
def active_policy(
    db: Session = Depends(get_db),
    _token: None = Depends(require_gate_token),
) -> PolicyRead:
    row = get_active_policy_row(db)
    if row is None:
        raise HTTPException(status_code=404, detail="No policy published")
    return PolicyRead.model_validate(row)


def _ndjson_pages(after_id: int, limit: int | None, page_size: int) -> Iterator[str]:
    """Yield decisions page by page. Owns its session: it outlives the request dependency."""
    db = SessionLocal()
    try:
        cursor, sent = after_id, 0
        while limit is None or sent < limit:
            size = page_size if limit is None else min(page_size, limit - sent)
            page = export_decisions(db, after_id=cursor, limit=size)
            if not page:
                return
            for decision in page:
                yield json.dumps(decision_to_dict(decision), sort_keys=True) + "\n"
            sent += len(page)
            cursor = page[-1].id
    finally:
        db.close()


@router.get("/audit/export")
def export_audit(
    after_id: int = Query(0, ge=0, description="Resume after this decision id"),
    limit: int | None = Query(None, ge=1, description="Maximum entries; all when omitted"),
    _token: None = Depends(require_gate_token),
) -> StreamingResponse:
    """Stream decisions across all runs as NDJSON in insertion order."""
    page_size = max(get_settings().audit_export_page_size, 1)
    return StreamingResponse(
        _ndjson_pages(after_id, limit, page_size),
        media_type="application/x-ndjson",
    )


@router.get("/audit/verify", response_model=ChainVerificationResponse)
def verify_audit(
    run_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    _token: None = Depends(require_gate_token),
) -> ChainVerificationResponse:
    """Recompute a run's decision hash chain and report the first broken link."""
    result = verify_chain(db, run_id)
    if not result.valid:
        logger.warning(
            "Audit chain broken: run_id=%s sequence=%s reason=%s",
            run_id,
            result.broken_at_sequence,
            result.reason,
        )
    return ChainVerificationResponse(
        run_id=result.run_id,
        valid=result.valid,
        entries_checked=result.entries_checked,
        broken_at_sequence=result.broken_at_sequence,
        reason=result.reason,
    )


@router.post("/retry_blocked")
def retry_blocked(
    db: Session = Depends(get_db),
    _token: None = Depends(require_gate_token),
):
    """Re-evaluate every Blocked run (poll path for evidence that arrived out of band)."""
    try:
        return retry_blocked_runs(db)
    except Exception as exc:
        logger.exception("Retry of blocked runs failed")
        return {"status": "failed", "error": str(exc)}
