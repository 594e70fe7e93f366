"""Pipeline run API: register runs, request stage advances, override, cancel, history.

All routes here are sync: the controller holds a per-run lock while it
evaluates, and FastAPI runs sync endpoints in its threadpool.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from attestgate.api.deps import get_db, require_gate_token, require_override_token
from attestgate.audit.log import history
from attestgate.errors import (
    EvaluationTimeout,
    InvalidOverride,
    NoPolicyDefined,
    RunAlreadyExists,
    RunNotFound,
    StageOutOfOrder,
    StaleSnapshotConflict,
)
from attestgate.gate.controller import (
    AdvanceResult,
    cancel_run,
    create_run,
    get_run,
    override,
    request_advance,
)
from attestgate.schemas.decision import DecisionHistoryResponse, DecisionRead, RuleResultRead
from attestgate.schemas.run import (
    AdvanceRequest,
    AdvanceResponse,
    CancelRequest,
    OverrideRequest,
    RunCreateRequest,
    RunRead,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# HTTP status per stage outcome
_STATUS_CODES = {
    "admitted": status.HTTP_200_OK,
    "blocked": status.HTTP_202_ACCEPTED,
    "rejected": status.HTTP_403_FORBIDDEN,
    "cancelled": status.HTTP_410_GONE,
}


def _advance_response(result: AdvanceResult, response: Response) -> AdvanceResponse:
    response.status_code = _STATUS_CODES.get(result.status, status.HTTP_200_OK)
    return AdvanceResponse(
        run_id=result.run.run_id,
        stage=result.stage,
        status=result.status,
        replayed=result.replayed,
        decision=DecisionRead.model_validate(result.decision) if result.decision else None,
        unsatisfied=[RuleResultRead(**r) for r in result.unsatisfied],
        run=RunRead.model_validate(result.run),
    )


def _raise_gate_error(e: Exception) -> None:
    """Map controller errors to HTTP errors."""
    if isinstance(e, RunNotFound):
        raise HTTPException(status_code=404, detail=str(e)) from None
    if isinstance(e, StaleSnapshotConflict):
        raise HTTPException(status_code=409, detail=str(e)) from None
    if isinstance(e, EvaluationTimeout):
        raise HTTPException(status_code=503, detail=str(e)) from None
    if isinstance(e, (StageOutOfOrder, InvalidOverride)):
        raise HTTPException(status_code=422, detail=str(e)) from None
    raise e


@router.post("", response_model=RunRead, status_code=201)
def register_run(
    body: RunCreateRequest,
    db: Session = Depends(get_db),
    _token: None = Depends(require_gate_token),
) -> RunRead:
    """Register a pipeline run. Stages come from the active policy for the environment."""
    try:
        run = create_run(db, body.environment, body.commit_sha, run_id=body.run_id)
    except NoPolicyDefined as e:
        raise HTTPException(status_code=422, detail=str(e)) from None
    except RunAlreadyExists as e:
        raise HTTPException(status_code=409, detail=str(e)) from None
    return RunRead.model_validate(run)


@router.get("/{run_id}", response_model=RunRead)
def read_run(
    run_id: str,
    db: Session = Depends(get_db),
    _token: None = Depends(require_gate_token),
) -> RunRead:
    try:
        return RunRead.model_validate(get_run(db, run_id))
    except RunNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from None


@router.post("/{run_id}/advance", response_model=AdvanceResponse)
def advance_run(
    run_id: str,
    response: Response,
    body: AdvanceRequest | None = None,
    db: Session = Depends(get_db),
    _token: None = Depends(require_gate_token),
) -> AdvanceResponse:
    """Ask the gate to admit the run's current (or named) stage.

    200 admitted, 202 blocked (waiting on evidence), 403 rejected, 410
    cancelled. The body carries the recorded decision and every unsatisfied
    rule with its reason.
    """
    body = body or AdvanceRequest()
    try:
        result = request_advance(db, run_id, stage=body.stage)
    except (RunNotFound, StaleSnapshotConflict, EvaluationTimeout, StageOutOfOrder) as e:
        _raise_gate_error(e)
    return _advance_response(result, response)


@router.post("/{run_id}/override", response_model=AdvanceResponse)
def override_run(
    run_id: str,
    body: OverrideRequest,
    response: Response,
    db: Session = Depends(get_db),
    _token: None = Depends(require_override_token),
) -> AdvanceResponse:
    """Waive named rules for a stage and re-evaluate. Recorded with actor and justification."""
    try:
        result = override(
            db,
            run_id,
            body.stage,
            body.rule_ids,
            actor=body.actor,
            justification=body.justification,
        )
    except (
        RunNotFound,
        StaleSnapshotConflict,
        EvaluationTimeout,
        StageOutOfOrder,
        InvalidOverride,
    ) as e:
        _raise_gate_error(e)
    return _advance_response(result, response)


@router.post("/{run_id}/cancel", response_model=RunRead)
def cancel(
    run_id: str,
    body: CancelRequest,
    db: Session = Depends(get_db),
    _token: None = Depends(require_gate_token),
) -> RunRead:
    try:
        run = cancel_run(db, run_id, body.actor, body.reason)
    except (RunNotFound, StaleSnapshotConflict) as e:
        _raise_gate_error(e)
    return RunRead.model_validate(run)


@router.get("/{run_id}/decisions", response_model=DecisionHistoryResponse)
def list_decisions(
    run_id: str,
    db: Session = Depends(get_db),
    _token: None = Depends(require_gate_token),
) -> DecisionHistoryResponse:
    """Decision history for a run, oldest first."""
    try:
        get_run(db, run_id)
    except RunNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from None
    return DecisionHistoryResponse(
        run_id=run_id,
        decisions=[DecisionRead.model_validate(d) for d in history(db, run_id)],
    )
