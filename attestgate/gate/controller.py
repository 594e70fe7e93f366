"""Gate Controller: advances pipeline runs through their stages.

State machine per run:

    pending --evaluate--> admitted (next stage, pending again; terminal after the last stage)
                      +-> blocked  (evidence missing/stale/unknown; retried on new evidence)
                      +-> rejected (a predicate actively failed; terminal unless overridden)
    any     --cancel-->   cancelled (terminal)

Every transition records exactly one Decision in the same transaction as the
status change. Advances for one run are serialized (in-process lock plus the
run's version column and the unique decision sequence across processes).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from attestgate.audit.log import (
    admitting_decision,
    latest_decision,
    record_decision,
    waived_rules_for,
)
from attestgate.config import get_settings
from attestgate.constants import SYSTEM_ACTOR, DecisionType, RunStatus
from attestgate.errors import (
    EvaluationTimeout,
    GateError,
    InvalidOverride,
    NoPolicyDefined,
    RunAlreadyExists,
    RunNotFound,
    StaleSnapshotConflict,
    StageOutOfOrder,
)
from attestgate.evidence.repository import load_snapshot
from attestgate.gate.concurrency import Deadline, run_locks
from attestgate.gate.evaluator import Evaluation, evaluate, no_policy_evaluation
from attestgate.models.decision import Decision
from attestgate.models.pipeline_run import PipelineRun
from attestgate.policy.model import PolicySnapshot
from attestgate.policy.registry import get_active_policy

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE for statement_timeout cancellation
_QUERY_CANCELED = "57014"


@dataclass
class AdvanceResult:
    """Outcome of an advance/override request as observed by the caller."""

    run: PipelineRun
    stage: str
    status: RunStatus
    decision: Decision | None = None
    replayed: bool = False
    unsatisfied: list[dict[str, Any]] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(UTC)


def get_run(db: Session, run_id: str) -> PipelineRun:
    run = db.get(PipelineRun, run_id)
    if run is None:
        raise RunNotFound(f"run {run_id!r} not found")
    return run


def create_run(
    db: Session,
    environment: str,
    commit_sha: str,
    run_id: str | None = None,
) -> PipelineRun:
    """Register a run; its stage list comes from the active policy's environment.

    Raises:
        NoPolicyDefined: No active policy, or the environment is not configured.
        RunAlreadyExists: run_id is taken.
    """
    policy = get_active_policy(db)
    if policy is None:
        raise NoPolicyDefined(environment, None, "no policy published")
    stages = list(policy.stages_for(environment))

    run_id = run_id or f"run-{uuid.uuid4().hex[:16]}"
    if db.get(PipelineRun, run_id) is not None:
        raise RunAlreadyExists(f"run {run_id!r} already exists")

    now = _now()
    run = PipelineRun(
        run_id=run_id,
        environment=environment,
        commit_sha=commit_sha,
        stages=stages,
        current_stage=stages[0],
        status="pending",
        created_at=now,
        updated_at=now,
    )
    db.add(run)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise RunAlreadyExists(f"run {run_id!r} already exists") from None
    logger.info(
        "Run created: run_id=%s environment=%s commit=%s stages=%s",
        run_id,
        environment,
        commit_sha[:12],
        stages,
    )
    return run


def _set_statement_timeout(db: Session, deadline: Deadline) -> None:
    """Bound every statement of this transaction on PostgreSQL; no-op elsewhere."""
    bind = db.get_bind()
    if bind.dialect.name != "postgresql":
        return
    ms = max(int(deadline.remaining() * 1000), 1)
    db.execute(text(f"SET LOCAL statement_timeout = {ms}"))


def _evaluate(
    db: Session,
    run: PipelineRun,
    stage: str,
    as_of: datetime,
    waived: set[str],
    deadline: Deadline,
) -> Evaluation:
    """Resolve the active policy and evaluate run/stage against one evidence snapshot."""
    _set_statement_timeout(db, deadline)
    policy: PolicySnapshot | None = get_active_policy(db)
    snapshot = load_snapshot(db, run.run_id)
    deadline.check()
    if policy is None:
        return no_policy_evaluation(
            run_id=run.run_id,
            stage=stage,
            as_of=as_of,
            high_water=snapshot.high_water,
            detail="no policy published",
        )
    try:
        rules = policy.resolve(run.environment, stage)
    except NoPolicyDefined as e:
        logger.warning("Fail-closed deny: %s (policy %s)", e, policy.version)
        return no_policy_evaluation(
            run_id=run.run_id,
            stage=stage,
            as_of=as_of,
            high_water=snapshot.high_water,
            detail=str(e),
            policy_version=policy.version,
            policy_checksum=policy.checksum,
        )
    return evaluate(
        run_id=run.run_id,
        commit_sha=run.commit_sha,
        stage=stage,
        rules=rules,
        snapshot=snapshot,
        as_of=as_of,
        waived_rules=waived,
        policy_version=policy.version,
        policy_checksum=policy.checksum,
        checkpoint=deadline.check,
    )


def _apply(
    db: Session,
    run: PipelineRun,
    evaluation: Evaluation,
    deadline: Deadline,
    *,
    decision_type: DecisionType,
    decided_by: str,
    justification: str | None = None,
    waived_rules: list[str] | None = None,
) -> Decision:
    """Record the decision and the run's transition atomically, then commit.

    Nothing is written unless the commit succeeds: a lost race or a missed
    deadline rolls back and leaves the run in its prior status.
    """
    stage_status = evaluation.resulting_status
    if evaluation.admitted:
        next_stage = run.next_stage()
        if next_stage is not None:
            run.current_stage = next_stage
            run.status = "pending"
        else:
            run.status = "admitted"
    else:
        run.status = stage_status
    run.updated_at = _now()

    try:
        decision = record_decision(
            db,
            evaluation,
            resulting_status=stage_status,
            decision_type=decision_type,
            decided_by=decided_by,
            justification=justification,
            waived_rules=waived_rules,
        )
        deadline.check()
        db.commit()
    except (StaleDataError, IntegrityError) as e:
        db.rollback()
        raise StaleSnapshotConflict(
            f"run {run.run_id!r} changed concurrently; retry the advance"
        ) from e
    except EvaluationTimeout:
        db.rollback()
        raise

    logger.info(
        "Decision recorded: run_id=%s stage=%s outcome=%s status=%s by=%s seq=%d",
        decision.run_id,
        decision.stage,
        decision.outcome,
        run.status,
        decided_by,
        decision.sequence,
        extra={
            "run_id": decision.run_id,
            "decision_id": str(decision.decision_id),
            "unsatisfied": [r.rule_id for r in evaluation.unsatisfied],
        },
    )
    return decision


def _guarded(db: Session, fn, *args, **kwargs):
    """Run fn, mapping a cancelled PostgreSQL statement to EvaluationTimeout and rolling back on error."""
    try:
        return fn(*args, **kwargs)
    except OperationalError as e:
        db.rollback()
        if getattr(e.orig, "sqlstate", None) == _QUERY_CANCELED:
            raise EvaluationTimeout("evidence query exceeded the statement timeout") from e
        raise
    except GateError:
        db.rollback()
        raise


def _result_from(run: PipelineRun, decision: Decision, replayed: bool) -> AdvanceResult:
    return AdvanceResult(
        run=run,
        stage=decision.stage,
        status=decision.resulting_status,
        decision=decision,
        replayed=replayed,
        unsatisfied=[r for r in decision.rule_results if not r.get("satisfied")],
    )


def _check_stage(run: PipelineRun, stage: str) -> None:
    if stage not in (run.stages or []):
        raise StageOutOfOrder(f"stage {stage!r} is not part of run {run.run_id!r}")
    if stage != run.current_stage:
        raise StageOutOfOrder(
            f"stage {stage!r} is not the current stage of run {run.run_id!r} "
            f"({run.current_stage!r})"
        )


def request_advance(
    db: Session,
    run_id: str,
    stage: str | None = None,
    as_of: datetime | None = None,
) -> AdvanceResult:
    """Evaluate the run's current stage and move it forward, block it or reject it.

    stage defaults to the current stage as read before waiting for the run lock,
    so a request that queued behind another advance for the same stage gets that
    advance's decision back instead of evaluating the next stage.

    Raises:
        RunNotFound, StageOutOfOrder, StaleSnapshotConflict, EvaluationTimeout.
    """
    settings = get_settings()
    target = stage or get_run(db, run_id).current_stage
    with run_locks.hold(run_id, settings.advance_lock_timeout):
        # Drop anything cached before the lock; another holder may have committed
        db.expire_all()
        run = get_run(db, run_id)

        prior = admitting_decision(db, run_id, target)
        if prior is not None:
            logger.info("Idempotent advance: run_id=%s stage=%s already admitted", run_id, target)
            return _result_from(run, prior, replayed=True)

        if run.status == "cancelled":
            return AdvanceResult(run=run, stage=target, status="cancelled")
        if run.status == "rejected":
            last = latest_decision(db, run_id, run.current_stage)
            if last is not None:
                return _result_from(run, last, replayed=True)
            return AdvanceResult(run=run, stage=target, status="rejected")
        if run.status == "admitted":
            return AdvanceResult(run=run, stage=target, status="admitted")

        _check_stage(run, target)
        deadline = Deadline(settings.evaluation_timeout)
        as_of = as_of or _now()

        def _run() -> Decision:
            waived = waived_rules_for(db, run_id, target)
            evaluation = _evaluate(db, run, target, as_of, waived, deadline)
            return _apply(
                db,
                run,
                evaluation,
                deadline,
                decision_type="evaluation",
                decided_by=SYSTEM_ACTOR,
            )

        decision = _guarded(db, _run)
        return _result_from(run, decision, replayed=False)


def override(
    db: Session,
    run_id: str,
    stage: str,
    rule_ids: list[str],
    actor: str,
    justification: str,
    as_of: datetime | None = None,
) -> AdvanceResult:
    """Waive specific rules for run/stage and re-evaluate, recording a privileged decision.

    Waivers are scoped per rule and persist for later advances of the same
    run/stage. The decision names the actor and carries the justification.

    Raises:
        InvalidOverride: Empty justification/actor, or rule ids not in the stage's policy.
    """
    if not justification or not justification.strip():
        raise InvalidOverride("override requires a justification")
    if not actor or not actor.strip() or actor == SYSTEM_ACTOR:
        raise InvalidOverride("override requires a human actor identity")
    if not rule_ids:
        raise InvalidOverride("override must name at least one rule")

    settings = get_settings()
    with run_locks.hold(run_id, settings.advance_lock_timeout):
        db.expire_all()
        run = get_run(db, run_id)

        prior = admitting_decision(db, run_id, stage)
        if prior is not None:
            return _result_from(run, prior, replayed=True)
        if run.status == "cancelled":
            return AdvanceResult(run=run, stage=stage, status="cancelled")
        _check_stage(run, stage)

        policy = get_active_policy(db)
        if policy is None:
            raise InvalidOverride("no policy published; nothing to waive")
        try:
            rules = policy.resolve(run.environment, stage)
        except NoPolicyDefined as e:
            raise InvalidOverride(f"nothing to waive: {e}") from e
        known = {r.rule_id for r in rules}
        unknown = sorted(set(rule_ids) - known)
        if unknown:
            raise InvalidOverride(f"unknown rules for stage {stage!r}: {unknown}")

        deadline = Deadline(settings.evaluation_timeout)
        as_of = as_of or _now()

        def _run() -> Decision:
            waived = waived_rules_for(db, run_id, stage) | set(rule_ids)
            evaluation = _evaluate(db, run, stage, as_of, waived, deadline)
            return _apply(
                db,
                run,
                evaluation,
                deadline,
                decision_type="override",
                decided_by=actor,
                justification=justification.strip(),
                waived_rules=sorted(set(rule_ids)),
            )

        decision = _guarded(db, _run)
        logger.warning(
            "Override recorded: run_id=%s stage=%s rules=%s actor=%s outcome=%s",
            run_id,
            stage,
            sorted(set(rule_ids)),
            actor,
            decision.outcome,
        )
        return _result_from(run, decision, replayed=False)


def cancel_run(db: Session, run_id: str, actor: str, reason: str | None = None) -> PipelineRun:
    """Cancel a run. Terminal; recorded decisions stay as they are."""
    settings = get_settings()
    with run_locks.hold(run_id, settings.advance_lock_timeout):
        db.expire_all()
        run = get_run(db, run_id)
        if run.status == "cancelled":
            return run
        run.status = "cancelled"
        run.cancelled_by = actor
        run.cancel_reason = reason
        run.updated_at = _now()
        try:
            db.commit()
        except StaleDataError as e:
            db.rollback()
            raise StaleSnapshotConflict(f"run {run_id!r} changed concurrently; retry") from e
        logger.info("Run cancelled: run_id=%s by=%s reason=%s", run_id, actor, reason)
        return run


def retry_blocked_run(db: Session, run_id: str) -> AdvanceResult | None:
    """Re-advance run_id if it exists and is blocked; otherwise do nothing."""
    run = db.get(PipelineRun, run_id)
    if run is None or run.status != "blocked":
        return None
    return request_advance(db, run_id)


def retry_blocked_runs(db: Session) -> dict:
    """Poll path: re-advance every blocked run. Returns counts by resulting status."""
    run_ids = [
        r for (r,) in db.query(PipelineRun.run_id).filter(PipelineRun.status == "blocked").all()
    ]
    counts = {"pending": 0, "admitted": 0, "blocked": 0, "rejected": 0, "cancelled": 0}
    errors = 0
    for run_id in run_ids:
        try:
            result = request_advance(db, run_id)
        except GateError as e:
            errors += 1
            logger.warning("Retry of blocked run failed: run_id=%s error=%s", run_id, e)
            continue
        counts[result.run.status] = counts.get(result.run.status, 0) + 1
    return {
        "status": "completed",
        "runs_checked": len(run_ids),
        "advanced": counts["pending"] + counts["admitted"],
        "still_blocked": counts["blocked"],
        "rejected": counts["rejected"],
        "errors": errors,
    }


def on_evidence_appended(run_id: str) -> None:
    """Evidence notifier subscriber: re-evaluate the run in a fresh session if it is blocked.

    Runs on the notifier's worker thread. Losing the run lock or the deadline
    leaves the run blocked for the next push or the poll path.
    """
    from attestgate.db.session import SessionLocal

    db = SessionLocal()
    try:
        try:
            result = retry_blocked_run(db, run_id)
        except (StaleSnapshotConflict, EvaluationTimeout) as e:
            logger.warning("Retry on new evidence deferred: run_id=%s reason=%s", run_id, e)
            return
        if result is not None:
            logger.info(
                "Blocked run re-evaluated on new evidence: run_id=%s status=%s",
                run_id,
                result.run.status,
            )
    finally:
        db.close()
