"""Audit Log: append-only, hash-chained record of every gate decision.

Each run's decisions form a chain: entry_hash = sha256(canonical entry + prev_hash).
Editing or deleting any entry breaks verification from that point on. This
module has no update or delete function.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from attestgate.constants import DecisionType
from attestgate.models.decision import Decision

if TYPE_CHECKING:
    from attestgate.gate.evaluator import Evaluation

logger = logging.getLogger(__name__)

_HASHED_FIELDS = (
    "decision_id",
    "run_id",
    "sequence",
    "stage",
    "decision_type",
    "outcome",
    "resulting_status",
    "decided_by",
    "justification",
    "waived_rules",
    "policy_version",
    "policy_checksum",
    "as_of",
    "evidence_high_water",
    "rule_results",
    "created_at",
)


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.astimezone(UTC).isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def decision_to_dict(decision: Decision) -> dict[str, Any]:
    """JSON-serializable form of a decision, as exported to log pipelines."""
    out = {name: _json_value(getattr(decision, name)) for name in _HASHED_FIELDS}
    out["id"] = decision.id
    out["prev_hash"] = decision.prev_hash
    out["entry_hash"] = decision.entry_hash
    return out


def compute_entry_hash(decision: Decision, prev_hash: str | None) -> str:
    """SHA-256 over the canonical JSON of the hashed fields plus the previous entry's hash."""
    content = {name: _json_value(getattr(decision, name)) for name in _HASHED_FIELDS}
    content["prev_hash"] = prev_hash
    canonical = json.dumps(content, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def latest_decision(db: Session, run_id: str, stage: str | None = None) -> Decision | None:
    q = db.query(Decision).filter(Decision.run_id == run_id)
    if stage is not None:
        q = q.filter(Decision.stage == stage)
    return q.order_by(Decision.sequence.desc()).first()


def admitting_decision(db: Session, run_id: str, stage: str) -> Decision | None:
    """The decision that admitted run/stage, if any. A stage is admitted at most once."""
    return (
        db.query(Decision)
        .filter(
            Decision.run_id == run_id,
            Decision.stage == stage,
            Decision.outcome == "admit",
        )
        .order_by(Decision.sequence.asc())
        .first()
    )


def waived_rules_for(db: Session, run_id: str, stage: str) -> set[str]:
    """Union of rules waived by override decisions for run/stage."""
    rows = (
        db.query(Decision.waived_rules)
        .filter(
            Decision.run_id == run_id,
            Decision.stage == stage,
            Decision.decision_type == "override",
        )
        .all()
    )
    waived: set[str] = set()
    for (rules,) in rows:
        waived.update(rules or [])
    return waived


def record_decision(
    db: Session,
    evaluation: Evaluation,
    *,
    resulting_status: str,
    decision_type: DecisionType,
    decided_by: str,
    justification: str | None = None,
    waived_rules: list[str] | None = None,
) -> Decision:
    """Append a decision to the run's chain within the caller's transaction (flush, no commit).

    The caller commits together with the run's status change, so a decision is
    never visible without the state change it caused, or vice versa.
    """
    last = latest_decision(db, evaluation.run_id)
    row = Decision(
        decision_id=uuid.uuid4(),
        run_id=evaluation.run_id,
        sequence=(last.sequence + 1) if last else 1,
        stage=evaluation.stage,
        decision_type=decision_type,
        outcome=evaluation.outcome,
        resulting_status=resulting_status,
        decided_by=decided_by,
        justification=justification,
        waived_rules=sorted(waived_rules or []),
        policy_version=evaluation.policy_version,
        policy_checksum=evaluation.policy_checksum,
        as_of=evaluation.as_of.astimezone(UTC),
        evidence_high_water=evaluation.high_water,
        rule_results=[r.to_dict() for r in evaluation.results],
        created_at=datetime.now(UTC),
        prev_hash=last.entry_hash if last else None,
    )
    row.entry_hash = compute_entry_hash(row, row.prev_hash)
    db.add(row)
    db.flush()
    return row


def history(db: Session, run_id: str) -> list[Decision]:
    """All decisions for a run in decision order."""
    return (
        db.query(Decision)
        .filter(Decision.run_id == run_id)
        .order_by(Decision.sequence.asc())
        .all()
    )


def get_decision(db: Session, decision_id: uuid.UUID) -> Decision | None:
    return db.query(Decision).filter(Decision.decision_id == decision_id).first()


def export_decisions(db: Session, after_id: int = 0, limit: int = 500) -> list[Decision]:
    """Read-only feed of decisions across all runs in insertion order, starting after a cursor."""
    return (
        db.query(Decision)
        .filter(Decision.id > after_id)
        .order_by(Decision.id.asc())
        .limit(max(limit, 0))
        .all()
    )


@dataclass
class ChainVerification:
    """Result of verifying one run's decision chain."""

    run_id: str
    valid: bool
    entries_checked: int
    broken_at_sequence: int | None = None
    reason: str | None = None


def verify_chain(db: Session, run_id: str) -> ChainVerification:
    """Recompute every link of a run's chain; report the first broken entry."""
    entries = history(db, run_id)
    prev_hash: str | None = None
    for i, entry in enumerate(entries):
        expected_seq = i + 1
        if entry.sequence != expected_seq:
            return ChainVerification(
                run_id, False, i, entry.sequence,
                f"sequence gap: expected {expected_seq}, got {entry.sequence}",
            )
        if entry.prev_hash != prev_hash:
            return ChainVerification(
                run_id, False, i, entry.sequence, "prev_hash does not match previous entry"
            )
        if compute_entry_hash(entry, prev_hash) != entry.entry_hash:
            return ChainVerification(
                run_id, False, i, entry.sequence, "entry_hash does not match entry content"
            )
        prev_hash = entry.entry_hash
    if entries:
        logger.debug("Decision chain verified: run_id=%s entries=%d", run_id, len(entries))
    return ChainVerification(run_id, True, len(entries))
