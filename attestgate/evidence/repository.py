"""Evidence Store read interface. Read-only; no policy logic.

Ordering is by store sequence number, newest first. Producer timestamps only
bound what is visible as of a cutoff; they never order records.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from attestgate.evidence.snapshot import EvidenceItem, EvidenceSnapshot
from attestgate.models.evidence_record import EvidenceRecord


def get_evidence(db: Session, seq: int) -> EvidenceRecord | None:
    """Return one evidence record by sequence number, or None."""
    return db.get(EvidenceRecord, seq)


def query_evidence(
    db: Session,
    run_id: str,
    kind: str | None = None,
    as_of: datetime | None = None,
    high_water: int | None = None,
) -> list[EvidenceRecord]:
    """Return evidence for run_id (optionally one kind) not newer than as_of, newest first.

    high_water, when given, hides records appended after that sequence number.
    """
    q = db.query(EvidenceRecord).filter(EvidenceRecord.run_id == run_id)
    if kind is not None:
        q = q.filter(EvidenceRecord.kind == kind)
    if as_of is not None:
        q = q.filter(EvidenceRecord.timestamp <= as_of)
    if high_water is not None:
        q = q.filter(EvidenceRecord.seq <= high_water)
    return q.order_by(EvidenceRecord.seq.desc()).all()


def load_snapshot(db: Session, run_id: str) -> EvidenceSnapshot:
    """Read every record for run_id in one statement and freeze it for evaluation."""
    rows = query_evidence(db, run_id)
    items = tuple(EvidenceItem.from_row(r) for r in rows)
    high_water = items[0].seq if items else 0
    return EvidenceSnapshot(run_id=run_id, high_water=high_water, items=items)
