"""Plain, immutable views of stored evidence handed to the evaluator."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from attestgate.models.evidence_record import EvidenceRecord


@dataclass(frozen=True)
class EvidenceItem:
    """One evidence record detached from the ORM session."""

    seq: int
    run_id: str
    commit_sha: str
    kind: str
    outcome: str
    payload: dict[str, Any] | None
    source_identity: str
    timestamp: datetime

    @classmethod
    def from_row(cls, row: EvidenceRecord) -> EvidenceItem:
        return cls(
            seq=row.seq,
            run_id=row.run_id,
            commit_sha=row.commit_sha,
            kind=row.kind,
            outcome=row.outcome,
            payload=dict(row.payload) if row.payload else None,
            source_identity=row.source_identity,
            timestamp=row.timestamp,
        )


@dataclass(frozen=True)
class EvidenceSnapshot:
    """All evidence for one run as read by a single statement.

    high_water is the largest seq in the snapshot (0 when empty); nothing
    appended after the read can appear in an evaluation over this snapshot.
    """

    run_id: str
    high_water: int
    items: tuple[EvidenceItem, ...]
