"""EvidenceRecord ORM: one immutable attestation from an external producer.

Append-only; no updated_at. seq is assigned by the store and is the only ordering
key; producer timestamps are kept for freshness checks, never for ordering.
No foreign key on run_id: evidence may arrive before its run is created.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from attestgate.db.session import Base
from attestgate.db.types import JSONType, UTCDateTime


class EvidenceRecord(Base):
    """One scan result, signature, approval or other check outcome for a run."""

    __tablename__ = "evidence_records"

    __table_args__ = (
        UniqueConstraint(
            "run_id",
            "kind",
            "source_identity",
            "timestamp",
            name="uq_evidence_records_identity",
        ),
        Index("ix_evidence_records_run_kind_seq", "run_id", "kind", "seq"),
    )

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(128), nullable=False)
    commit_sha: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[str] = mapped_column(String(64), nullable=False)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    source_identity: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(UTC), nullable=False
    )
