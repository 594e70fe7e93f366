"""Decision ORM: one gate decision for a run/stage. Immutable, hash-chained per run."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from attestgate.db.session import Base
from attestgate.db.types import JSONType, UTCDateTime


class Decision(Base):
    """Audit log entry. Written once by the gate controller; never updated or deleted."""

    __tablename__ = "decisions"

    __table_args__ = (
        # Two writers racing on the same run collide here rather than forking the chain
        UniqueConstraint("run_id", "sequence", name="uq_decisions_run_sequence"),
        Index("ix_decisions_run_stage", "run_id", "stage"),
    )

    # Global insertion order; used as the audit export cursor
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    decision_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, unique=True, default=uuid.uuid4
    )
    run_id: Mapped[str] = mapped_column(String(128), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    stage: Mapped[str] = mapped_column(String(64), nullable=False)
    decision_type: Mapped[str] = mapped_column(String(16), nullable=False)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    resulting_status: Mapped[str] = mapped_column(String(32), nullable=False)
    decided_by: Mapped[str] = mapped_column(String(255), nullable=False)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    waived_rules: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    policy_version: Mapped[str | None] = mapped_column(String(64), nullable=True)
    policy_checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)
    as_of: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    evidence_high_water: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rule_results: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(UTC), nullable=False
    )
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)
