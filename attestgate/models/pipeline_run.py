"""PipelineRun model. Owned by the gate controller; status changes only via stage transitions."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from attestgate.db.session import Base
from attestgate.db.types import JSONType, UTCDateTime


class PipelineRun(Base):
    """One pipeline run moving through the stages of its target environment."""

    __tablename__ = "pipeline_runs"

    __table_args__ = (Index("ix_pipeline_runs_status", "status"),)

    run_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    environment: Mapped[str] = mapped_column(String(64), nullable=False)
    commit_sha: Mapped[str] = mapped_column(String(64), nullable=False)
    # Ordered stage names, copied from the active policy when the run is created
    stages: Mapped[list] = mapped_column(JSONType, nullable=False)
    current_stage: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(UTC), nullable=False
    )
    cancelled_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Optimistic concurrency: UPDATE ... WHERE version = :seen, bumped on every flush
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def next_stage(self) -> str | None:
        """Stage after current_stage, or None when current_stage is the last one."""
        stages = list(self.stages or [])
        try:
            idx = stages.index(self.current_stage)
        except ValueError:
            return None
        return stages[idx + 1] if idx + 1 < len(stages) else None
