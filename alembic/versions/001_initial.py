"""Initial schema: pipeline runs, evidence store, policy versions, decisions.

Revision ID: 001
Revises:
Create Date: 2026-10-19

evidence_records and decisions are append-only. No foreign keys from evidence
to runs: evidence may be submitted before its run is registered.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "pipeline_runs",
        sa.Column("run_id", sa.String(length=128), nullable=False),
        sa.Column("environment", sa.String(length=64), nullable=False),
        sa.Column("commit_sha", sa.String(length=64), nullable=False),
        sa.Column("stages", _JSON, nullable=False),
        sa.Column("current_stage", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_by", sa.String(length=255), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("run_id"),
    )
    op.create_index("ix_pipeline_runs_status", "pipeline_runs", ["status"], unique=False)

    # evidence_records: seq is the store-assigned EvidenceId and the only ordering key
    op.create_table(
        "evidence_records",
        sa.Column("seq", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("run_id", sa.String(length=128), nullable=False),
        sa.Column("commit_sha", sa.String(length=64), nullable=False),
        sa.Column("kind", sa.String(length=64), nullable=False),
        sa.Column("outcome", sa.String(length=16), nullable=False),
        sa.Column("payload", _JSON, nullable=True),
        sa.Column("source_identity", sa.String(length=255), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("seq"),
        sa.UniqueConstraint(
            "run_id",
            "kind",
            "source_identity",
            "timestamp",
            name="uq_evidence_records_identity",
        ),
    )
    op.create_index(
        "ix_evidence_records_run_kind_seq",
        "evidence_records",
        ["run_id", "kind", "seq"],
        unique=False,
    )

    op.create_table(
        "evidence_quarantine",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("payload", _JSON, nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "policy_versions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("version", sa.String(length=64), nullable=False),
        sa.Column("checksum", sa.String(length=64), nullable=False),
        sa.Column("document", _JSON, nullable=False),
        sa.Column("activated_by", sa.String(length=255), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_policy_versions_version", "policy_versions", ["version"], unique=False
    )

    # decisions: hash-chained per run; (run_id, sequence) unique so racing writers collide
    op.create_table(
        "decisions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("decision_id", sa.Uuid(), nullable=False),
        sa.Column("run_id", sa.String(length=128), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("stage", sa.String(length=64), nullable=False),
        sa.Column("decision_type", sa.String(length=16), nullable=False),
        sa.Column("outcome", sa.String(length=16), nullable=False),
        sa.Column("resulting_status", sa.String(length=32), nullable=False),
        sa.Column("decided_by", sa.String(length=255), nullable=False),
        sa.Column("justification", sa.Text(), nullable=True),
        sa.Column("waived_rules", _JSON, nullable=False),
        sa.Column("policy_version", sa.String(length=64), nullable=True),
        sa.Column("policy_checksum", sa.String(length=64), nullable=True),
        sa.Column("as_of", sa.DateTime(timezone=True), nullable=False),
        sa.Column("evidence_high_water", sa.Integer(), nullable=False),
        sa.Column("rule_results", _JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("prev_hash", sa.String(length=64), nullable=True),
        sa.Column("entry_hash", sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("decision_id"),
        sa.UniqueConstraint("run_id", "sequence", name="uq_decisions_run_sequence"),
    )
    op.create_index("ix_decisions_run_stage", "decisions", ["run_id", "stage"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_decisions_run_stage", table_name="decisions")
    op.drop_table("decisions")
    op.drop_index("ix_policy_versions_version", table_name="policy_versions")
    op.drop_table("policy_versions")
    op.drop_table("evidence_quarantine")
    op.drop_index("ix_evidence_records_run_kind_seq", table_name="evidence_records")
    op.drop_table("evidence_records")
    op.drop_index("ix_pipeline_runs_status", table_name="pipeline_runs")
    op.drop_table("pipeline_runs")
