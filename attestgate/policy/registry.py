"""Published policy versions. Append-only; the latest row is the active policy.

The active version is looked up at each admission check, so a run is evaluated
against the policy in force at check time, not at run creation.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from attestgate.models.policy_version import PolicyVersion
from attestgate.policy.loader import compute_policy_checksum
from attestgate.policy.model import PolicySnapshot
from attestgate.policy.validator import validate_policy_document

logger = logging.getLogger(__name__)


def get_active_policy_row(db: Session) -> PolicyVersion | None:
    return db.query(PolicyVersion).order_by(PolicyVersion.id.desc()).first()


def snapshot_from_row(row: PolicyVersion) -> PolicySnapshot:
    return PolicySnapshot.from_document(row.document, row.checksum, policy_id=row.id)


def get_active_policy(db: Session) -> PolicySnapshot | None:
    """Return the active policy snapshot, or None when nothing has been published."""
    row = get_active_policy_row(db)
    return snapshot_from_row(row) if row is not None else None


def publish_policy(
    db: Session,
    document: dict[str, Any],
    activated_by: str | None = None,
) -> PolicyVersion:
    """Validate, checksum and publish a policy document; commits.

    Publishing a document identical to the active one is a no-op that returns the
    active row. Publishing an older document again makes it active again as a
    new row; history is never rewritten.

    Raises:
        PolicyValidationError: Invalid document.
    """
    validate_policy_document(document)
    checksum = compute_policy_checksum(document)
    # Build once so composition errors surface before anything is stored
    PolicySnapshot.from_document(document, checksum)

    active = get_active_policy_row(db)
    if active is not None and active.checksum == checksum:
        logger.info("Policy %s already active (checksum=%s)", active.version, checksum[:12])
        return active

    row = PolicyVersion(
        version=document["version"],
        checksum=checksum,
        document=document,
        activated_by=activated_by,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info(
        "Policy published: version=%s checksum=%s id=%d by=%s",
        row.version,
        checksum[:12],
        row.id,
        activated_by,
    )
    return row


def list_policy_versions(db: Session) -> list[PolicyVersion]:
    return db.query(PolicyVersion).order_by(PolicyVersion.id.asc()).all()
