"""Evidence Store write path. Insert-only; duplicate tuples are idempotent; invalid input is quarantined."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attestgate.config import get_settings
from attestgate.errors import DuplicateEvidence, InvalidEvidence
from attestgate.evidence.notifier import notifier
from attestgate.models.evidence_quarantine import EvidenceQuarantine
from attestgate.models.evidence_record import EvidenceRecord
from attestgate.schemas.evidence import EvidenceSubmission

logger = logging.getLogger(__name__)


def quarantine_submission(db: Session, payload: Any, reason: str) -> EvidenceQuarantine:
    """Insert one row into evidence_quarantine and commit. Quarantined rows are never evaluated."""
    if not isinstance(payload, dict):
        payload = {"raw": repr(payload)[:4096]}
    row = EvidenceQuarantine(payload=_json_safe(payload), reason=reason)
    db.add(row)
    db.commit()
    logger.warning(
        "Evidence quarantined: reason=%s run_id=%s source=%s",
        reason,
        payload.get("run_id"),
        payload.get("source_identity"),
    )
    return row


def _json_safe(payload: dict) -> dict:
    """Best-effort JSON-serializable copy of a rejected payload."""
    out: dict = {}
    for key, value in payload.items():
        if isinstance(value, (str, int, float, bool, type(None), list, dict)):
            out[str(key)] = value
        elif isinstance(value, datetime):
            out[str(key)] = value.isoformat()
        else:
            out[str(key)] = repr(value)
    return out


def parse_submission(db: Session, raw: Any, *, now: datetime | None = None) -> EvidenceSubmission:
    """Validate a raw submission; quarantine and raise InvalidEvidence if rejected.

    Beyond schema validation: producer clocks may not run ahead of ours by more
    than MAX_CLOCK_SKEW_SECONDS, and when EVIDENCE_TRUSTED_SOURCES is set the
    source identity must be on it.
    """
    settings = get_settings()
    if not isinstance(raw, dict):
        quarantine_submission(db, raw, "submission must be a JSON object")
        raise InvalidEvidence("submission must be a JSON object")
    try:
        submission = EvidenceSubmission.model_validate(raw)
    except ValidationError as e:
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in e.errors()
        ]
        reason = "; ".join(f"{'.'.join(map(str, x['loc']))}: {x['msg']}" for x in errors)
        quarantine_submission(db, raw, f"malformed: {reason}")
        raise InvalidEvidence(f"malformed evidence: {reason}", errors=errors) from None

    trusted = settings.evidence_trusted_sources
    if trusted and submission.source_identity not in trusted:
        quarantine_submission(db, raw, "untrusted source identity")
        raise InvalidEvidence(f"untrusted source identity: {submission.source_identity!r}")

    now = now or datetime.now(UTC)
    if submission.timestamp - now > timedelta(seconds=settings.max_clock_skew_seconds):
        quarantine_submission(db, raw, "timestamp too far in the future")
        raise InvalidEvidence("evidence timestamp is too far in the future")

    return submission


def _find_existing(db: Session, submission: EvidenceSubmission) -> EvidenceRecord | None:
    return (
        db.query(EvidenceRecord)
        .filter(
            EvidenceRecord.run_id == submission.run_id,
            EvidenceRecord.kind == submission.kind,
            EvidenceRecord.source_identity == submission.source_identity,
            EvidenceRecord.timestamp == submission.timestamp,
        )
        .first()
    )


def append_evidence(db: Session, submission: EvidenceSubmission) -> EvidenceRecord:
    """Append one evidence record and commit; returns the stored row (its seq is the EvidenceId).

    Raises DuplicateEvidence carrying the existing row when the
    (run_id, kind, source_identity, timestamp) tuple was already appended,
    including when a concurrent writer wins the race. Subscribers are notified
    only after the commit.
    """
    existing = _find_existing(db, submission)
    if existing is not None:
        raise DuplicateEvidence(existing)

    row = EvidenceRecord(
        run_id=submission.run_id,
        commit_sha=submission.commit_sha,
        kind=submission.kind,
        outcome=submission.outcome,
        payload=submission.payload,
        source_identity=submission.source_identity,
        timestamp=submission.timestamp,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _find_existing(db, submission)
        if existing is None:
            raise
        raise DuplicateEvidence(existing) from None

    logger.info(
        "Evidence appended: seq=%d run_id=%s kind=%s outcome=%s source=%s",
        row.seq,
        row.run_id,
        row.kind,
        row.outcome,
        row.source_identity,
    )
    notifier.publish(row.run_id)
    return row


def ingest_evidence(db: Session, raw: Any) -> tuple[EvidenceRecord, bool]:
    """Validate and append a raw submission. Returns (record, duplicate).

    Duplicates are not errors to the caller: the existing record is returned.
    Raises InvalidEvidence for rejected submissions (already quarantined).
    """
    submission = parse_submission(db, raw)
    try:
        return append_evidence(db, submission), False
    except DuplicateEvidence as dup:
        logger.info(
            "Duplicate evidence ignored: seq=%s run_id=%s kind=%s source=%s",
            dup.existing.seq,
            submission.run_id,
            submission.kind,
            submission.source_identity,
        )
        return dup.existing, True
