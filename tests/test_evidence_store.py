"""Evidence Store tests: append-only writes, idempotent duplicates, quarantine, reads."""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from attestgate.errors import DuplicateEvidence, InvalidEvidence
from attestgate.evidence.notifier import EvidenceNotifier, notifier
from attestgate.evidence.repository import get_evidence, load_snapshot, query_evidence
from attestgate.evidence.store import ingest_evidence, parse_submission
from attestgate.models import EvidenceQuarantine, EvidenceRecord
from tests.test_constants import OTHER_COMMIT, TEST_COMMIT


def _raw(**overrides) -> dict:
    raw = {
        "run_id": "run-1",
        "commit_sha": TEST_COMMIT,
        "kind": "secret_scan",
        "outcome": "pass",
        "payload": {"digest": "sha256:abc", "findings": {"critical": 0}},
        "source_identity": "gitleaks@ci",
        "timestamp": "2026-03-01T12:00:00Z",
    }
    raw.update(overrides)
    return raw


def test_append_assigns_increasing_sequence(db: Session, add_evidence) -> None:
    first = add_evidence("secret_scan")
    second = add_evidence("signature")
    assert second.seq > first.seq
    assert first.received_at.tzinfo is not None


def test_duplicate_tuple_raises_with_existing_record(db: Session, add_evidence) -> None:
    ts = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    first = add_evidence("secret_scan", timestamp=ts)
    with pytest.raises(DuplicateEvidence) as exc:
        add_evidence("secret_scan", "fail", timestamp=ts)
    assert exc.value.existing.seq == first.seq
    assert db.query(EvidenceRecord).count() == 1


def test_ingest_duplicate_is_idempotent(db: Session) -> None:
    record, duplicate = ingest_evidence(db, _raw())
    again, duplicate_again = ingest_evidence(db, _raw())
    assert duplicate is False
    assert duplicate_again is True
    assert again.seq == record.seq


def test_same_kind_from_other_source_is_a_new_record(db: Session) -> None:
    ingest_evidence(db, _raw())
    _, duplicate = ingest_evidence(db, _raw(source_identity="trufflehog@ci"))
    assert duplicate is False
    assert db.query(EvidenceRecord).count() == 2


@pytest.mark.parametrize(
    "raw",
    [
        _raw(kind="telepathy"),
        _raw(outcome="maybe"),
        _raw(commit_sha="not-a-sha"),
        _raw(timestamp="2026-03-01T12:00:00"),  # naive
        _raw(source_identity=""),
        _raw(unexpected="field"),
        {k: v for k, v in _raw().items() if k != "run_id"},
    ],
)
def test_malformed_submission_is_quarantined(db: Session, raw: dict) -> None:
    with pytest.raises(InvalidEvidence):
        ingest_evidence(db, raw)
    assert db.query(EvidenceRecord).count() == 0
    quarantined = db.query(EvidenceQuarantine).all()
    assert len(quarantined) == 1
    assert quarantined[0].reason.startswith("malformed")


def test_non_object_submission_is_quarantined(db: Session) -> None:
    with pytest.raises(InvalidEvidence, match="JSON object"):
        ingest_evidence(db, ["not", "an", "object"])
    row = db.query(EvidenceQuarantine).one()
    assert "raw" in row.payload


def test_untrusted_source_is_quarantined(db: Session, settings, monkeypatch) -> None:
    monkeypatch.setattr(settings, "evidence_trusted_sources", ["cosign@release"])
    with pytest.raises(InvalidEvidence, match="untrusted"):
        ingest_evidence(db, _raw())
    assert db.query(EvidenceRecord).count() == 0
    assert db.query(EvidenceQuarantine).one().reason == "untrusted source identity"

    record, _ = ingest_evidence(db, _raw(source_identity="cosign@release"))
    assert record.seq is not None


def test_future_timestamp_beyond_skew_is_rejected(db: Session, settings, monkeypatch) -> None:
    monkeypatch.setattr(settings, "max_clock_skew_seconds", 60)
    now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    ok = _raw(timestamp=(now + timedelta(seconds=60)).isoformat())
    assert parse_submission(db, ok, now=now).kind == "secret_scan"
    late = _raw(timestamp=(now + timedelta(seconds=61)).isoformat())
    with pytest.raises(InvalidEvidence, match="future"):
        parse_submission(db, late, now=now)


def test_query_is_newest_first_and_filters(db: Session, add_evidence) -> None:
    base = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    a = add_evidence("secret_scan", timestamp=base)
    b = add_evidence("signature", timestamp=base + timedelta(seconds=10))
    c = add_evidence("secret_scan", timestamp=base + timedelta(seconds=20), source="other")
    add_evidence("secret_scan", run_id="run-2", timestamp=base)

    assert [r.seq for r in query_evidence(db, "run-1")] == [c.seq, b.seq, a.seq]
    assert [r.seq for r in query_evidence(db, "run-1", kind="secret_scan")] == [c.seq, a.seq]
    as_of = base + timedelta(seconds=10)
    assert [r.seq for r in query_evidence(db, "run-1", as_of=as_of)] == [b.seq, a.seq]
    assert [r.seq for r in query_evidence(db, "run-1", high_water=a.seq)] == [a.seq]


def test_get_evidence_by_sequence(db: Session, add_evidence) -> None:
    record = add_evidence("sbom", payload={"digest": "sha256:def"})
    fetched = get_evidence(db, record.seq)
    assert fetched.payload == {"digest": "sha256:def"}
    assert get_evidence(db, record.seq + 100) is None


def test_snapshot_records_high_water(db: Session, add_evidence) -> None:
    assert load_snapshot(db, "run-1").high_water == 0
    add_evidence("secret_scan")
    last = add_evidence("signature", commit_sha=OTHER_COMMIT)
    snap = load_snapshot(db, "run-1")
    assert snap.high_water == last.seq
    assert [i.seq for i in snap.items] == sorted((i.seq for i in snap.items), reverse=True)

    # Later appends do not change a snapshot already taken
    add_evidence("sbom")
    assert len(snap.items) == 2


def test_evidence_may_arrive_before_its_run_exists(db: Session) -> None:
    record, _ = ingest_evidence(db, _raw(run_id="not-yet-created"))
    assert record.run_id == "not-yet-created"


def test_append_notifies_subscribers_after_commit(db: Session) -> None:
    seen = []
    notifier.subscribe(seen.append)
    record, _ = ingest_evidence(db, _raw())
    notifier.join(timeout=5)
    assert seen == ["run-1"]

    ingest_evidence(db, _raw())  # duplicate: no notification
    notifier.join(timeout=5)
    assert seen == ["run-1"]
    assert record.seq is not None


def test_failing_subscriber_does_not_break_others(caplog) -> None:
    local = EvidenceNotifier()
    seen = []

    def boom(run_id: str) -> None:
        raise RuntimeError("subscriber down")

    local.subscribe(boom)
    local.subscribe(seen.append)
    local.publish("run-9")
    local.join(timeout=5)
    assert seen == ["run-9"]
    assert "Evidence subscriber failed" in caplog.text

    local.unsubscribe(boom)
    local.subscribe(seen.append)  # already subscribed: ignored
    local.publish("run-10")
    local.stop()
    assert seen == ["run-9", "run-10"]


def test_publish_does_not_wait_for_subscribers() -> None:
    local = EvidenceNotifier()
    release = threading.Event()
    seen = []

    def slow(run_id: str) -> None:
        release.wait(5)
        seen.append(run_id)

    local.subscribe(slow)
    started = time.monotonic()
    local.publish("run-1")
    local.publish("run-2")
    assert time.monotonic() - started < 1.0
    assert seen == []

    release.set()
    local.stop()
    assert seen == ["run-1", "run-2"]
