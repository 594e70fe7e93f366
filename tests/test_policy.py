"""Policy model tests: validation, loading, composition, checksums, versioned publication."""

from __future__ import annotations

import copy
from pathlib import Path

import pytest
from sqlalchemy.orm import Session

from attestgate.errors import NoPolicyDefined
from attestgate.policy.loader import (
    compute_policy_checksum,
    load_policy_document,
    load_policy_snapshot,
)
from attestgate.policy.model import PolicySnapshot
from attestgate.policy.registry import (
    get_active_policy,
    list_policy_versions,
    publish_policy,
)
from attestgate.policy.validator import PolicyValidationError, validate_policy_document
from tests.test_constants import TEST_POLICY


def _doc(**changes) -> dict:
    doc = copy.deepcopy(TEST_POLICY)
    doc.update(changes)
    return doc


# ── Validation ─────────────────────────────────────────────────────


def test_test_policy_is_valid() -> None:
    validate_policy_document(TEST_POLICY)


@pytest.mark.parametrize(
    "mutate,message",
    [
        (lambda d: d.pop("version"), "version"),
        (lambda d: d.update(environments={}), "environments"),
        (lambda d: d["environments"]["staging"].update(stages=[]), "at least one stage"),
        (lambda d: d["environments"]["staging"].update(stages=["build", "build"]), "duplicate stage"),
        (lambda d: d["base"]["rules"][0].update(kind="telepathy"), "unknown evidence kind"),
        (lambda d: d["base"]["rules"][0].update(outcome="maybe"), "'outcome'"),
        (lambda d: d["base"]["rules"][0].update(freshness_seconds=0), "freshness_seconds"),
        (lambda d: d["base"]["rules"][0].update(colour="red"), "unknown fields"),
        (lambda d: d["base"]["rules"].append(dict(d["base"]["rules"][0])), "duplicate rule"),
        (
            lambda d: d["base"]["rules"][0].update(last_n=2, min_reviewers=2),
            "cannot be combined",
        ),
        (
            lambda d: d["base"]["rules"][0].update(thresholds=[{"path": "findings.critical"}]),
            "at least one of 'min' or 'max'",
        ),
        (
            lambda d: d["base"]["rules"][0].update(
                thresholds=[{"path": "x", "min": 5, "max": 1}]
            ),
            "'min' must not exceed 'max'",
        ),
        (
            lambda d: d["environments"]["staging"].update(
                rules=[{"stage": "release", "kind": "sbom"}]
            ),
            "is not one of",
        ),
    ],
)
def test_invalid_documents_are_rejected(mutate, message) -> None:
    doc = copy.deepcopy(TEST_POLICY)
    mutate(doc)
    with pytest.raises(PolicyValidationError, match=message):
        validate_policy_document(doc)


# ── Loading ────────────────────────────────────────────────────────


def test_bundled_policy_directory_loads() -> None:
    """The policies/ directory shipped with the service is valid."""
    snapshot = load_policy_snapshot("policies")
    assert snapshot.stages_for("production") == ("build", "package", "verify", "deploy")
    approval = snapshot.find_rule("production", "deploy", "deploy/approval")
    assert approval is not None
    assert approval.min_reviewers == 2
    sast = snapshot.find_rule("staging", "build", "build/sast")
    assert sast.thresholds[1].max == 20


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_load_policy_document_from_directory(tmp_path: Path) -> None:
    _write(
        tmp_path / "base.yaml",
        "version: v7\nrules:\n  - {stage: build, kind: secret_scan}\n",
    )
    _write(tmp_path / "environments" / "dev.yaml", "stages: [build]\n")
    doc = load_policy_document(tmp_path)
    assert doc == {
        "version": "v7",
        "base": {"rules": [{"stage": "build", "kind": "secret_scan"}]},
        "environments": {"dev": {"stages": ["build"]}},
    }


def test_load_policy_document_missing_directory(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_policy_document(tmp_path / "nope")


def test_load_policy_document_invalid_yaml(tmp_path: Path) -> None:
    _write(tmp_path / "base.yaml", "version: [unclosed\n")
    with pytest.raises(PolicyValidationError, match="invalid YAML"):
        load_policy_document(tmp_path)


# ── Composition and resolution ─────────────────────────────────────


def _snapshot(doc: dict) -> PolicySnapshot:
    return PolicySnapshot.from_document(doc, compute_policy_checksum(doc))


def test_environment_rule_replaces_base_rule_in_place() -> None:
    snap = _snapshot(TEST_POLICY)
    staging = snap.resolve("staging", "deploy")
    production = snap.resolve("production", "deploy")
    assert [r.rule_id for r in staging] == ["deploy/approval"]
    assert staging[0].min_reviewers == 1
    assert production[0].min_reviewers == 2


def test_environment_only_rules_are_appended() -> None:
    doc = copy.deepcopy(TEST_POLICY)
    doc["environments"]["staging"]["rules"] = [{"stage": "build", "kind": "sbom"}]
    rules = _snapshot(doc).resolve("staging", "build")
    assert [r.kind for r in rules] == ["secret_scan", "signature", "sbom"]


def test_base_rules_for_stages_outside_environment_are_dropped() -> None:
    doc = copy.deepcopy(TEST_POLICY)
    doc["environments"]["staging"]["stages"] = ["build"]
    snap = _snapshot(doc)
    assert snap.stages_for("staging") == ("build",)
    assert all(r.stage == "build" for r in snap.environment("staging").rules)


def test_resolve_unknown_environment_or_stage_fails_closed() -> None:
    snap = _snapshot(TEST_POLICY)
    with pytest.raises(NoPolicyDefined):
        snap.resolve("qa", "build")
    with pytest.raises(NoPolicyDefined):
        snap.resolve("staging", "release")


def test_resolve_stage_without_rules_fails_closed() -> None:
    doc = copy.deepcopy(TEST_POLICY)
    doc["environments"]["staging"]["stages"] = ["build", "smoke", "deploy"]
    with pytest.raises(NoPolicyDefined, match="no rules"):
        _snapshot(doc).resolve("staging", "smoke")


def test_snapshot_is_immutable() -> None:
    snap = _snapshot(TEST_POLICY)
    with pytest.raises(TypeError):
        snap.environments["qa"] = snap.environments["staging"]
    with pytest.raises(AttributeError):
        snap.version = "other"


# ── Checksums and publication ──────────────────────────────────────


def test_checksum_ignores_key_order() -> None:
    reordered = dict(reversed(list(copy.deepcopy(TEST_POLICY).items())))
    assert compute_policy_checksum(reordered) == compute_policy_checksum(TEST_POLICY)
    assert compute_policy_checksum(_doc(version="test-2")) != compute_policy_checksum(TEST_POLICY)


def test_no_active_policy_before_first_publish(db: Session) -> None:
    assert get_active_policy(db) is None


def test_publish_makes_latest_version_active(db: Session) -> None:
    first = publish_policy(db, TEST_POLICY, activated_by="alice")
    second = publish_policy(db, _doc(version="test-2"), activated_by="bob")
    active = get_active_policy(db)
    assert active.version == "test-2"
    assert active.policy_id == second.id
    assert [v.version for v in list_policy_versions(db)] == ["test-1", "test-2"]
    assert first.checksum != second.checksum


def test_republishing_active_document_is_a_no_op(db: Session) -> None:
    first = publish_policy(db, TEST_POLICY)
    again = publish_policy(db, copy.deepcopy(TEST_POLICY))
    assert again.id == first.id
    assert len(list_policy_versions(db)) == 1


def test_publish_rejects_invalid_document(db: Session) -> None:
    with pytest.raises(PolicyValidationError):
        publish_policy(db, _doc(environments={}))
    assert list_policy_versions(db) == []
