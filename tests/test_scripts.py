"""Tests for the operator scripts in scripts/ (run as subprocesses, as CI would)."""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

from sqlalchemy.orm import Session

from attestgate.gate.controller import cancel_run
from attestgate.models import PolicyVersion

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def run_script(name: str, *args: str) -> subprocess.CompletedProcess[str]:
    """Run scripts/<name> with the test environment (DATABASE_URL points at the test DB)."""
    return subprocess.run(
        [sys.executable, str(PROJECT_ROOT / "scripts" / name), *args],
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=60,
        env=os.environ.copy(),
    )


class TestPublishPolicy:
    def test_dry_run_validates_bundled_policies(self, db: Session) -> None:
        result = run_script("publish_policy.py", "--dry-run")
        assert result.returncode == 0, result.stderr
        assert "valid=true" in result.stdout
        assert db.query(PolicyVersion).count() == 0

    def test_publish_then_republish_is_no_op(self, db: Session) -> None:
        first = run_script("publish_policy.py", "--actor", "ci")
        assert first.returncode == 0, first.stderr
        second = run_script("publish_policy.py", "--actor", "ci")
        assert second.returncode == 0, second.stderr
        assert db.query(PolicyVersion).count() == 1
        assert db.query(PolicyVersion).one().activated_by == "ci"

    def test_missing_directory_fails(self, db: Session, tmp_path: Path) -> None:
        result = run_script("publish_policy.py", "--policy-dir", str(tmp_path / "missing"))
        assert result.returncode == 1
        assert "ERROR" in result.stderr


class TestAdvanceRun:
    def test_exit_codes_follow_stage_outcome(self, db: Session, run, add_evidence) -> None:
        blocked = run_script("advance_run.py", "run-1")
        assert blocked.returncode == 2, blocked.stderr
        assert "unsatisfied build/secret_scan: missing" in blocked.stdout

        add_evidence("secret_scan")
        add_evidence("signature")
        admitted = run_script("advance_run.py", "run-1")
        assert admitted.returncode == 0, admitted.stderr
        assert "status=admitted" in admitted.stdout

    def test_rejected_exits_3(self, db: Session, run, add_evidence) -> None:
        add_evidence("secret_scan", "fail")
        add_evidence("signature")
        assert run_script("advance_run.py", "run-1").returncode == 3

    def test_cancelled_exits_4(self, db: Session, run) -> None:
        cancel_run(db, "run-1", "ops")
        assert run_script("advance_run.py", "run-1").returncode == 4

    def test_unknown_run_exits_1(self, db: Session, policy) -> None:
        result = run_script("advance_run.py", "missing")
        assert result.returncode == 1
        assert "RunNotFound" in result.stderr


class TestExportAudit:
    def test_export_writes_ndjson_and_verifies(self, db: Session, run, tmp_path: Path) -> None:
        run_script("advance_run.py", "run-1")
        out = tmp_path / "audit.ndjson"
        result = run_script("export_audit.py", "--output", str(out), "--verify")
        assert result.returncode == 0, result.stderr
        entries = [json.loads(line) for line in out.read_text().splitlines()]
        assert len(entries) == 1
        assert entries[0]["run_id"] == "run-1"
        assert "exported=1" in result.stderr


class TestRetryBlocked:
    def test_retry_blocked_reports_counts(self, db: Session, run, add_evidence) -> None:
        run_script("advance_run.py", "run-1")
        add_evidence("secret_scan")
        add_evidence("signature")
        result = run_script("retry_blocked.py")
        assert result.returncode == 0, result.stderr
        assert "advanced=1" in result.stdout
