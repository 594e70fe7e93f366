"""
Pytest configuration and fixtures.

Tests run against a temporary SQLite file; tables are recreated for every test.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from tests.test_constants import (
    TEST_COMMIT,
    TEST_EVIDENCE_TOKEN,
    TEST_GATE_TOKEN,
    TEST_OVERRIDE_TOKEN,
    TEST_POLICY,
)

# Force test DB when pytest runs; don't inherit from .env
_TMP_DIR = tempfile.mkdtemp(prefix="attestgate-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_TMP_DIR) / 'attestgate_test.db'}"
os.environ["GATE_TOKEN"] = TEST_GATE_TOKEN
os.environ["EVIDENCE_TOKEN"] = TEST_EVIDENCE_TOKEN
os.environ["OVERRIDE_TOKEN"] = TEST_OVERRIDE_TOKEN
os.environ["EVIDENCE_TRUSTED_SOURCES"] = ""
os.environ["AUTO_RETRY_BLOCKED"] = "false"
os.environ["POLICY_DIR"] = "policies"

@pytest.fixture
def db() -> Iterator[Session]:
    """Database session on freshly created tables. Commits are real; tables are dropped after."""
    from attestgate.db.session import Base, SessionLocal, engine
    from attestgate.evidence.notifier import notifier
    import attestgate.models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        # Pending deliveries must not outlive the tables
        notifier.stop()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db: Session) -> TestClient:
    """FastAPI test client. Each request gets its own session, as in production."""
    from attestgate.main import app

    return TestClient(app)


@pytest.fixture
def client_with_db(db: Session) -> Iterator[TestClient]:
    """TestClient with get_db overridden to use the test db session."""
    from attestgate.db.session import get_db
    from attestgate.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    c = TestClient(app)
    yield c
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture(autouse=True)
def _reset_notifier() -> Iterator[None]:
    """No evidence subscribers leak between tests."""
    from attestgate.evidence.notifier import notifier

    notifier.clear()
    yield
    notifier.clear()
    notifier.stop()


@pytest.fixture
def settings():
    """The cached Settings instance; patch attributes with monkeypatch.setattr."""
    from attestgate.config import get_settings

    return get_settings()


@pytest.fixture
def policy(db: Session):
    """Publish TEST_POLICY and return its row."""
    from attestgate.policy.registry import publish_policy

    return publish_policy(db, TEST_POLICY, activated_by="tests")


@pytest.fixture
def run(db: Session, policy):
    """A staging run at its first stage."""
    from attestgate.gate.controller import create_run

    return create_run(db, "staging", TEST_COMMIT, run_id="run-1")


@pytest.fixture
def add_evidence(db: Session):
    """Append evidence through the store. Defaults: run-1, TEST_COMMIT, pass, now."""
    from attestgate.evidence.store import append_evidence
    from attestgate.schemas.evidence import EvidenceSubmission

    def _add(
        kind: str,
        outcome: str = "pass",
        *,
        run_id: str = "run-1",
        commit_sha: str = TEST_COMMIT,
        source: str = "ci-scanner",
        timestamp: datetime | None = None,
        payload: dict | None = None,
    ):
        submission = EvidenceSubmission(
            run_id=run_id,
            commit_sha=commit_sha,
            kind=kind,
            outcome=outcome,
            payload=payload,
            source_identity=source,
            timestamp=timestamp or datetime.now(UTC),
        )
        return append_evidence(db, submission)

    return _add
