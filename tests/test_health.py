"""
Health endpoint tests.
"""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient


def test_health_returns_ok_when_db_connected(client: TestClient) -> None:
    """Health endpoint returns 200 with database connected."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["database"] == "connected"
    assert "version" in data


def test_health_returns_503_when_db_unreachable(client: TestClient) -> None:
    """Health endpoint returns 503 when database is unreachable."""
    from attestgate.db import engine

    with (
        patch("attestgate.main.check_db_connection"),  # no-op: lifespan succeeds
        patch.object(engine, "connect", side_effect=Exception("Connection refused")),
    ):
        response = client.get("/health")
    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "unhealthy"
    assert data["database"] == "disconnected"
    assert "version" in data


def test_lifespan_subscribes_blocked_retry_when_enabled(db, settings, monkeypatch) -> None:
    """With AUTO_RETRY_BLOCKED the app re-evaluates blocked runs on new evidence."""
    from attestgate.evidence.notifier import notifier
    from attestgate.gate.controller import on_evidence_appended
    from attestgate.main import app

    monkeypatch.setattr(settings, "auto_retry_blocked", True)
    with TestClient(app):
        assert on_evidence_appended in notifier._subscribers
    assert on_evidence_appended not in notifier._subscribers
    assert notifier._executor is None


def test_lifespan_fails_when_db_unreachable() -> None:
    from attestgate.main import app

    mock = MagicMock(side_effect=Exception("Connection refused"))
    with patch("attestgate.main.check_db_connection", mock):
        with pytest.raises(Exception, match="Connection refused"):
            with TestClient(app):
                pass
