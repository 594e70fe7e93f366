"""
Configuration tests.
"""

import pytest

from attestgate.config import Settings, get_settings


def test_get_settings_returns_settings() -> None:
    """get_settings returns a Settings instance."""
    settings = get_settings()
    assert isinstance(settings, Settings)


def test_settings_has_required_attributes() -> None:
    settings = get_settings()
    assert settings.app_name == "AttestGate"
    assert settings.database_url.startswith("sqlite")
    assert settings.is_sqlite is True
    assert settings.gate_token
    assert settings.evidence_token
    assert settings.override_token


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "MAX_CLOCK_SKEW_SECONDS",
        "ADVANCE_LOCK_TIMEOUT",
        "EVALUATION_TIMEOUT",
        "AUTO_RETRY_BLOCKED",
        "AUDIT_EXPORT_PAGE_SIZE",
        "EVIDENCE_TRUSTED_SOURCES",
    ):
        monkeypatch.delenv(name, raising=False)
    settings = Settings()
    assert settings.max_clock_skew_seconds == 300
    assert settings.advance_lock_timeout == 5.0
    assert settings.evaluation_timeout == 10.0
    assert settings.auto_retry_blocked is True
    assert settings.audit_export_page_size == 500
    assert settings.evidence_trusted_sources == []


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EVIDENCE_TRUSTED_SOURCES", "cosign@release, gitleaks@ci,,")
    monkeypatch.setenv("ADVANCE_LOCK_TIMEOUT", "2.5")
    monkeypatch.setenv("EVALUATION_TIMEOUT", "30")
    monkeypatch.setenv("AUTO_RETRY_BLOCKED", "false")
    monkeypatch.setenv("POLICY_DIR", "/etc/attestgate/policies")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.evidence_trusted_sources == ["cosign@release", "gitleaks@ci"]
        assert settings.advance_lock_timeout == 2.5
        assert settings.evaluation_timeout == 30.0
        assert settings.auto_retry_blocked is False
        assert settings.policy_dir == "/etc/attestgate/policies"
    finally:
        get_settings.cache_clear()


def test_generic_postgres_url_uses_psycopg3(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://gate@db:5432/attestgate")
    settings = Settings()
    assert settings.database_url == "postgresql+psycopg://gate@db:5432/attestgate"
    assert settings.is_sqlite is False


def test_database_url_falls_back_to_pg_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("PGUSER", "gate")
    monkeypatch.setenv("PGPASSWORD", "pw")
    monkeypatch.setenv("PGHOST", "db")
    monkeypatch.setenv("PGPORT", "6543")
    monkeypatch.setenv("PGDATABASE", "gates")
    assert Settings().database_url == "postgresql+psycopg://gate:pw@db:6543/gates"
