"""
Application configuration. Loads from environment variables.
Tokens and other secrets must never be hardcoded.
"""

import os

from dotenv import load_dotenv

load_dotenv()
from functools import lru_cache


@lru_cache(maxsize=1)
def get_settings() -> "Settings":
    """Return cached settings instance."""
    return Settings()


def _split_csv(raw: str) -> list[str]:
    return [s.strip() for s in raw.split(",") if s.strip()]


class Settings:
    """Application settings loaded from environment."""

    # App
    app_name: str = "AttestGate"
    debug: bool = False

    # Database (postgresql+psycopg for psycopg3; sqlite:/// is accepted for local runs)
    database_url: str = "postgresql+psycopg://localhost:5432/attestgate_dev"
    db_connect_timeout: int = 10  # seconds

    # API tokens: gate (CI runners, operators), evidence (scanners/signers), override (humans)
    gate_token: str = ""
    evidence_token: str = ""
    override_token: str = ""

    # Evidence ingestion. Empty allowlist = any source identity accepted.
    evidence_trusted_sources: list[str] = []
    max_clock_skew_seconds: int = 300

    # Gate controller bounds (seconds)
    advance_lock_timeout: float = 5.0
    evaluation_timeout: float = 10.0

    # Re-evaluate Blocked runs when new evidence arrives for them
    auto_retry_blocked: bool = True

    # Policy files (base.yaml + environments/*.yaml)
    policy_dir: str = "policies"

    # Audit export
    audit_export_page_size: int = 500

    def __init__(self) -> None:
        self.app_name = os.getenv("APP_NAME", self.app_name)
        self.debug = os.getenv("DEBUG", "false").lower() == "true"

        default_user = os.getenv("PGUSER") or os.getenv("USER") or "postgres"
        default_url = (
            f"postgresql+psycopg://{default_user}:"
            f"{os.getenv('PGPASSWORD', '')}@"
            f"{os.getenv('PGHOST', 'localhost')}:"
            f"{os.getenv('PGPORT', '5432')}/"
            f"{os.getenv('PGDATABASE', 'attestgate_dev')}"
        )
        raw_url = os.getenv("DATABASE_URL", default_url)
        # Ensure psycopg3 driver if URL uses generic postgresql://
        if raw_url.startswith("postgresql://") and not raw_url.startswith("postgresql+psycopg"):
            raw_url = raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
        self.database_url = raw_url
        self.db_connect_timeout = int(os.getenv("DB_CONNECT_TIMEOUT", str(self.db_connect_timeout)))

        self.gate_token = os.getenv("GATE_TOKEN", "")
        self.evidence_token = os.getenv("EVIDENCE_TOKEN", "")
        self.override_token = os.getenv("OVERRIDE_TOKEN", "")

        self.evidence_trusted_sources = _split_csv(os.getenv("EVIDENCE_TRUSTED_SOURCES", ""))
        self.max_clock_skew_seconds = int(
            os.getenv("MAX_CLOCK_SKEW_SECONDS", str(self.max_clock_skew_seconds))
        )

        self.advance_lock_timeout = float(
            os.getenv("ADVANCE_LOCK_TIMEOUT", str(self.advance_lock_timeout))
        )
        self.evaluation_timeout = float(
            os.getenv("EVALUATION_TIMEOUT", str(self.evaluation_timeout))
        )
        self.auto_retry_blocked = os.getenv("AUTO_RETRY_BLOCKED", "true").lower() == "true"

        self.policy_dir = os.getenv("POLICY_DIR", self.policy_dir)
        self.audit_export_page_size = int(
            os.getenv("AUDIT_EXPORT_PAGE_SIZE", str(self.audit_export_page_size))
        )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")
