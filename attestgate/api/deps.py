"""Shared FastAPI dependencies: DB session and static-token checks.

Three tokens, one per caller class: evidence producers (X-Evidence-Token),
CI runners and operators (X-Gate-Token), and humans granting waivers
(X-Override-Token). Comparisons are constant-time; an unset token disables
the endpoints that need it.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import Header, HTTPException

from attestgate.config import get_settings
from attestgate.db.session import get_db  # re-export

__all__ = [
    "get_db",
    "require_evidence_token",
    "require_gate_token",
    "require_override_token",
]

logger = logging.getLogger(__name__)


def _check_token(presented: str | None, expected: str, name: str) -> None:
    if not expected or not presented or not secrets.compare_digest(presented, expected):
        logger.warning("%s auth failed: invalid or missing token", name)
        raise HTTPException(status_code=403, detail=f"Invalid {name.lower()} token")


def require_gate_token(x_gate_token: str | None = Header(None)) -> None:
    _check_token(x_gate_token, get_settings().gate_token, "Gate")


def require_evidence_token(x_evidence_token: str | None = Header(None)) -> None:
    _check_token(x_evidence_token, get_settings().evidence_token, "Evidence")


def require_override_token(x_override_token: str | None = Header(None)) -> None:
    """Overrides are privileged: they need their own token, not the gate token."""
    _check_token(x_override_token, get_settings().override_token, "Override")
