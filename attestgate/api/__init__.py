"""API routes."""

from attestgate.api.evidence import router as evidence_router
from attestgate.api.internal import router as internal_router
from attestgate.api.runs import router as runs_router

__all__ = ["evidence_router", "internal_router", "runs_router"]
