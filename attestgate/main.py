"""
AttestGate FastAPI application entry point.

Flow: evidence in → policy resolved per check → evaluate → decision recorded → run advances
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from attestgate import __version__
from attestgate.config import get_settings
from attestgate.db.session import check_db_connection, engine

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    from attestgate.evidence.notifier import notifier
    from attestgate.gate.controller import on_evidence_appended

    settings = get_settings()
    logger.info("AttestGate starting")
    try:
        try:
            check_db_connection()
            logger.info("Database connection verified")
        except Exception as e:
            logger.critical("Database unreachable: %s", e)
            raise

        for name in ("gate_token", "evidence_token", "override_token"):
            if not getattr(settings, name):
                logger.warning("%s is not set; endpoints that need it will reject every call", name.upper())

        if settings.auto_retry_blocked:
            notifier.subscribe(on_evidence_appended)
            logger.info("Blocked runs will be re-evaluated when new evidence arrives")

        yield
    finally:
        notifier.unsubscribe(on_evidence_appended)
        notifier.stop()
        logger.info("AttestGate shutting down")
        engine.dispose()
        logger.info("Database connection pool closed")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    from attestgate.api.evidence import router as evidence_router
    from attestgate.api.runs import router as runs_router

    app.include_router(evidence_router, prefix="/api", tags=["evidence"])
    app.include_router(runs_router, prefix="/api/runs", tags=["runs"])

    # Operator/script endpoints (token-authenticated)
    from attestgate.api.internal import router as internal_router

    app.include_router(internal_router, tags=["internal"])

    @app.get("/health")
    def health() -> dict:
        """Health check endpoint. Confirms DB connectivity."""
        from sqlalchemy import text

        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return {
                "status": "ok",
                "version": __version__,
                "database": "connected",
            }
        except Exception:
            from fastapi.responses import JSONResponse

            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "version": __version__,
                    "database": "disconnected",
                },
            )

    return app


app = create_app()
