"""FastAPI application wiring for the identity service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api import audit, invitations, routes
from .api.dependencies import configure_services
from .config import Settings, get_settings
from .email import LoggingEmailSender
from .logging_config import configure_logging
from .repository import (
    AuditRepository,
    CredentialRepository,
    InvitationRepository,
    RefreshTokenRepository,
)

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application; the Postgres pool is opened by the lifespan handler."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
        pool = ConnectionPool(settings.database_url, open=False)
        pool.open()
        app.state.pool = pool
        configure_services(
            app,
            settings,
            credentials=CredentialRepository(pool),
            token_ledger=RefreshTokenRepository(pool),
            invitation_ledger=InvitationRepository(pool),
            audit_trail=AuditRepository(pool),
            emails=LoggingEmailSender(settings.frontend_base_url),
        )
        logger.info("%s %s started", settings.app_name, settings.version)
        try:
            yield
        finally:
            pool.close()

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    @app.get("/healthz", tags=["health"])
    def healthz() -> dict[str, str]:
        """Return a minimal readiness indicator used by orchestration systems."""
        return {"status": "ok"}

    @app.get("/metrics", include_in_schema=False)
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(routes.router)
    app.include_router(invitations.router)
    app.include_router(audit.router)
    return app


settings = get_settings()
configure_logging(settings.log_level, settings.log_format)
app = create_app(settings)
