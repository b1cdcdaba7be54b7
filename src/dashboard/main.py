"""FastAPI application factory.

create_app() assembles the dashboard API: the {"error": ...} exception
handler, CORS, request logging and Prometheus middleware, the v1 routers
and /metrics. The lifespan creates the database schema and wires the
services that routes resolve from app.state (see api/deps.py).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from src.dashboard.config import Environment, Settings, get_settings
from src.dashboard.core.database import close_db, get_session, init_db
from src.dashboard.core.errors import register_error_handlers
from src.dashboard.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.dashboard.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.dashboard.api.v1.router import router as v1_router

logger = structlog.get_logger(__name__)


def _build_services(app: FastAPI, settings: Settings) -> None:
    """Attach repositories, webhook handler, identity clients and storage to app.state."""
    from src.dashboard.file_sharing.storage import create_object_storage
    from src.dashboard.meetings.ingest import ProsodyEventHandler
    from src.dashboard.meetings.repository import MeetingRepository
    from src.dashboard.organizations.repository import OrganizationRepository
    from src.dashboard.services.identity import IdentityProviderClient, KeycloakAdminClient

    repository = MeetingRepository(session_factory=get_session)
    app.state.meeting_repository = repository
    app.state.prosody_event_handler = ProsodyEventHandler(repository)
    app.state.identity_client = IdentityProviderClient(
        settings.keycloak_userinfo_url, timeout=settings.KEYCLOAK_TIMEOUT
    )
    app.state.organization_repository = OrganizationRepository(session_factory=get_session)

    # Organization routes answer 503 without a service account
    app.state.keycloak_admin = None
    if settings.KEYCLOAK_ADMIN_CLIENT_ID and settings.KEYCLOAK_ADMIN_CLIENT_SECRET:
        app.state.keycloak_admin = KeycloakAdminClient(
            settings.KEYCLOAK_URL,
            settings.KEYCLOAK_REALM,
            settings.KEYCLOAK_ADMIN_CLIENT_ID,
            settings.KEYCLOAK_ADMIN_CLIENT_SECRET,
            default_domain=settings.KEYCLOAK_ORGANIZATION_DOMAIN,
            timeout=settings.KEYCLOAK_TIMEOUT,
        )
    else:
        logger.warning("startup.keycloak_admin_not_configured")

    # Without a bucket the file sharing routes answer 503; the rest still serves
    app.state.object_storage = None
    if not settings.S3_BUCKET:
        logger.warning("startup.object_storage_not_configured")
    else:
        try:
            app.state.object_storage = create_object_storage(settings)
        except Exception:
            logger.warning("startup.object_storage_init_failed", exc_info=True)

    if not settings.PROSODY_WEBHOOK_SECRET:
        logger.warning("startup.webhook_secret_not_configured")
    if not settings.FILE_SHARING_JWT_PUBLIC_KEY:
        logger.warning("startup.file_sharing_key_not_configured")

    logger.info(
        "startup.services_initialized",
        identity_provider=settings.keycloak_userinfo_url,
        object_storage=app.state.object_storage is not None,
        keycloak_admin=app.state.keycloak_admin is not None,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    configure_structlog()
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    await init_db()
    _build_services(app, settings)

    yield

    logger.info("shutdown.closing_database")
    await close_db()


def _allowed_origins(raw: str) -> list[str]:
    if raw.strip() == "*":
        return ["*"]
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    is_production = settings.ENVIRONMENT == Environment.production

    app = FastAPI(
        title="Meeting Dashboard API",
        version="0.1.0",
        description=(
            "Meeting history, organizations, conferencing webhooks and in-meeting file sharing"
        ),
        lifespan=lifespan,
        docs_url=None if is_production else "/docs",
        redoc_url=None,
    )
    register_error_handlers(app)

    # Middleware is added in reverse order (last added = outermost):
    # metrics -> logging -> CORS -> routes
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings.CORS_ALLOWED_ORIGINS),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)
    app.add_api_route(
        "/metrics",
        get_metrics_response,
        methods=["GET"],
        include_in_schema=False,
        response_class=Response,
    )

    return app


# Module-level app for uvicorn
app = create_app()
