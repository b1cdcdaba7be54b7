"""Structured request logging.

configure_structlog() sets up the processor chain once per process: JSON
lines in production, colored console output elsewhere, with any values
bound through structlog.contextvars merged into every event.

LoggingMiddleware emits one "request_completed" event per request carrying
method, route path, status, duration and the caller. The caller is the
email claim of a dashboard token, or the meeting_id of a file-sharing
token; both are read without verification since this is only for logs.
Health-check traffic (/health*, /metrics) is logged at debug level.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.dashboard.config import Environment, get_settings
from src.dashboard.core.security import extract_bearer_token, get_unverified_claims

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_QUIET_PREFIXES = ("/health", "/metrics")


def configure_structlog() -> None:
    """Configure structlog and the stdlib root logger from settings."""
    settings = get_settings()
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=level)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.ENVIRONMENT == Environment.production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logger.info(
        "logging.configured",
        environment=settings.ENVIRONMENT.value,
        level=logging.getLevelName(level),
    )


def _caller(request: Request) -> dict[str, str]:
    token = extract_bearer_token(request.headers.get("Authorization"))
    # Webhook calls carry a plain shared secret, not a JWT
    claims = get_unverified_claims(token) if token and token.count(".") == 2 else None
    if not claims:
        return {}
    if isinstance(claims.get("email"), str):
        return {"user_email": claims["email"]}
    if claims.get("meeting_id") is not None:
        return {"meeting_id": str(claims["meeting_id"])}
    return {}


def _route_path(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request and tags it with a request id.

    An incoming X-Request-ID is reused so ids can be followed across the
    conferencing server and this API; otherwise a UUID4 is generated. The id
    is bound to structlog contextvars for the request and echoed back.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        start_time = time.monotonic()
        caller = _caller(request)

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "request_error",
                method=request.method,
                path=_route_path(request),
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                **caller,
            )
            raise
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers[REQUEST_ID_HEADER] = request_id
        status_code = response.status_code
        if status_code >= 500:
            log_method = logger.error
        elif status_code >= 400:
            log_method = logger.warning
        elif request.url.path.startswith(_QUIET_PREFIXES):
            log_method = logger.debug
        else:
            log_method = logger.info

        log_method(
            "request_completed",
            method=request.method,
            path=_route_path(request),
            status_code=status_code,
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
            request_id=request_id,
            **caller,
        )
        return response
