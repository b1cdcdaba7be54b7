"""Liveness and readiness checks.

/health answers as long as the process serves requests. /health/ready also
runs SELECT 1 against the database; only the database gates readiness,
object storage is reported but optional.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.dashboard.config import get_settings
from src.dashboard.core.database import get_engine

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _database_error() -> str | None:
    """None if the database answers, else the error text."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("health.database_unreachable", error=str(exc))
        return str(exc)
    return None


@router.get("/health/ready")
async def readiness_check(request: Request):
    checks: dict[str, str] = {}

    database_error = await _database_error()
    checks["database"] = "ok" if database_error is None else "error"
    if database_error is not None:
        checks["database_error"] = database_error

    storage = getattr(request.app.state, "object_storage", None)
    checks["object_storage"] = "ok" if storage is not None else "not_configured"

    ready = database_error is None
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "degraded", "checks": checks},
    )
