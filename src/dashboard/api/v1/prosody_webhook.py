"""Conferencing-server webhook endpoint.

POST /api/prosody-webhook acknowledges immediately and processes the event
in a background task. Authenticated with a shared bearer secret.
"""

from __future__ import annotations

import hmac
import json
from typing import Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response, status

from src.dashboard.api.deps import get_event_handler
from src.dashboard.config import Settings, get_settings
from src.dashboard.core.errors import error_response
from src.dashboard.core.monitoring import webhook_events_total
from src.dashboard.core.security import extract_bearer_token
from src.dashboard.meetings.ingest import WebhookEvent

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["webhooks"])


def _secret_matches(token: str | None, secret: str) -> bool:
    if not token or not secret:
        return False
    return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))


@router.post("/prosody-webhook")
async def prosody_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    handler: Any = Depends(get_event_handler),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Accept a MUC / host event for asynchronous processing."""
    token = extract_bearer_token(request.headers.get("Authorization"))
    if not _secret_matches(token, settings.PROSODY_WEBHOOK_SECRET):
        logger.error("prosody_webhook.unauthorized")
        return error_response("Unauthorized", status.HTTP_401_UNAUTHORIZED)

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("prosody_webhook.invalid_json", exc_info=True)
        return error_response("Invalid JSON in request body", status.HTTP_400_BAD_REQUEST)

    event = WebhookEvent.from_payload(body) if isinstance(body, dict) else None
    if event is None:
        logger.error("prosody_webhook.missing_event_name")
        return error_response("Missing event_name/type", status.HTTP_400_BAD_REQUEST)

    logger.info(
        "prosody_webhook.received",
        event_name=event.event_name,
        room_name=event.room_name or "unknown",
    )
    webhook_events_total.labels(event_name=event.event_name).inc()
    background_tasks.add_task(handler.handle, event)
    return Response(status_code=status.HTTP_200_OK)
