"""Conferencing-server (Prosody) webhook ingest.

Turns MUC room / occupant / host events into rows of the meeting event log
that the history aggregator reads, and keeps the users table's host-time
accounting current.

Processing runs after the webhook has been acknowledged, so handle() never
raises: failures are logged and the event is dropped.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import BaseModel, Field

from src.dashboard.core.monitoring import webhook_processing_total
from src.dashboard.meetings.schemas import MeetingEventType

logger = structlog.get_logger(__name__)


class WebhookEvent(BaseModel):
    """A webhook delivery reduced to its routing fields plus the raw body."""

    event_name: str
    room_name: str | None = None
    room_jid: str | None = None
    email: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> WebhookEvent | None:
        """Build from a request body; None if it names no event."""
        event_name = payload.get("event_name") or payload.get("type")
        if not event_name:
            return None
        return cls(
            event_name=str(event_name),
            room_name=payload.get("room_name") or payload.get("room"),
            room_jid=payload.get("room_jid"),
            email=payload.get("email"),
            payload=payload,
        )


def _from_epoch(value: Any) -> datetime | None:
    """Convert epoch seconds from the payload to an aware datetime."""
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        logger.warning("prosody_webhook.bad_timestamp", value=value)
        return None


# MUC event name -> (stored event type, payload path of its timestamp)
_ROOM_EVENTS: dict[str, tuple[MeetingEventType, tuple[str, ...] | None]] = {
    "muc-room-created": (MeetingEventType.ROOM_CREATED, ("created_at",)),
    "muc-room-destroyed": (MeetingEventType.ROOM_DESTROYED, ("destroyed_at",)),
    "muc-occupant-joined": (MeetingEventType.OCCUPANT_JOINED, ("occupant", "joined_at")),
    "muc-occupant-left": (MeetingEventType.OCCUPANT_LEFT, ("occupant", "left_at")),
    "muc-role-changed": (MeetingEventType.ROLE_CHANGED, None),
    "muc-affiliation-changed": (MeetingEventType.AFFILIATION_CHANGED, None),
}

HOST_ASSIGNED = "HOST_ASSIGNED"
HOST_LEFT = "HOST_LEFT"


def _lookup(payload: dict[str, Any], path: tuple[str, ...]) -> Any:
    value: Any = payload
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


class ProsodyEventHandler:
    """Routes webhook events to MeetingRepository writes.

    Args:
        repository: MeetingRepository (or a test double with the same writes).
    """

    def __init__(self, repository: Any) -> None:
        self._repository = repository

    async def handle(self, event: WebhookEvent) -> None:
        """Process one event. Logs and swallows failures."""
        outcome = "recorded"
        try:
            if event.event_name in _ROOM_EVENTS:
                await self._handle_room_event(event)
            elif event.event_name in (HOST_ASSIGNED, HOST_LEFT):
                await self._handle_host_event(event)
            else:
                outcome = "ignored"
                logger.info("prosody_webhook.unhandled_event", event_name=event.event_name)
        except Exception:
            outcome = "failed"
            logger.error(
                "prosody_webhook.processing_failed",
                event_name=event.event_name,
                room_name=event.room_name,
                exc_info=True,
            )
        webhook_processing_total.labels(outcome=outcome).inc()

    async def _get_meeting(self, payload: dict[str, Any]) -> Any:
        return await self._repository.get_or_create_meeting(
            room_name=payload.get("room_name"),
            room_jid=payload.get("room_jid"),
            is_breakout=bool(payload.get("is_breakout")),
            breakout_room_id=payload.get("breakout_room_id"),
            is_lobby=bool(payload.get("is_lobby")),
            lobby_room_id=payload.get("lobby_room_id"),
        )

    async def _handle_room_event(self, event: WebhookEvent) -> None:
        event_type, ts_path = _ROOM_EVENTS[event.event_name]
        payload = event.payload
        meeting = await self._get_meeting(payload)
        timestamp = _from_epoch(_lookup(payload, ts_path)) if ts_path else None

        if event_type is MeetingEventType.ROOM_DESTROYED:
            await self._repository.end_meeting(meeting.id, ended_at=timestamp)

        await self._repository.record_event(
            meeting.id, event_type.value, payload, timestamp=timestamp
        )
        logger.info(
            "prosody_webhook.event_recorded",
            meeting_id=meeting.id,
            event_type=event_type.value,
        )

    async def _handle_host_event(self, event: WebhookEvent) -> None:
        if not event.room_name or not event.email:
            logger.error(
                "prosody_webhook.host_event_incomplete",
                event_name=event.event_name,
                room_name=event.room_name,
                has_email=bool(event.email),
            )
            return

        await self._update_host_time(event.event_name, event.room_name, event.email)

        meeting = await self._repository.get_or_create_meeting(
            room_name=event.room_name,
            room_jid=event.room_jid,
        )
        event_type = (
            MeetingEventType.HOST_ASSIGNED
            if event.event_name == HOST_ASSIGNED
            else MeetingEventType.HOST_LEFT
        )
        await self._repository.record_event(
            meeting.id,
            event_type.value,
            {
                "room_name": event.room_name,
                "room_jid": event.room_jid,
                "email": event.email,
            },
        )

    async def _update_host_time(self, event_name: str, room: str, email: str) -> None:
        """Track host sessions on the users table; failures do not block the log write."""
        now = datetime.now(timezone.utc)
        try:
            if event_name == HOST_ASSIGNED:
                found = await self._repository.start_host_session(email, now)
                minutes = None
            else:
                minutes = await self._repository.end_host_session(email, now)
                found = minutes is not None
        except Exception:
            logger.error(
                "prosody_webhook.host_time_failed",
                event_name=event_name,
                email=email,
                room=room,
                exc_info=True,
            )
            return

        if not found:
            logger.error("prosody_webhook.host_user_not_found", email=email, room=room)
            return
        logger.info(
            "prosody_webhook.host_time_updated",
            event_name=event_name,
            email=email,
            room=room,
            minutes_added=minutes,
        )
