"""Meeting repository -- async access to the meetings / meeting_events tables.

Provides MeetingRepository with the session_factory callable pattern. Read
methods feed the meeting history aggregator; write methods are used by the
conferencing-server webhook ingest. Host-tracking updates on the users table
live here as well since they are driven by the same webhook events.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Sequence
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.dashboard.meetings.models import MeetingEventModel, MeetingModel
from src.dashboard.meetings.schemas import (
    MeetingEvent,
    MeetingSession,
    MeetingSessionStatus,
)
from src.dashboard.models.user import UserModel

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_session(model: MeetingModel) -> MeetingSession:
    """Convert MeetingModel to MeetingSession schema."""
    return MeetingSession(
        id=model.id,
        room_name=model.room_name,
        room_jid=model.room_jid,
        status=model.status,
        started_at=model.started_at,
        ended_at=model.ended_at,
    )


def _model_to_event(model: MeetingEventModel) -> MeetingEvent:
    """Convert MeetingEventModel to MeetingEvent schema."""
    return MeetingEvent(
        id=model.id,
        meeting_id=model.meeting_id,
        event_type=model.event_type,
        timestamp=model.timestamp,
        metadata=model.event_metadata or {},
    )


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async queries over meeting sessions and their event log.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Reads (meeting history) ──────────────────────────────────────────

    async def list_sessions(
        self,
        started_from: datetime | None = None,
        started_to: datetime | None = None,
    ) -> list[MeetingSession]:
        """List sessions whose start falls inside an optional window.

        Args:
            started_from: Inclusive lower bound on started_at, open if None.
            started_to: Inclusive upper bound on started_at, open if None.

        Returns:
            Sessions ordered by started_at ascending.
        """
        async for session in self._session_factory():
            stmt = select(MeetingModel)
            if started_from is not None:
                stmt = stmt.where(MeetingModel.started_at >= started_from)
            if started_to is not None:
                stmt = stmt.where(MeetingModel.started_at <= started_to)
            stmt = stmt.order_by(MeetingModel.started_at, MeetingModel.id)
            result = await session.execute(stmt)
            return [_model_to_session(m) for m in result.scalars().all()]
        return []

    async def list_events(self, meeting_ids: Sequence[int]) -> list[MeetingEvent]:
        """Batch-fetch the events of several sessions.

        Ordered by timestamp, then id, so events sharing a timestamp keep
        insertion order.
        """
        if not meeting_ids:
            return []
        async for session in self._session_factory():
            stmt = (
                select(MeetingEventModel)
                .where(MeetingEventModel.meeting_id.in_(list(meeting_ids)))
                .order_by(MeetingEventModel.timestamp, MeetingEventModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_event(m) for m in result.scalars().all()]
        return []

    # ── Writes (webhook ingest) ──────────────────────────────────────────

    async def get_or_create_meeting(
        self,
        *,
        room_name: str | None = None,
        room_jid: str | None = None,
        is_breakout: bool = False,
        breakout_room_id: str | None = None,
        is_lobby: bool = False,
        lobby_room_id: str | None = None,
    ) -> MeetingSession:
        """Find the meeting for a room, creating an ongoing one if absent.

        Matches on room_jid when given, otherwise on (room_name, is_breakout).

        Raises:
            ValueError: If neither room_name nor room_jid is provided.
        """
        if not room_name and not room_jid:
            raise ValueError("room_name or room_jid required to create meeting")

        async for session in self._session_factory():
            if room_jid:
                condition = MeetingModel.room_jid == room_jid
            else:
                condition = and_(
                    MeetingModel.room_name == room_name,
                    MeetingModel.is_breakout == bool(is_breakout),
                )
            result = await session.execute(select(MeetingModel).where(condition).limit(1))
            existing = result.scalar_one_or_none()
            if existing is not None:
                return _model_to_session(existing)

            if not room_name:
                # "room@conference.example.com" -> "conference.example.com"
                parts = room_jid.split("@", 1)
                room_name = parts[1] if len(parts) > 1 and parts[1] else room_jid

            now = datetime.now(timezone.utc)
            model = MeetingModel(
                room_name=room_name,
                room_jid=room_jid or room_name,
                is_breakout=bool(is_breakout),
                breakout_room_id=breakout_room_id,
                is_lobby=bool(is_lobby),
                lobby_room_id=lobby_room_id,
                status=MeetingSessionStatus.ONGOING.value,
                started_at=now,
                updated_at=now,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            logger.info(
                "meeting.created",
                meeting_id=model.id,
                room_name=model.room_name,
                room_jid=model.room_jid,
            )
            return _model_to_session(model)
        raise RuntimeError("session factory yielded no session")

    async def record_event(
        self,
        meeting_id: int,
        event_type: str,
        metadata: dict[str, Any],
        timestamp: datetime | None = None,
    ) -> None:
        """Append an event to a meeting's log (timestamp defaults to now)."""
        async for session in self._session_factory():
            session.add(
                MeetingEventModel(
                    meeting_id=meeting_id,
                    event_type=event_type,
                    event_metadata=metadata,
                    timestamp=timestamp or datetime.now(timezone.utc),
                )
            )
            await session.commit()

    async def end_meeting(self, meeting_id: int, ended_at: datetime | None = None) -> None:
        """Mark a meeting as ended."""
        async for session in self._session_factory():
            model = await session.get(MeetingModel, meeting_id)
            if model is None:
                logger.warning("meeting.end_missing", meeting_id=meeting_id)
                return
            now = datetime.now(timezone.utc)
            model.status = MeetingSessionStatus.ENDED.value
            model.ended_at = ended_at or now
            model.updated_at = now
            await session.commit()

    # ── Host tracking (users table) ──────────────────────────────────────

    async def start_host_session(self, email: str, started_at: datetime) -> bool:
        """Flag a user as actively hosting. Returns False if the user is unknown."""
        async for session in self._session_factory():
            user = await self._get_user(session, email)
            if user is None:
                return False
            user.is_active_host = True
            user.host_session_start_time = started_at
            user.updated_at = started_at
            await session.commit()
            return True
        return False

    async def end_host_session(self, email: str, ended_at: datetime) -> int | None:
        """Close a user's hosting session and accumulate its minutes.

        Returns:
            Minutes added to total_host_minutes, or None if the user is unknown.
        """
        async for session in self._session_factory():
            user = await self._get_user(session, email)
            if user is None:
                return None
            minutes = 0
            if user.host_session_start_time is not None:
                elapsed = ended_at - user.host_session_start_time
                minutes = max(0, int(elapsed.total_seconds() // 60))
            user.is_active_host = False
            user.host_session_start_time = None
            user.total_host_minutes = (user.total_host_minutes or 0) + minutes
            user.updated_at = ended_at
            await session.commit()
            return minutes
        return None

    @staticmethod
    async def _get_user(session: AsyncSession, email: str) -> UserModel | None:
        result = await session.execute(
            select(UserModel).where(UserModel.email == email).limit(1)
        )
        return result.scalar_one_or_none()
