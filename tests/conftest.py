"""Shared test fixtures.

Provides:
- InMemoryMeetingRepository: dict/list backed stand-in for MeetingRepository
  (session/event reads, webhook writes, host tracking)
- meeting_repo fixture
- user_token_factory fixture: dashboard bearer tokens carrying an email claim
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import pytest
from jose import jwt

from src.dashboard.meetings.schemas import (
    MeetingEvent,
    MeetingSession,
    MeetingSessionStatus,
)


@dataclass
class InMemoryUser:
    email: str
    is_active_host: bool = False
    host_session_start_time: datetime | None = None
    total_host_minutes: int = 0


class InMemoryMeetingRepository:
    """In-memory test double for MeetingRepository.

    Mirrors the MeetingRepository interface using dicts for storage.
    Used for fast unit testing without database dependency.
    """

    def __init__(self) -> None:
        self.sessions: dict[int, MeetingSession] = {}
        self.breakout: dict[int, bool] = {}
        self.events: list[MeetingEvent] = []
        self.users: dict[str, InMemoryUser] = {}
        self.list_sessions_calls: list[tuple[datetime | None, datetime | None]] = []
        self.list_events_calls: list[list[int]] = []
        self._session_ids = itertools.count(1)
        self._event_ids = itertools.count(1)

    # ── Seeding helpers ──────────────────────────────────────────────────

    def add_session(
        self,
        room_name: str,
        started_at: datetime,
        ended_at: datetime | None = None,
        room_jid: str | None = None,
    ) -> MeetingSession:
        session_id = next(self._session_ids)
        session = MeetingSession(
            id=session_id,
            room_name=room_name,
            room_jid=room_jid or f"{room_name}@conference.example.com",
            status=(
                MeetingSessionStatus.ENDED.value
                if ended_at
                else MeetingSessionStatus.ONGOING.value
            ),
            started_at=started_at,
            ended_at=ended_at,
        )
        self.sessions[session_id] = session
        self.breakout[session_id] = False
        return session

    def add_event(
        self,
        meeting_id: int,
        event_type: str,
        metadata: dict[str, Any],
        timestamp: datetime,
    ) -> MeetingEvent:
        event = MeetingEvent(
            id=next(self._event_ids),
            meeting_id=meeting_id,
            event_type=event_type,
            timestamp=timestamp,
            metadata=metadata,
        )
        self.events.append(event)
        return event

    def add_user(self, email: str, **fields: Any) -> InMemoryUser:
        user = InMemoryUser(email=email, **fields)
        self.users[email] = user
        return user

    # ── Reads ────────────────────────────────────────────────────────────

    async def list_sessions(
        self,
        started_from: datetime | None = None,
        started_to: datetime | None = None,
    ) -> list[MeetingSession]:
        self.list_sessions_calls.append((started_from, started_to))
        sessions = [
            s
            for s in self.sessions.values()
            if (started_from is None or s.started_at >= started_from)
            and (started_to is None or s.started_at <= started_to)
        ]
        return sorted(sessions, key=lambda s: (s.started_at, s.id))

    async def list_events(self, meeting_ids: list[int]) -> list[MeetingEvent]:
        self.list_events_calls.append(list(meeting_ids))
        wanted = set(meeting_ids)
        events = [e for e in self.events if e.meeting_id in wanted]
        return sorted(events, key=lambda e: (e.timestamp, e.id))

    # ── Writes ───────────────────────────────────────────────────────────

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
        if not room_name and not room_jid:
            raise ValueError("room_name or room_jid required to create meeting")
        for session in self.sessions.values():
            if room_jid and session.room_jid == room_jid:
                return session
            if (
                not room_jid
                and session.room_name == room_name
                and self.breakout[session.id] == bool(is_breakout)
            ):
                return session

        if not room_name:
            parts = room_jid.split("@", 1)
            room_name = parts[1] if len(parts) > 1 and parts[1] else room_jid
        session = self.add_session(
            room_name,
            started_at=datetime.now(timezone.utc),
            room_jid=room_jid or room_name,
        )
        self.breakout[session.id] = bool(is_breakout)
        return session

    async def record_event(
        self,
        meeting_id: int,
        event_type: str,
        metadata: dict[str, Any],
        timestamp: datetime | None = None,
    ) -> None:
        self.add_event(
            meeting_id, event_type, metadata, timestamp or datetime.now(timezone.utc)
        )

    async def end_meeting(self, meeting_id: int, ended_at: datetime | None = None) -> None:
        session = self.sessions.get(meeting_id)
        if session is None:
            return
        self.sessions[meeting_id] = session.model_copy(
            update={
                "status": MeetingSessionStatus.ENDED.value,
                "ended_at": ended_at or datetime.now(timezone.utc),
            }
        )

    async def start_host_session(self, email: str, started_at: datetime) -> bool:
        user = self.users.get(email)
        if user is None:
            return False
        user.is_active_host = True
        user.host_session_start_time = started_at
        return True

    async def end_host_session(self, email: str, ended_at: datetime) -> int | None:
        user = self.users.get(email)
        if user is None:
            return None
        minutes = 0
        if user.host_session_start_time is not None:
            elapsed = ended_at - user.host_session_start_time
            minutes = max(0, int(elapsed.total_seconds() // 60))
        user.is_active_host = False
        user.host_session_start_time = None
        user.total_host_minutes += minutes
        return minutes


def make_user_token(email: str | None = "alice@example.com", **claims: Any) -> str:
    """A dashboard bearer token; only its unverified claims are read locally."""
    payload = dict(claims)
    if email is not None:
        payload["email"] = email
    return jwt.encode(payload, "test-secret", algorithm="HS256")


@pytest.fixture
def meeting_repo() -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository()


@pytest.fixture
def user_token_factory():
    return make_user_token
