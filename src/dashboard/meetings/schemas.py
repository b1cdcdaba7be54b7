"""Pydantic v2 schemas for the meeting history domain.

Defines the read models loaded from the meetings / meeting_events tables and
the derived MeetingSummary returned by GET /api/meeting-history. The summary
serializes with camelCase aliases to keep the dashboard's response shape.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingSessionStatus(str, Enum):
    """Lifecycle status of a stored meeting session."""

    ONGOING = "ongoing"
    ENDED = "ended"


class MeetingSummaryStatus(str, Enum):
    """Status reported to the dashboard for a meeting summary."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class MeetingEventType(str, Enum):
    """Event types written to the meeting event log."""

    ROOM_CREATED = "room_created"
    ROOM_DESTROYED = "room_destroyed"
    OCCUPANT_JOINED = "occupant_joined"
    OCCUPANT_LEFT = "occupant_left"
    ROLE_CHANGED = "role_changed"
    AFFILIATION_CHANGED = "affiliation_changed"
    HOST_ASSIGNED = "host_assigned"
    HOST_LEFT = "host_left"


# ── Stored Records ───────────────────────────────────────────────────────────


class MeetingSession(BaseModel):
    """A meeting session row, read-only to the history aggregator."""

    id: int
    room_name: str
    room_jid: str = ""
    status: str = MeetingSessionStatus.ONGOING.value
    started_at: datetime
    ended_at: datetime | None = None


class MeetingEvent(BaseModel):
    """One entry of a session's append-only event log."""

    id: int
    meeting_id: int
    event_type: str
    timestamp: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


# ── Derived Summary ──────────────────────────────────────────────────────────


class MeetingSummary(BaseModel):
    """Per-meeting summary rebuilt from the event log.

    hosts/host_names and participants/participant_names are index-aligned.
    The recordings..has_transcript fields are always empty; they keep the
    response compatible with clients that expect the richer meeting shape.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    timestamp: int = Field(description="Session start, epoch milliseconds")
    end_timestamp: int = Field(
        alias="endTimestamp",
        description="Session end (or now, if ongoing), epoch milliseconds",
    )
    email: str = Field(description="First host email, empty if no host")
    host_name: str = Field(alias="hostName")
    hosts: list[str] = Field(default_factory=list)
    host_names: list[str] = Field(default_factory=list, alias="hostNames")
    duration: int = Field(description="Whole minutes from start to end or now")
    participants: list[str] = Field(default_factory=list)
    participant_names: list[str] = Field(
        default_factory=list, alias="participantNames"
    )
    participant_count: int = Field(alias="participantCount")
    status: MeetingSummaryStatus

    recordings: list[Any] = Field(default_factory=list)
    transcript: dict[str, Any] | None = None
    whiteboard: dict[str, Any] | None = None
    shared_files: list[Any] = Field(default_factory=list, alias="sharedFiles")
    chat_log: list[Any] = Field(default_factory=list, alias="chatLog")
    polls: list[Any] = Field(default_factory=list)
    attendance: list[Any] = Field(default_factory=list)
    ai_summary: str | None = Field(None, alias="aiSummary")
    room_name: str = Field(alias="roomName")
    is_recorded: bool = Field(False, alias="isRecorded")
    has_transcript: bool = Field(False, alias="hasTranscript")

    def to_response(self) -> dict[str, Any]:
        """Serialize with the camelCase field names used on the wire."""
        return self.model_dump(mode="json", by_alias=True)
