"""Meeting persistence models -- the session table and its append-only event log.

Two SQLAlchemy models on the dashboard Base:
- MeetingModel: one row per conference room lifetime ("ongoing" -> "ended")
- MeetingEventModel: raw conferencing-server events with JSON metadata

Rows are written by the conferencing-server webhook and only read by the
meeting history aggregator.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.dashboard.core.database import Base


class MeetingModel(Base):
    """A conference room session.

    Created when the first room event arrives; ended_at and status="ended"
    are set when the room is destroyed.
    """

    __tablename__ = "meetings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    room_name: Mapped[str] = mapped_column(String(255), nullable=False)
    room_jid: Mapped[str] = mapped_column(String(255), nullable=False)
    is_breakout: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    breakout_room_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_lobby: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    lobby_room_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default="ongoing",
        server_default=text("'ongoing'"),
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class MeetingEventModel(Base):
    """A single conferencing-server event belonging to one meeting.

    The metadata column holds the event payload as received; its shape
    depends on event_type (occupant_joined carries an "occupant" object,
    host_assigned carries a flat email).
    """

    __tablename__ = "meeting_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    meeting_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sonacove.meetings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
