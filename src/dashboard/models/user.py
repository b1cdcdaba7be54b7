"""Dashboard user table.

Users are keyed by email (the identity provider owns credentials). The
host-tracking columns are maintained by HOST_ASSIGNED / HOST_LEFT webhook
events.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from src.dashboard.core.database import Base


class UserModel(Base):
    """A dashboard user and their accumulated hosting time."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    is_active_host: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    max_bookings: Mapped[int] = mapped_column(
        Integer, default=1, server_default=text("1")
    )
    total_host_minutes: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0")
    )
    host_session_start_time: Mapped[datetime | None] = mapped_column(
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
