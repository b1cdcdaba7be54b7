"""Async SQLAlchemy engine and session factory.

Provides:
- Base: Declarative base for all dashboard tables (schema "sonacove")
- get_session(): AsyncSession generator used by repositories and FastAPI deps
- init_db() / close_db(): lifespan hooks
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy import MetaData, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.dashboard.config import get_settings

SCHEMA_NAME = "sonacove"

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=20,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )
    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────

dashboard_metadata = MetaData(schema=SCHEMA_NAME)


class Base(DeclarativeBase):
    """Base class for dashboard models (users, meetings, meeting_events)."""

    metadata = dashboard_metadata


# ── Session Factory ─────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the shared engine."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create the dashboard schema and its tables if they don't exist."""
    # Import models so their tables are registered on the metadata
    import src.dashboard.meetings.models  # noqa: F401
    import src.dashboard.models.user  # noqa: F401
    import src.dashboard.organizations.models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA_NAME}"))
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
