"""V1 API router -- aggregates all endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.dashboard.api.v1 import (
    file_sharing,
    health,
    meeting_history,
    organizations,
    prosody_webhook,
)

router = APIRouter()

router.include_router(health.router)
router.include_router(meeting_history.router)
router.include_router(prosody_webhook.router)
router.include_router(file_sharing.router)
router.include_router(organizations.router)
