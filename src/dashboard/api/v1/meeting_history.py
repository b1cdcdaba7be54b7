"""Meeting history endpoint.

GET /api/meeting-history returns the summaries of the meetings the
authenticated user hosted or joined, optionally limited to a start-date
range. Unexpected failures are logged here and reported as an opaque 500.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from src.dashboard.api.deps import get_current_user, get_history_aggregator
from src.dashboard.core.errors import error_response
from src.dashboard.core.monitoring import meeting_history_summaries
from src.dashboard.core.security import AuthResult
from src.dashboard.meetings.history import (
    InvalidDateParameter,
    MeetingHistoryAggregator,
    parse_date_range,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["meeting-history"])


@router.get("/meeting-history")
async def get_meeting_history(
    from_param: str | None = Query(
        default=None,
        alias="from",
        description="Earliest meeting start date (ISO format, inclusive)",
    ),
    to_param: str | None = Query(
        default=None,
        alias="to",
        description="Latest meeting start date (ISO format, inclusive to end of day)",
    ),
    auth: AuthResult = Depends(get_current_user),
    aggregator: MeetingHistoryAggregator = Depends(get_history_aggregator),
) -> JSONResponse:
    """List the caller's meetings, oldest first."""
    try:
        date_from, date_to = parse_date_range(from_param, to_param)
    except InvalidDateParameter as exc:
        logger.info("meeting_history.invalid_date", parameter=exc.parameter)
        return error_response(str(exc), status.HTTP_400_BAD_REQUEST)

    try:
        summaries = await aggregator.get_history(auth.email, date_from, date_to)
        content = [summary.to_response() for summary in summaries]
    except Exception:
        logger.error("meeting_history.failed", email=auth.email, exc_info=True)
        return error_response("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    meeting_history_summaries.observe(len(content))
    logger.info("meeting_history.retrieved", email=auth.email, count=len(content))
    return JSONResponse(content=content)
