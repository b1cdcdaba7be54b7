"""API error type rendered as a JSON {"error": message} body.

Public dashboard endpoints report failures as {"error": "..."} rather than
FastAPI's {"detail": "..."}; raising ApiError anywhere in a request
(including dependencies) produces that shape once the handler is
registered on the app.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class ApiError(Exception):
    """An expected request failure with a client-facing message."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.headers = headers


class AuthError(ApiError):
    """Authentication failed (missing, malformed, or rejected token)."""

    def __init__(self, message: str, status_code: int = status.HTTP_401_UNAUTHORIZED) -> None:
        super().__init__(message, status_code=status_code)


def error_response(
    message: str, status_code: int, headers: dict[str, str] | None = None
) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Render ApiError as {"error": message}."""
    return error_response(exc.message, exc.status_code, exc.headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
