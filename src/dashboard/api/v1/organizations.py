"""Organization endpoints.

POST   /api/orgs           create the caller's organization (caller becomes owner)
GET    /api/orgs/me        the caller's organization and members, or null
POST   /api/orgs/members   add an existing identity-provider user
DELETE /api/orgs/members   remove a member or pending invitee
PATCH  /api/orgs/members   change a member's role
POST   /api/orgs/invite    invite by email (pending membership)

Bodies are JSON; an unparseable body is treated as empty so the missing
field is reported. Unexpected failures return an opaque 500.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from src.dashboard.api.deps import get_current_user, get_organization_service
from src.dashboard.core.errors import ApiError
from src.dashboard.core.security import AuthResult
from src.dashboard.organizations.service import OrganizationService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/orgs", tags=["organizations"])


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


def _text(body: dict[str, Any], key: str) -> str | None:
    value = body.get(key)
    return value if isinstance(value, str) and value else None


async def _run(
    action: str,
    caller: AuthResult,
    call: Awaitable[Any],
) -> Any:
    try:
        return await call
    except ApiError:
        raise
    except Exception:
        logger.error(
            "organizations.request_failed", action=action, email=caller.email, exc_info=True
        )
        raise ApiError(
            "Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


@router.post("")
async def create_organization(
    request: Request,
    auth: AuthResult = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> JSONResponse:
    body = await _json_body(request)
    record = await _run(
        "create",
        auth,
        service.create_organization(
            auth,
            _text(body, "name"),
            alias=_text(body, "alias"),
            description=_text(body, "description"),
        ),
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={"organization": record.to_response()},
    )


@router.get("/me")
async def get_my_organization(
    auth: AuthResult = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> JSONResponse:
    record = await _run("fetch", auth, service.get_organization(auth))
    return JSONResponse(
        content={"organization": record.to_response() if record is not None else None}
    )


@router.post("/members")
async def add_member(
    request: Request,
    auth: AuthResult = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> JSONResponse:
    body = await _json_body(request)
    result = await _run(
        "add_member",
        auth,
        service.add_member(auth, _text(body, "email"), _text(body, "role")),
    )
    return JSONResponse(content=result)


@router.delete("/members")
async def remove_member(
    request: Request,
    auth: AuthResult = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> JSONResponse:
    body = await _json_body(request)
    result = await _run("remove_member", auth, service.remove_member(auth, _text(body, "email")))
    return JSONResponse(content=result)


@router.patch("/members")
async def update_member_role(
    request: Request,
    auth: AuthResult = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> JSONResponse:
    body = await _json_body(request)
    result = await _run(
        "update_role",
        auth,
        service.update_member_role(auth, _text(body, "email"), _text(body, "role")),
    )
    return JSONResponse(content=result)


@router.post("/invite")
async def invite_member(
    request: Request,
    auth: AuthResult = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
) -> JSONResponse:
    body = await _json_body(request)
    result = await _run(
        "invite",
        auth,
        service.invite_member(
            auth,
            _text(body, "email"),
            first_name=_text(body, "firstName"),
            last_name=_text(body, "lastName"),
        ),
    )
    return JSONResponse(content=result)
