"""FastAPI dependency injection for services and authentication.

Services are built once in the application lifespan and stored on
app.state; these dependencies hand them to endpoints (and let tests swap
them through app.state or dependency_overrides).
"""

from __future__ import annotations

from typing import Any

from fastapi import Depends, Request, status

from src.dashboard.core.errors import ApiError
from src.dashboard.core.security import AuthResult, validate_auth
from src.dashboard.meetings.history import MeetingHistoryAggregator
from src.dashboard.organizations.service import OrganizationService


def _get_state_service(request: Request, name: str, description: str) -> Any:
    """Retrieve a service from app.state, 503 if not available."""
    service = getattr(request.app.state, name, None)
    if service is None:
        raise ApiError(
            f"{description} not initialized",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return service


def get_meeting_repository(request: Request) -> Any:
    return _get_state_service(request, "meeting_repository", "Meeting repository")


def get_identity_client(request: Request) -> Any:
    return _get_state_service(request, "identity_client", "Identity provider client")


def get_object_storage(request: Request) -> Any:
    return _get_state_service(
        request,
        "object_storage",
        "Object storage (S3 settings may not be configured)",
    )


def get_event_handler(request: Request) -> Any:
    return _get_state_service(request, "prosody_event_handler", "Webhook event handler")


def get_organization_repository(request: Request) -> Any:
    return _get_state_service(request, "organization_repository", "Organization repository")


def get_keycloak_admin(request: Request) -> Any:
    return _get_state_service(
        request,
        "keycloak_admin",
        "Keycloak admin client (admin credentials may not be configured)",
    )


def get_history_aggregator(
    repository: Any = Depends(get_meeting_repository),
) -> MeetingHistoryAggregator:
    return MeetingHistoryAggregator(repository)


def get_organization_service(
    repository: Any = Depends(get_organization_repository),
    admin_client: Any = Depends(get_keycloak_admin),
) -> OrganizationService:
    return OrganizationService(repository, admin_client)


async def get_current_user(
    request: Request,
    identity_client: Any = Depends(get_identity_client),
) -> AuthResult:
    """Authenticate the caller from the Authorization bearer token.

    Raises:
        AuthError(401): Missing, email-less, or rejected token.
        ApiError(404): No identity-provider user behind the token.
    """
    return await validate_auth(request, identity_client)

