"""Organization management on top of the repository and the Keycloak admin API.

OrganizationService backs the /api/orgs routes. Every operation starts from
an authenticated caller (AuthResult) and raises ApiError with the message
and status the dashboard shows. Membership changes are made in Keycloak
first and persisted only when Keycloak accepted them.

Only organization owners may add, remove, re-role or invite members. A user
belongs to at most one organization; a pending invitation counts as
membership.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import status

from src.dashboard.core.errors import ApiError
from src.dashboard.core.security import AuthResult
from src.dashboard.organizations.schemas import (
    VALID_ROLES,
    MemberStatus,
    Membership,
    OrganizationRecord,
    OrgRole,
)

logger = structlog.get_logger(__name__)

_ALREADY_MEMBER = "User already belongs to an organization"
_NOT_IN_DATABASE = "User not found in database"
_NOT_IN_THIS_ORG = "User is not part of this organization"
_INVALID_ROLE = f"Invalid role. Must be one of: {', '.join(VALID_ROLES)}"


def _conflict(message: str = _ALREADY_MEMBER) -> ApiError:
    return ApiError(message, status_code=status.HTTP_409_CONFLICT)


def _forbidden(message: str) -> ApiError:
    return ApiError(message, status_code=status.HTTP_403_FORBIDDEN)


def _not_found(message: str) -> ApiError:
    return ApiError(message, status_code=status.HTTP_404_NOT_FOUND)


def _server_error(message: str) -> ApiError:
    return ApiError(message, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


class OrganizationService:
    """Create organizations and manage their members.

    Args:
        repository: OrganizationRepository (or a test double).
        admin_client: KeycloakAdminClient (or a test double).
    """

    def __init__(self, repository: Any, admin_client: Any) -> None:
        self._repository = repository
        self._admin = admin_client

    async def _owner_membership(self, caller: AuthResult, denied: str) -> Membership:
        user_id = await self._repository.get_user_id(caller.email)
        if user_id is None:
            raise _not_found(_NOT_IN_DATABASE)
        membership = await self._repository.get_membership(user_id)
        if membership is None:
            raise _forbidden("User is not part of an organization")
        if membership.role != OrgRole.OWNER.value:
            raise _forbidden(denied)
        return membership

    # ── Organization ─────────────────────────────────────────────────────

    async def create_organization(
        self,
        caller: AuthResult,
        name: str | None,
        alias: str | None = None,
        description: str | None = None,
    ) -> OrganizationRecord:
        if not name:
            raise ApiError("Missing required field: name")

        user_id = await self._repository.ensure_user(caller.email)
        if await self._repository.get_membership(user_id) is not None:
            raise _conflict()

        created = await self._admin.create_organization(
            name, alias=alias, description=description
        )
        if not created or not created.get("id"):
            raise _server_error("Failed to create organization in Keycloak")

        record = await self._repository.create_organization(
            kc_org_id=created["id"],
            name=name,
            alias=created.get("alias") or name,
            owner_user_id=user_id,
            owner_kc_user_id=caller.user_id,
        )
        if not await self._admin.add_member_to_organization(created["id"], caller.user_id):
            logger.warning("organizations.owner_not_added_in_keycloak", org_id=record.id)
        return record

    async def get_organization(self, caller: AuthResult) -> OrganizationRecord | None:
        """The caller's organization with its member list, None if they have none."""
        user_id = await self._repository.get_user_id(caller.email)
        if user_id is None:
            raise _not_found(_NOT_IN_DATABASE)
        membership = await self._repository.get_membership(user_id)
        if membership is None:
            return None
        members = await self._repository.list_members(membership.org_id)
        return OrganizationRecord(
            id=membership.org_id,
            kc_org_id=membership.kc_org_id,
            name=membership.org_name,
            alias=membership.org_alias,
            role=membership.role,
            members=members,
        )

    # ── Members ──────────────────────────────────────────────────────────

    async def add_member(
        self, caller: AuthResult, email: str | None, role: str | None = None
    ) -> dict[str, Any]:
        if not email:
            raise ApiError("Missing required field: email")
        if role and role not in VALID_ROLES:
            raise ApiError(_INVALID_ROLE)
        if role == OrgRole.OWNER.value:
            raise ApiError("Cannot add members with owner role")

        membership = await self._owner_membership(caller, "Only owners can manage members")

        kc_target = await self._admin.get_user(email)
        if not kc_target or not kc_target.get("id"):
            raise _not_found("User not found in Keycloak")

        target_id = await self._repository.ensure_user(email)
        if await self._repository.get_membership(target_id) is not None:
            raise _conflict()

        seats_total = await self._repository.get_seat_limit(membership.org_id)
        if seats_total is None:
            raise _forbidden(
                "Your organization must have an active organization plan to add members."
            )
        seats_used = await self._repository.count_seats_used(membership.org_id)
        if seats_total - seats_used <= 0:
            raise _forbidden(
                "Your organization has reached its seat limit. "
                "Please upgrade your plan to add more members."
            )

        if not await self._admin.add_member_to_organization(
            membership.kc_org_id, kc_target["id"]
        ):
            raise _server_error("Failed to add member in Keycloak")

        await self._repository.add_member(
            membership.org_id,
            target_id,
            role or OrgRole.TEACHER.value,
            kc_user_id=kc_target["id"],
        )
        logger.info("organizations.member_added", org_id=membership.org_id, user_id=target_id)
        return {"success": True, "email": email}

    async def remove_member(self, caller: AuthResult, email: str | None) -> dict[str, Any]:
        if not email:
            raise ApiError("Missing required field: email")

        membership = await self._owner_membership(caller, "Only owners can manage members")

        target_id = await self._repository.get_user_id(email)
        if target_id is None:
            raise _not_found(_NOT_IN_DATABASE)
        member = await self._repository.get_org_member(membership.org_id, target_id)
        if member is None:
            raise _not_found(_NOT_IN_THIS_ORG)
        if target_id == membership.user_id:
            raise ApiError("Owners cannot remove themselves")

        # Pending invitees were never added to the Keycloak organization
        if member.kc_user_id and member.status == MemberStatus.ACTIVE.value:
            kc_target = await self._admin.get_user(email)
            if kc_target and kc_target.get("id"):
                await self._admin.remove_member_from_organization(
                    membership.kc_org_id, kc_target["id"]
                )

        await self._repository.remove_member(member.member_id)
        logger.info("organizations.member_removed", org_id=membership.org_id, user_id=target_id)
        return {"success": True}

    async def update_member_role(
        self, caller: AuthResult, email: str | None, role: str | None
    ) -> dict[str, Any]:
        if not email:
            raise ApiError("Missing required field: email")
        if not role:
            raise ApiError("Missing required field: role")
        if role not in VALID_ROLES:
            raise ApiError(_INVALID_ROLE)
        if role == OrgRole.OWNER.value:
            raise ApiError("Cannot change member role to owner")

        membership = await self._owner_membership(caller, "Only owners can update member roles")

        target_id = await self._repository.get_user_id(email)
        if target_id is None:
            raise _not_found(_NOT_IN_DATABASE)
        if target_id == membership.user_id:
            raise ApiError("Owners cannot change their own role")
        member = await self._repository.get_org_member(membership.org_id, target_id)
        if member is None:
            raise _not_found(_NOT_IN_THIS_ORG)

        await self._repository.update_member_role(member.member_id, role)
        return {"success": True, "email": email, "role": role}

    async def invite_member(
        self,
        caller: AuthResult,
        email: str | None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> dict[str, Any]:
        """Send a Keycloak invitation and record a pending membership."""
        if not email or "@" not in email:
            raise ApiError("Missing or invalid email address")

        membership = await self._owner_membership(caller, "Only owners can invite members")

        kc_target = await self._admin.get_user(email)
        kc_target_id = kc_target.get("id") if kc_target else None
        if kc_target_id and await self._admin.get_user_organizations(kc_target_id):
            raise _conflict()

        target_id = await self._repository.ensure_user(email)
        if await self._repository.get_membership(target_id) is not None:
            raise _conflict()

        if not await self._admin.invite_user_to_organization(
            membership.kc_org_id, email, first_name=first_name, last_name=last_name
        ):
            raise _server_error("Failed to send invitation via Keycloak")

        await self._repository.add_member(
            membership.org_id,
            target_id,
            OrgRole.TEACHER.value,
            status=MemberStatus.PENDING.value,
            kc_user_id=kc_target_id,
            invited_email=email,
            invited_at=datetime.now(timezone.utc),
        )
        logger.info("organizations.member_invited", org_id=membership.org_id, user_id=target_id)
        return {"success": True, "email": email, "status": MemberStatus.PENDING.value}
