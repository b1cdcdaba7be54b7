"""Pydantic v2 schemas for organizations and their members."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OrgRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"


VALID_ROLES = [role.value for role in OrgRole]


class Membership(BaseModel):
    """A user's membership joined with its organization."""

    member_id: int
    org_id: int
    kc_org_id: str
    org_name: str
    org_alias: str
    role: str
    status: str = MemberStatus.ACTIVE.value
    user_id: int
    kc_user_id: str | None = None


class OrganizationMember(BaseModel):
    """One entry of an organization's member list."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    user_id: int = Field(alias="userId")
    email: str
    role: str
    joined_at: datetime | None = Field(None, alias="joinedAt")


class OrganizationRecord(BaseModel):
    """A created organization as returned to its owner."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    kc_org_id: str = Field(alias="kcOrgId")
    name: str
    alias: str
    role: str = OrgRole.OWNER.value
    members: list[OrganizationMember] | None = None

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
