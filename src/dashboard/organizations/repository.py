"""Organization repository -- async access to organizations and their members.

Uses the same session_factory callable pattern as MeetingRepository. Users
are looked up and created by email here too, since org management is the
other place dashboard users get created.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime

import structlog
from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.dashboard.models.user import UserModel
from src.dashboard.organizations.models import (
    OrganizationMemberModel,
    OrganizationModel,
    OrganizationSubscriptionModel,
)
from src.dashboard.organizations.schemas import (
    MemberStatus,
    Membership,
    OrganizationMember,
    OrganizationRecord,
    OrgRole,
)

logger = structlog.get_logger(__name__)


def _row_to_membership(
    member: OrganizationMemberModel, org: OrganizationModel
) -> Membership:
    return Membership(
        member_id=member.id,
        org_id=org.id,
        kc_org_id=org.kc_org_id,
        org_name=org.name,
        org_alias=org.alias,
        role=member.role,
        status=member.status,
        user_id=member.user_id,
        kc_user_id=member.kc_user_id,
    )


class OrganizationRepository:
    """Async queries over organizations, members and org seat counts.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Users ────────────────────────────────────────────────────────────

    async def get_user_id(self, email: str) -> int | None:
        async for session in self._session_factory():
            result = await session.execute(
                select(UserModel.id).where(UserModel.email == email).limit(1)
            )
            return result.scalar_one_or_none()
        return None

    async def ensure_user(self, email: str) -> int:
        """Return the user id for an email, inserting a default row if absent."""
        async for session in self._session_factory():
            result = await session.execute(
                select(UserModel.id).where(UserModel.email == email).limit(1)
            )
            user_id = result.scalar_one_or_none()
            if user_id is not None:
                return user_id
            user = UserModel(
                email=email,
                is_active_host=False,
                max_bookings=1,
                total_host_minutes=0,
            )
            session.add(user)
            await session.commit()
            await session.refresh(user)
            logger.info("organizations.user_created", user_id=user.id)
            return user.id
        raise RuntimeError("session factory yielded no session")

    # ── Memberships ──────────────────────────────────────────────────────

    async def get_membership(self, user_id: int) -> Membership | None:
        """The organization a user belongs to, if any."""
        async for session in self._session_factory():
            result = await session.execute(
                select(OrganizationMemberModel, OrganizationModel)
                .join(
                    OrganizationModel,
                    OrganizationMemberModel.org_id == OrganizationModel.id,
                )
                .where(OrganizationMemberModel.user_id == user_id)
                .limit(1)
            )
            row = result.first()
            return _row_to_membership(*row) if row else None
        return None

    async def get_org_member(self, org_id: int, user_id: int) -> Membership | None:
        async for session in self._session_factory():
            result = await session.execute(
                select(OrganizationMemberModel, OrganizationModel)
                .join(
                    OrganizationModel,
                    OrganizationMemberModel.org_id == OrganizationModel.id,
                )
                .where(
                    and_(
                        OrganizationMemberModel.org_id == org_id,
                        OrganizationMemberModel.user_id == user_id,
                    )
                )
                .limit(1)
            )
            row = result.first()
            return _row_to_membership(*row) if row else None
        return None

    async def list_members(self, org_id: int) -> list[OrganizationMember]:
        async for session in self._session_factory():
            result = await session.execute(
                select(
                    OrganizationMemberModel.id,
                    UserModel.id,
                    UserModel.email,
                    OrganizationMemberModel.role,
                    OrganizationMemberModel.joined_at,
                )
                .join(UserModel, OrganizationMemberModel.user_id == UserModel.id)
                .where(OrganizationMemberModel.org_id == org_id)
                .order_by(OrganizationMemberModel.id)
            )
            return [
                OrganizationMember(
                    id=member_id,
                    user_id=user_id,
                    email=email,
                    role=role,
                    joined_at=joined_at,
                )
                for member_id, user_id, email, role, joined_at in result.all()
            ]
        return []

    async def create_organization(
        self,
        *,
        kc_org_id: str,
        name: str,
        alias: str,
        owner_user_id: int,
        owner_kc_user_id: str | None,
    ) -> OrganizationRecord:
        """Insert an organization and its owner membership in one transaction."""
        async for session in self._session_factory():
            org = OrganizationModel(
                kc_org_id=kc_org_id,
                name=name,
                alias=alias,
                owner_user_id=owner_user_id,
                domains=None,
            )
            session.add(org)
            await session.flush()
            session.add(
                OrganizationMemberModel(
                    org_id=org.id,
                    user_id=owner_user_id,
                    role=OrgRole.OWNER.value,
                    status=MemberStatus.ACTIVE.value,
                    kc_user_id=owner_kc_user_id,
                )
            )
            await session.commit()
            logger.info("organizations.created", org_id=org.id, kc_org_id=kc_org_id)
            return OrganizationRecord(
                id=org.id,
                kc_org_id=org.kc_org_id,
                name=org.name,
                alias=org.alias,
            )
        raise RuntimeError("session factory yielded no session")

    async def add_member(
        self,
        org_id: int,
        user_id: int,
        role: str,
        *,
        status: str = MemberStatus.ACTIVE.value,
        kc_user_id: str | None = None,
        invited_email: str | None = None,
        invited_at: datetime | None = None,
    ) -> None:
        async for session in self._session_factory():
            session.add(
                OrganizationMemberModel(
                    org_id=org_id,
                    user_id=user_id,
                    role=role,
                    status=status,
                    kc_user_id=kc_user_id,
                    invited_email=invited_email,
                    invited_at=invited_at,
                )
            )
            await session.commit()

    async def remove_member(self, member_id: int) -> None:
        async for session in self._session_factory():
            await session.execute(
                delete(OrganizationMemberModel).where(OrganizationMemberModel.id == member_id)
            )
            await session.commit()

    async def update_member_role(self, member_id: int, role: str) -> None:
        async for session in self._session_factory():
            await session.execute(
                update(OrganizationMemberModel)
                .where(OrganizationMemberModel.id == member_id)
                .values(role=role)
            )
            await session.commit()

    # ── Seats ────────────────────────────────────────────────────────────

    async def get_seat_limit(self, org_id: int) -> int | None:
        """Seat quantity of the org's subscription, None without one."""
        async for session in self._session_factory():
            result = await session.execute(
                select(OrganizationSubscriptionModel.quantity)
                .where(OrganizationSubscriptionModel.org_id == org_id)
                .limit(1)
            )
            row = result.first()
            if row is None:
                return None
            return row[0] or 1
        return None

    async def count_seats_used(self, org_id: int) -> int:
        """Active and pending memberships both occupy a seat."""
        async for session in self._session_factory():
            result = await session.execute(
                select(func.count())
                .select_from(OrganizationMemberModel)
                .where(
                    and_(
                        OrganizationMemberModel.org_id == org_id,
                        OrganizationMemberModel.status.in_(
                            [MemberStatus.ACTIVE.value, MemberStatus.PENDING.value]
                        ),
                    )
                )
            )
            return int(result.scalar_one())
        return 0
