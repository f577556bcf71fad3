"""Organization and team administration."""

from typing import Sequence
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.exceptions import ConflictError, DuplicateMemberError, LastOwnerError, NotFoundError
from taskboard.models.enums import OrganizationRole, TeamRole
from taskboard.models.organization import Organization, OrganizationMember, Team, TeamMember
from taskboard.services.access_control import Principal

logger = structlog.get_logger()

ADMIN_ROLE = "admin"


class OrganizationService:
    """Service for organizations, their members and teams."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Organizations
    # =========================================================================

    async def create_organization(self, name: str, slug: str, actor: Principal) -> Organization:
        """Create an organization; the creator becomes its owner."""
        existing = await self.db.execute(select(Organization.id).where(Organization.slug == slug))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError("Organization slug already exists", code="SLUG_TAKEN")

        organization = Organization(name=name, slug=slug, created_by_id=actor.user_id)
        self.db.add(organization)
        await self.db.flush()

        self.db.add(
            OrganizationMember(
                organization_id=organization.id,
                user_id=actor.user_id,
                role=OrganizationRole.OWNER.value,
            )
        )
        await self.db.flush()
        actor.forget()

        logger.info("organization_created", organization_id=str(organization.id), slug=slug)
        return organization

    async def user_organizations(self, user_id: UUID) -> Sequence[Organization]:
        result = await self.db.execute(
            select(Organization)
            .join(OrganizationMember, OrganizationMember.organization_id == Organization.id)
            .where(OrganizationMember.user_id == user_id)
            .order_by(Organization.name)
        )
        return result.scalars().all()

    # =========================================================================
    # Members
    # =========================================================================

    async def add_member(
        self,
        organization_id: UUID,
        user_id: UUID,
        actor: Principal,
        role: OrganizationRole | str = OrganizationRole.READER,
    ) -> OrganizationMember:
        role = OrganizationRole(role)
        await actor.require_organization_role(organization_id, ADMIN_ROLE)
        if role == OrganizationRole.OWNER:
            await actor.require_organization_role(organization_id, "owner")

        if await self._get_member(organization_id, user_id) is not None:
            raise DuplicateMemberError("User is already a member of the organization")

        member = OrganizationMember(
            organization_id=organization_id, user_id=user_id, role=role.value
        )
        self.db.add(member)
        await self.db.flush()

        logger.info(
            "organization_member_added",
            organization_id=str(organization_id),
            user_id=str(user_id),
            role=role.value,
            added_by=str(actor.user_id),
        )
        return member

    async def update_member_role(
        self,
        organization_id: UUID,
        user_id: UUID,
        role: OrganizationRole | str,
        actor: Principal,
    ) -> OrganizationMember:
        """Change a member's role.

        Raises:
            LastOwnerError: the change would leave the organization without an owner
        """
        role = OrganizationRole(role)
        await actor.require_organization_role(organization_id, ADMIN_ROLE)

        member = await self._require_member(organization_id, user_id)
        if OrganizationRole.OWNER in (role, OrganizationRole(member.role)):
            await actor.require_organization_role(organization_id, "owner")

        if member.role == OrganizationRole.OWNER.value and role != OrganizationRole.OWNER:
            await self._ensure_other_owner(organization_id)

        member.role = role.value
        await self.db.flush()
        actor.forget()

        logger.info(
            "organization_member_role_updated",
            organization_id=str(organization_id),
            user_id=str(user_id),
            new_role=role.value,
            updated_by=str(actor.user_id),
        )
        return member

    async def remove_member(self, organization_id: UUID, user_id: UUID, actor: Principal) -> None:
        """Remove a member. Members may always remove themselves.

        Raises:
            LastOwnerError: the member is the organization's only owner
        """
        if user_id != actor.user_id:
            await actor.require_organization_role(organization_id, ADMIN_ROLE)

        member = await self._require_member(organization_id, user_id)
        if member.role == OrganizationRole.OWNER.value:
            await self._ensure_other_owner(organization_id)

        await self.db.delete(member)
        await self.db.flush()
        actor.forget()

        logger.info(
            "organization_member_removed",
            organization_id=str(organization_id),
            user_id=str(user_id),
            removed_by=str(actor.user_id),
        )

    async def members(self, organization_id: UUID) -> Sequence[OrganizationMember]:
        result = await self.db.execute(
            select(OrganizationMember)
            .where(OrganizationMember.organization_id == organization_id)
            .order_by(OrganizationMember.created_at)
        )
        return result.scalars().all()

    async def _ensure_other_owner(self, organization_id: UUID) -> None:
        result = await self.db.execute(
            select(func.count(OrganizationMember.id)).where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.role == OrganizationRole.OWNER.value,
            )
        )
        if result.scalar_one() <= 1:
            raise LastOwnerError(organization_id)

    async def _get_member(self, organization_id: UUID, user_id: UUID) -> OrganizationMember | None:
        result = await self.db.execute(
            select(OrganizationMember).where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def _require_member(self, organization_id: UUID, user_id: UUID) -> OrganizationMember:
        member = await self._get_member(organization_id, user_id)
        if member is None:
            raise NotFoundError("Organization member", user_id)
        return member

    # =========================================================================
    # Teams
    # =========================================================================

    async def create_team(
        self,
        organization_id: UUID,
        name: str,
        actor: Principal,
        description: str | None = None,
    ) -> Team:
        """Create a team; the creator becomes its owner."""
        await actor.require_organization_role(organization_id, "editor")

        team = Team(
            organization_id=organization_id,
            name=name,
            description=description,
            created_by_id=actor.user_id,
        )
        self.db.add(team)
        await self.db.flush()
        self.db.add(TeamMember(team_id=team.id, user_id=actor.user_id, role=TeamRole.OWNER.value))
        await self.db.flush()

        logger.info("team_created", team_id=str(team.id), organization_id=str(organization_id))
        return team

    async def add_team_member(
        self,
        team_id: UUID,
        user_id: UUID,
        actor: Principal,
        role: TeamRole | str = TeamRole.MEMBER,
    ) -> TeamMember:
        role = TeamRole(role)
        result = await self.db.execute(select(Team).where(Team.id == team_id))
        team = result.scalar_one_or_none()
        if team is None:
            raise NotFoundError("Team", team_id)
        await actor.require_organization_role(team.organization_id, ADMIN_ROLE)

        existing = await self.db.execute(
            select(TeamMember.id).where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicateMemberError("User is already a member of the team")

        member = TeamMember(team_id=team_id, user_id=user_id, role=role.value)
        self.db.add(member)
        await self.db.flush()
        return member

    async def organization_teams(self, organization_id: UUID) -> Sequence[Team]:
        result = await self.db.execute(
            select(Team).where(Team.organization_id == organization_id).order_by(Team.name)
        )
        return result.scalars().all()
