"""Project and organization access control.

Roles are resolved once per request and memoized on the ``Principal``:
- Project members get their explicit project role
- Organization owners and admins get the same role on every project of the organization
"""

from uuid import UUID

import structlog
from sqlalchemy import ColumnElement, and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.exceptions import ForbiddenError, NotFoundError
from taskboard.models.organization import OrganizationMember
from taskboard.models.project import Project, ProjectMember

logger = structlog.get_logger()


# Role hierarchy for permission checking (higher = more permissions)
ROLE_HIERARCHY = {"owner": 4, "admin": 3, "editor": 2, "reader": 1}

# Organization roles that carry over to every project in the organization
INHERITED_ORG_ROLES = {"owner", "admin"}


def has_sufficient_role(user_role: str | None, required_role: str) -> bool:
    """Check if user_role meets or exceeds required_role."""
    if user_role is None:
        return False
    return ROLE_HIERARCHY.get(user_role, 0) >= ROLE_HIERARCHY.get(required_role, 0)


def highest_role(*roles: str | None) -> str | None:
    """Pick the strongest of several (possibly missing) roles."""
    present = [role for role in roles if role]
    if not present:
        return None
    return max(present, key=lambda role: ROLE_HIERARCHY.get(role, 0))


def has_project_access(user_id_column: ColumnElement, project_id: UUID) -> ColumnElement[bool]:
    """SQL filter for users holding any role on a project, inherited ones included."""
    direct = select(ProjectMember.user_id).where(ProjectMember.project_id == project_id)
    inherited = (
        select(OrganizationMember.user_id)
        .join(Project, Project.organization_id == OrganizationMember.organization_id)
        .where(
            Project.id == project_id,
            OrganizationMember.role.in_(sorted(INHERITED_ORG_ROLES)),
        )
    )
    return or_(user_id_column.in_(direct), user_id_column.in_(inherited))


class Principal:
    """The authenticated caller plus request-scoped role lookups."""

    def __init__(self, db: AsyncSession, user_id: UUID):
        self.db = db
        self.user_id = user_id
        self._project_roles: dict[UUID, str | None] = {}
        self._organization_roles: dict[UUID, str | None] = {}

    async def project_role(self, project_id: UUID) -> str | None:
        """Effective role on a project, or None when the caller has no access.

        Raises:
            NotFoundError: if the project does not exist
        """
        if project_id in self._project_roles:
            return self._project_roles[project_id]

        result = await self.db.execute(
            select(
                Project.organization_id,
                ProjectMember.role.label("member_role"),
                OrganizationMember.role.label("org_role"),
            )
            .select_from(Project)
            .outerjoin(
                ProjectMember,
                and_(
                    ProjectMember.project_id == Project.id,
                    ProjectMember.user_id == self.user_id,
                ),
            )
            .outerjoin(
                OrganizationMember,
                and_(
                    OrganizationMember.organization_id == Project.organization_id,
                    OrganizationMember.user_id == self.user_id,
                ),
            )
            .where(Project.id == project_id)
        )
        row = result.first()
        if row is None:
            raise NotFoundError("Project", project_id)

        org_role = row.org_role if row.org_role in INHERITED_ORG_ROLES else None
        role = highest_role(row.member_role, org_role)

        self._project_roles[project_id] = role
        if row.org_role is not None:
            self._organization_roles.setdefault(row.organization_id, row.org_role)
        return role

    async def organization_role(self, organization_id: UUID) -> str | None:
        if organization_id in self._organization_roles:
            return self._organization_roles[organization_id]

        result = await self.db.execute(
            select(OrganizationMember.role).where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.user_id == self.user_id,
            )
        )
        role = result.scalar_one_or_none()
        self._organization_roles[organization_id] = role
        return role

    async def require_project_role(self, project_id: UUID, required_role: str = "reader") -> str:
        """Ensure the caller holds at least ``required_role`` on the project.

        Raises:
            NotFoundError: project missing or invisible to the caller
            ForbiddenError: caller's role is too weak
        """
        role = await self.project_role(project_id)
        if role is None:
            raise NotFoundError("Project", project_id)
        if not has_sufficient_role(role, required_role):
            logger.info(
                "project_access_denied",
                project_id=str(project_id),
                user_id=str(self.user_id),
                role=role,
                required_role=required_role,
            )
            raise ForbiddenError(f"Requires {required_role} role on the project")
        return role

    async def require_organization_role(
        self, organization_id: UUID, required_role: str = "reader"
    ) -> str:
        role = await self.organization_role(organization_id)
        if role is None:
            raise NotFoundError("Organization", organization_id)
        if not has_sufficient_role(role, required_role):
            raise ForbiddenError(f"Requires {required_role} role in the organization")
        return role

    def forget(self, project_id: UUID | None = None) -> None:
        """Drop memoized roles after a membership change in this request."""
        if project_id is None:
            self._project_roles.clear()
            self._organization_roles.clear()
        else:
            self._project_roles.pop(project_id, None)
