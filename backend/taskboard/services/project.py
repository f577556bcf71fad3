"""Project administration service."""

from typing import Any, Sequence
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.exceptions import DuplicateMemberError, NotFoundError
from taskboard.models.enums import ProjectRole
from taskboard.models.organization import Team
from taskboard.models.project import Project, ProjectMember
from taskboard.schemas.workflow import CURRENT_SCHEMA_VERSION, WorkflowStages
from taskboard.services import board
from taskboard.services.access_control import Principal

logger = structlog.get_logger()


class ProjectService:
    """Service for projects and their memberships."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_project(
        self,
        organization_id: UUID,
        name: str,
        actor: Principal,
        description: str | None = None,
        team_id: UUID | None = None,
        stages: list[dict[str, Any]] | None = None,
        chat_channel: str | None = None,
    ) -> Project:
        """
        Create a project inside an organization.

        The creator becomes the project owner. Without explicit stages the
        default board (To Do, In Progress, Review, Done) is used.
        """
        await actor.require_organization_role(organization_id, "editor")

        if team_id is not None:
            result = await self.db.execute(
                select(Team.id).where(Team.id == team_id, Team.organization_id == organization_id)
            )
            if result.scalar_one_or_none() is None:
                raise NotFoundError("Team", team_id)

        workflow = WorkflowStages.validate(stages) if stages else WorkflowStages.default()
        project = Project(
            organization_id=organization_id,
            team_id=team_id,
            name=name,
            description=description,
            created_by_id=actor.user_id,
            workflow_stages=workflow.dump(),
            workflow_schema_version=CURRENT_SCHEMA_VERSION,
            chat_channel=chat_channel,
        )
        self.db.add(project)
        await self.db.flush()

        self.db.add(
            ProjectMember(project_id=project.id, user_id=actor.user_id, role=ProjectRole.OWNER.value)
        )
        await self.db.flush()
        actor.forget(project.id)

        logger.info(
            "project_created",
            project_id=str(project.id),
            organization_id=str(organization_id),
            stage_count=len(workflow),
        )
        return project

    async def get_project(self, project_id: UUID, actor: Principal) -> Project:
        await actor.require_project_role(project_id, "reader")
        return await board.get_project(self.db, project_id)

    async def update_project(
        self,
        project_id: UUID,
        actor: Principal,
        name: str | None = None,
        description: str | None = None,
        chat_channel: str | None = None,
    ) -> Project:
        await actor.require_project_role(project_id, "admin")
        project = await board.get_project(self.db, project_id)
        if name is not None:
            project.name = name
        if description is not None:
            project.description = description
        if chat_channel is not None:
            project.chat_channel = chat_channel or None
        await self.db.flush()
        return project

    async def delete_project(self, project_id: UUID, actor: Principal) -> None:
        """Delete a project and, through cascades, everything it owns."""
        await actor.require_project_role(project_id, "owner")
        project = await board.get_project(self.db, project_id, lock=True)
        await self.db.delete(project)
        await self.db.flush()
        actor.forget(project_id)
        logger.info("project_deleted", project_id=str(project_id))

    async def user_projects(self, user_id: UUID) -> Sequence[Project]:
        result = await self.db.execute(
            select(Project)
            .join(ProjectMember, ProjectMember.project_id == Project.id)
            .where(ProjectMember.user_id == user_id)
            .order_by(Project.name)
        )
        return result.scalars().all()

    # =========================================================================
    # Members
    # =========================================================================

    async def add_member(
        self,
        project_id: UUID,
        user_id: UUID,
        actor: Principal,
        role: ProjectRole | str = ProjectRole.EDITOR,
    ) -> ProjectMember:
        role = ProjectRole(role)
        await actor.require_project_role(project_id, "admin")
        if role == ProjectRole.OWNER:
            await actor.require_project_role(project_id, "owner")

        if await self._get_member(project_id, user_id) is not None:
            raise DuplicateMemberError("User is already a member of the project")

        member = ProjectMember(project_id=project_id, user_id=user_id, role=role.value)
        self.db.add(member)
        await self.db.flush()

        logger.info(
            "project_member_added",
            project_id=str(project_id),
            user_id=str(user_id),
            role=role.value,
        )
        return member

    async def update_member_role(
        self,
        project_id: UUID,
        user_id: UUID,
        role: ProjectRole | str,
        actor: Principal,
    ) -> ProjectMember:
        role = ProjectRole(role)
        await actor.require_project_role(project_id, "admin")
        member = await self._get_member(project_id, user_id)
        if member is None:
            raise NotFoundError("Project member", user_id)
        if ProjectRole.OWNER in (role, ProjectRole(member.role)):
            await actor.require_project_role(project_id, "owner")

        member.role = role.value
        await self.db.flush()
        actor.forget(project_id)
        return member

    async def remove_member(self, project_id: UUID, user_id: UUID, actor: Principal) -> None:
        if user_id != actor.user_id:
            await actor.require_project_role(project_id, "admin")
        member = await self._get_member(project_id, user_id)
        if member is None:
            raise NotFoundError("Project member", user_id)
        await self.db.delete(member)
        await self.db.flush()
        actor.forget(project_id)

    async def members(self, project_id: UUID) -> Sequence[ProjectMember]:
        result = await self.db.execute(
            select(ProjectMember)
            .where(ProjectMember.project_id == project_id)
            .order_by(ProjectMember.created_at)
        )
        return result.scalars().all()

    async def _get_member(self, project_id: UUID, user_id: UUID) -> ProjectMember | None:
        result = await self.db.execute(
            select(ProjectMember).where(
                ProjectMember.project_id == project_id,
                ProjectMember.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()
