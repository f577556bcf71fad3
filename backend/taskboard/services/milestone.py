"""Milestone service."""

from dataclasses import dataclass
from datetime import date
from typing import Sequence
from uuid import UUID

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.exceptions import NotFoundError
from taskboard.models.enums import ApprovalStatus
from taskboard.models.project import Milestone, Task
from taskboard.services.access_control import Principal
from taskboard.services.task import check_color
from taskboard.utils.time import utcnow

logger = structlog.get_logger()

EDIT_ROLE = "editor"


@dataclass
class MilestoneProgress:
    milestone: Milestone
    total_tasks: int
    completed_tasks: int

    @property
    def percent(self) -> int:
        if not self.total_tasks:
            return 0
        return round(100 * self.completed_tasks / self.total_tasks)


class MilestoneService:
    """Service for project milestones; progress counts approved tasks only."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_milestone(
        self,
        project_id: UUID,
        name: str,
        target_date: date,
        actor: Principal,
        description: str | None = None,
        color: str | None = None,
    ) -> Milestone:
        await actor.require_project_role(project_id, EDIT_ROLE)
        check_color(color)

        milestone = Milestone(
            project_id=project_id,
            name=name,
            description=description,
            target_date=target_date,
        )
        if color:
            milestone.color = color
        self.db.add(milestone)
        await self.db.flush()

        logger.info("milestone_created", milestone_id=str(milestone.id), project_id=str(project_id))
        return milestone

    async def get_milestone(self, milestone_id: UUID) -> Milestone:
        result = await self.db.execute(select(Milestone).where(Milestone.id == milestone_id))
        milestone = result.scalar_one_or_none()
        if milestone is None:
            raise NotFoundError("Milestone", milestone_id)
        return milestone

    async def set_completed(self, milestone_id: UUID, completed: bool, actor: Principal) -> Milestone:
        """Complete or reopen a milestone."""
        milestone = await self.get_milestone(milestone_id)
        await actor.require_project_role(milestone.project_id, EDIT_ROLE)
        milestone.completed_at = utcnow() if completed else None
        await self.db.flush()
        return milestone

    async def delete_milestone(self, milestone_id: UUID, actor: Principal) -> None:
        """Delete a milestone; its tasks are kept and lose the reference."""
        milestone = await self.get_milestone(milestone_id)
        await actor.require_project_role(milestone.project_id, EDIT_ROLE)
        await self.db.delete(milestone)
        await self.db.flush()

    async def project_milestones(self, project_id: UUID) -> Sequence[Milestone]:
        result = await self.db.execute(
            select(Milestone)
            .where(Milestone.project_id == project_id)
            .order_by(Milestone.target_date, Milestone.created_at)
        )
        return result.scalars().all()

    async def progress(self, milestone_id: UUID) -> MilestoneProgress:
        milestone = await self.get_milestone(milestone_id)
        result = await self.db.execute(
            select(
                func.count(Task.id),
                func.coalesce(
                    func.sum(
                        case((Task.approval_status == ApprovalStatus.APPROVED.value, 1), else_=0)
                    ),
                    0,
                ),
            ).where(Task.milestone_id == milestone_id)
        )
        total, completed = result.one()
        return MilestoneProgress(
            milestone=milestone, total_tasks=total, completed_tasks=int(completed)
        )
