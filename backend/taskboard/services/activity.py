"""Activity log service."""

from typing import Any, Sequence
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.models.activity import Activity
from taskboard.models.project import Task

logger = structlog.get_logger()


class ActivityService:
    """Append-only audit trail for task changes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        activity_type: str,
        target_type: str,
        target_id: UUID,
        organization_id: UUID,
        actor_id: UUID | None,
        project_id: UUID | None = None,
        target_title: str | None = None,
        description: str | None = None,
        extra_data: dict[str, Any] | None = None,
    ) -> Activity:
        activity = Activity(
            activity_type=activity_type,
            target_type=target_type,
            target_id=target_id,
            target_title=target_title,
            organization_id=organization_id,
            project_id=project_id,
            actor_id=actor_id,
            description=description,
            extra_data=extra_data,
        )
        self.db.add(activity)
        await self.db.flush()
        return activity

    async def log_task(
        self,
        task: Task,
        organization_id: UUID,
        actor_id: UUID | None,
        activity_type: str,
        description: str | None = None,
        extra_data: dict[str, Any] | None = None,
    ) -> Activity:
        """Record an activity targeting a task."""
        return await self.log(
            activity_type=activity_type,
            target_type="task",
            target_id=task.id,
            target_title=task.title,
            organization_id=organization_id,
            project_id=task.project_id,
            actor_id=actor_id,
            description=description,
            extra_data=extra_data,
        )

    async def project_feed(self, project_id: UUID, limit: int = 50, offset: int = 0) -> Sequence[Activity]:
        """Most recent activities of a project."""
        result = await self.db.execute(
            select(Activity)
            .where(Activity.project_id == project_id)
            .order_by(Activity.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return result.scalars().all()

    async def task_history(self, task_id: UUID) -> Sequence[Activity]:
        result = await self.db.execute(
            select(Activity)
            .where(Activity.target_type == "task", Activity.target_id == task_id)
            .order_by(Activity.created_at)
        )
        return result.scalars().all()
