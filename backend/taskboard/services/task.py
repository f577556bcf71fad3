"""Task service for creating and editing tasks."""

from datetime import date
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.exceptions import InvalidError, NestingTooDeepError, NotFoundError
from taskboard.models.enums import ApprovalStatus, TASK_COLORS, TaskPriority
from taskboard.models.project import Milestone, Task
from taskboard.services import board
from taskboard.services.access_control import Principal
from taskboard.services.activity import ActivityService
from taskboard.services.approval import ApprovalTransition, apply_stage_change

logger = structlog.get_logger()

EDIT_ROLE = "editor"

# Fields a plain update may change; stage, approval and hierarchy have their own paths
UPDATABLE_FIELDS = {
    "title",
    "description",
    "priority",
    "start_date",
    "due_date",
    "estimated_hours",
    "milestone_id",
    "color",
}


def check_color(color: str | None) -> None:
    if color is not None and color not in TASK_COLORS:
        raise InvalidError(f"Color {color} is not in the task palette", code="INVALID_COLOR")


class TaskService:
    """Service for task creation, edits and hierarchy."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.activity = ActivityService(db)

    async def create_task(
        self,
        project_id: UUID,
        title: str,
        actor: Principal,
        stage_id: str | None = None,
        description: str | None = None,
        priority: TaskPriority | str = TaskPriority.NONE,
        start_date: date | None = None,
        due_date: date | None = None,
        estimated_hours: float | None = None,
        parent_task_id: UUID | None = None,
        milestone_id: UUID | None = None,
        color: str | None = None,
        index: int | None = None,
    ) -> Task:
        """
        Create a task in a stage of its project (the first stage by default).

        A task created directly in the terminal stage starts out pending
        approval. Creation does not check WIP limits.

        Raises:
            UnknownStageError: stage is not part of the project
            NestingTooDeepError: the parent is itself a subtask
        """
        await actor.require_project_role(project_id, EDIT_ROLE)
        project = await board.get_project(self.db, project_id, lock=True)
        stages = board.project_stages(project)
        stage = stages.require(stage_id) if stage_id else stages.first

        check_color(color)
        if parent_task_id is not None:
            await self._check_parent(project_id, parent_task_id)
        if milestone_id is not None:
            await self._check_milestone(project_id, milestone_id)

        task = Task(
            project_id=project_id,
            title=title,
            description=description,
            priority=TaskPriority(priority).value,
            stage_id=stage.id,
            start_date=start_date,
            due_date=due_date,
            estimated_hours=estimated_hours,
            parent_task_id=parent_task_id,
            milestone_id=milestone_id,
            color=color,
            created_by_id=actor.user_id,
            updated_by_id=actor.user_id,
            approval_status=ApprovalStatus.NONE.value,
        )
        transition = apply_stage_change(task, stages, None, stage.id, actor.user_id)

        column = await board.stage_tasks(self.db, project_id, stage.id)
        if index is None or index > len(column):
            index = len(column)
        column.insert(max(index, 0), task)
        board.renumber(column)

        self.db.add(task)
        await self.db.flush()

        await self.activity.log_task(
            task=task,
            organization_id=project.organization_id,
            actor_id=actor.user_id,
            activity_type="task.created",
            description=f"Created '{task.title}'",
        )
        if transition == ApprovalTransition.SUBMITTED:
            await self.activity.log_task(
                task=task,
                organization_id=project.organization_id,
                actor_id=actor.user_id,
                activity_type="task.approval_requested",
                description=f"Requested approval for '{task.title}'",
            )

        logger.info(
            "task_created",
            task_id=str(task.id),
            project_id=str(project_id),
            stage_id=stage.id,
        )
        return task

    async def get_task(self, task_id: UUID, actor: Principal) -> Task:
        task = await board.get_task(self.db, task_id)
        await actor.require_project_role(task.project_id, "reader")
        return task

    async def update_task(self, task_id: UUID, changes: dict[str, Any], actor: Principal) -> Task:
        """Apply plain field edits."""
        task = await board.get_task(self.db, task_id, lock=True)
        await actor.require_project_role(task.project_id, EDIT_ROLE)

        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        if "color" in changes:
            check_color(changes["color"])
        if changes.get("milestone_id") is not None:
            await self._check_milestone(task.project_id, changes["milestone_id"])
        if "priority" in changes:
            changes["priority"] = TaskPriority(changes["priority"]).value

        for field, value in changes.items():
            setattr(task, field, value)
        task.updated_by_id = actor.user_id
        await self.db.flush()
        return task

    async def set_parent(self, task_id: UUID, parent_task_id: UUID | None, actor: Principal) -> Task:
        """Make a task a subtask of another, or detach it with None.

        Raises:
            NestingTooDeepError: parent is a subtask, or the task has subtasks of its own
        """
        task = await board.get_task(self.db, task_id, lock=True)
        await actor.require_project_role(task.project_id, EDIT_ROLE)

        if parent_task_id is not None:
            if parent_task_id == task_id:
                raise InvalidError("A task cannot be its own parent", code="SELF_PARENT")
            await self._check_parent(task.project_id, parent_task_id)
            children = await self.db.execute(
                select(Task.id).where(Task.parent_task_id == task_id).limit(1)
            )
            if children.scalar_one_or_none() is not None:
                raise NestingTooDeepError(task_id)

        task.parent_task_id = parent_task_id
        task.updated_by_id = actor.user_id
        await self.db.flush()
        return task

    async def delete_task(self, task_id: UUID, actor: Principal) -> None:
        """Delete a task; subtasks, assignments, edges and comments cascade."""
        task = await board.get_task(self.db, task_id, lock=True)
        await actor.require_project_role(task.project_id, EDIT_ROLE)
        project_id, stage_id = task.project_id, task.stage_id

        await self.db.delete(task)
        await self.db.flush()

        column = await board.stage_tasks(self.db, project_id, stage_id)
        board.renumber(column)
        await self.db.flush()
        logger.info("task_deleted", task_id=str(task_id), project_id=str(project_id))

    async def subtasks(self, task_id: UUID) -> list[Task]:
        result = await self.db.execute(
            select(Task).where(Task.parent_task_id == task_id).order_by(Task.created_at)
        )
        return list(result.scalars().all())

    async def _check_parent(self, project_id: UUID, parent_task_id: UUID) -> None:
        result = await self.db.execute(select(Task).where(Task.id == parent_task_id))
        parent = result.scalar_one_or_none()
        if parent is None or parent.project_id != project_id:
            raise NotFoundError("Task", parent_task_id)
        if parent.parent_task_id is not None:
            raise NestingTooDeepError(parent_task_id)

    async def _check_milestone(self, project_id: UUID, milestone_id: UUID) -> None:
        result = await self.db.execute(
            select(Milestone.id).where(Milestone.id == milestone_id, Milestone.project_id == project_id)
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError("Milestone", milestone_id)
