"""Task assignment service for managing multiple assignees per task."""

from typing import Sequence
from uuid import UUID

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.exceptions import InvalidError
from taskboard.models.enums import AssignmentRole
from taskboard.models.project import TaskAssignment
from taskboard.models.user import User
from taskboard.services import board
from taskboard.services.access_control import Principal, has_project_access
from taskboard.services.attention import AttentionService
from taskboard.utils.time import utcnow

logger = structlog.get_logger()

EDIT_ROLE = "editor"


class TaskAssignmentService:
    """Service for managing task assignments (multiple assignees per task)."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.attention = AttentionService(db)

    # =========================================================================
    # Assignment CRUD Operations
    # =========================================================================

    async def assign_user(
        self,
        task_id: UUID,
        user_id: UUID,
        actor: Principal,
        role: AssignmentRole | str = AssignmentRole.ASSIGNEE,
    ) -> TaskAssignment:
        """Assign a project member to a task.

        Re-assigning an existing assignee only updates the role.
        """
        role = AssignmentRole(role)
        task = await board.get_task(self.db, task_id, lock=True)
        await actor.require_project_role(task.project_id, EDIT_ROLE)

        member = await self.db.execute(
            select(User.id).where(User.id == user_id, has_project_access(User.id, task.project_id))
        )
        if member.scalar_one_or_none() is None:
            raise InvalidError("Assignee must be a project member", code="ASSIGNEE_NOT_MEMBER")

        existing = await self.get_assignment(task_id, user_id)
        if existing:
            existing.role = role.value
            await self.db.flush()
            return existing

        assignment = TaskAssignment(
            task_id=task_id,
            user_id=user_id,
            assigned_by_id=actor.user_id,
            role=role.value,
            assigned_at=utcnow(),
        )
        self.db.add(assignment)
        await self.db.flush()

        await self.attention.on_assignment(task, user_id, actor.user_id)

        logger.info(
            "user_assigned_to_task",
            task_id=str(task_id),
            user_id=str(user_id),
            role=role.value,
            assigned_by=str(actor.user_id),
        )
        return assignment

    async def unassign_user(self, task_id: UUID, user_id: UUID, actor: Principal) -> bool:
        """Remove a user's assignment. Returns False when there was none."""
        task = await board.get_task(self.db, task_id, lock=True)
        await actor.require_project_role(task.project_id, EDIT_ROLE)

        assignment = await self.get_assignment(task_id, user_id)
        if assignment is None:
            return False

        await self.db.delete(assignment)
        await self.db.flush()

        await self.attention.on_unassignment(task, user_id, actor.user_id)

        logger.info(
            "user_unassigned_from_task",
            task_id=str(task_id),
            user_id=str(user_id),
            unassigned_by=str(actor.user_id),
        )
        return True

    async def get_assignment(
        self,
        task_id: UUID,
        user_id: UUID,
    ) -> TaskAssignment | None:
        """Get a specific assignment by task and user."""
        result = await self.db.execute(
            select(TaskAssignment).where(
                and_(
                    TaskAssignment.task_id == task_id,
                    TaskAssignment.user_id == user_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_task_assignments(self, task_id: UUID) -> Sequence[TaskAssignment]:
        """All assignments of a task, oldest first."""
        result = await self.db.execute(
            select(TaskAssignment)
            .where(TaskAssignment.task_id == task_id)
            .order_by(TaskAssignment.assigned_at)
        )
        return result.scalars().all()
