"""Approval controller.

A task's approval sub-state is orthogonal to its stage:

    none/rejected --enter terminal--> pending
    pending --approve--> approved        (owner/admin)
    pending --reject--> rejected         (owner/admin, task returned to a non-terminal stage)
    pending --leave terminal--> none
    approved --any move--> approved      (sticky)

The "completed" count of a project or organization is the number of
approved tasks, nothing else.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Sequence
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.exceptions import InvalidReturnStageError, NotPendingError
from taskboard.models.enums import ApprovalStatus
from taskboard.models.project import Project, Task
from taskboard.schemas.workflow import WorkflowStages
from taskboard.services import board
from taskboard.services.access_control import Principal
from taskboard.services.activity import ActivityService
from taskboard.utils.time import utcnow

logger = structlog.get_logger()

APPROVER_ROLE = "admin"


class ApprovalTransition(str, Enum):
    SUBMITTED = "submitted"
    WITHDRAWN = "withdrawn"


def apply_stage_change(
    task: Task,
    stages: WorkflowStages,
    from_stage_id: str | None,
    to_stage_id: str,
    actor_id: UUID | None,
    now: datetime | None = None,
) -> ApprovalTransition | None:
    """Update the approval sub-state for a stage change.

    ``from_stage_id`` is None when the task is being created. The task's
    ``stage_id`` itself is not touched.
    """
    entering = stages.is_terminal(to_stage_id) and not (
        from_stage_id is not None and stages.is_terminal(from_stage_id)
    )
    leaving = (
        from_stage_id is not None
        and stages.is_terminal(from_stage_id)
        and not stages.is_terminal(to_stage_id)
    )

    if entering and task.approval_status != ApprovalStatus.APPROVED.value:
        task.approval_status = ApprovalStatus.PENDING.value
        task.moved_to_done_at = now or utcnow()
        task.moved_to_done_by_id = actor_id
        task.rejection_reason = None
        return ApprovalTransition.SUBMITTED

    if leaving and task.approval_status == ApprovalStatus.PENDING.value:
        task.approval_status = ApprovalStatus.NONE.value
        task.moved_to_done_at = None
        task.moved_to_done_by_id = None
        return ApprovalTransition.WITHDRAWN

    return None


@dataclass
class RejectResult:
    task: Task
    from_stage_id: str
    warning: board.WIPLimitWarning | None = None


class ApprovalService:
    """Service for role-gated approval decisions and completed counts."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.activity = ActivityService(db)

    # =========================================================================
    # Decisions
    # =========================================================================

    async def approve(self, task_id: UUID, actor: Principal) -> Task:
        """Approve a pending task.

        Raises:
            ForbiddenError: actor is not owner/admin on the project
            NotPendingError: task is not awaiting approval
        """
        task = await board.get_task(self.db, task_id, lock=True)
        await actor.require_project_role(task.project_id, APPROVER_ROLE)

        if task.approval_status != ApprovalStatus.PENDING.value:
            raise NotPendingError(task.id, task.approval_status)

        now = utcnow()
        task.approval_status = ApprovalStatus.APPROVED.value
        task.approved_at = now
        task.approved_by_id = actor.user_id
        task.completed_at = now
        task.updated_by_id = actor.user_id
        await self.db.flush()

        project = await board.get_project(self.db, task.project_id)
        await self.activity.log_task(
            task=task,
            organization_id=project.organization_id,
            actor_id=actor.user_id,
            activity_type="task.approved",
            description=f"Approved '{task.title}'",
        )

        logger.info("task_approved", task_id=str(task.id), approved_by=str(actor.user_id))
        return task

    async def reject(
        self,
        task_id: UUID,
        actor: Principal,
        return_stage_id: str,
        reason: str | None = None,
    ) -> RejectResult:
        """Reject a pending task and send it back to ``return_stage_id``.

        The return move is not subject to strict WIP limits; a full stage is
        reported through the result's warning.

        Raises:
            ForbiddenError: actor is not owner/admin on the project
            NotPendingError: task is not awaiting approval
            InvalidReturnStageError: return stage is terminal or unknown
        """
        task = await board.get_task(self.db, task_id, lock=True)
        await actor.require_project_role(task.project_id, APPROVER_ROLE)

        if task.approval_status != ApprovalStatus.PENDING.value:
            raise NotPendingError(task.id, task.approval_status)

        project = await board.get_project(self.db, task.project_id, lock=True)
        stages = board.project_stages(project)
        return_stage = stages.get(return_stage_id)
        if return_stage is None or return_stage.is_done_stage:
            raise InvalidReturnStageError(return_stage_id)

        count = await board.count_wip(self.db, project.id, return_stage.id, exclude_task_id=task.id)
        warning = None
        if return_stage.wip_limit is not None and count >= return_stage.wip_limit:
            warning = board.WIPLimitWarning(
                stage_id=return_stage.id, limit=return_stage.wip_limit, current_count=count
            )

        from_stage_id = task.stage_id
        await board.place_task(self.db, task, return_stage.id)

        task.approval_status = ApprovalStatus.REJECTED.value
        task.rejection_reason = reason
        task.moved_to_done_at = None
        task.moved_to_done_by_id = None
        task.updated_by_id = actor.user_id
        await self.db.flush()

        await self.activity.log_task(
            task=task,
            organization_id=project.organization_id,
            actor_id=actor.user_id,
            activity_type="task.rejected",
            description=f"Rejected '{task.title}'",
            extra_data={"reason": reason, "return_stage_id": return_stage.id},
        )

        logger.info(
            "task_rejected",
            task_id=str(task.id),
            rejected_by=str(actor.user_id),
            return_stage_id=return_stage.id,
        )
        return RejectResult(task=task, from_stage_id=from_stage_id, warning=warning)

    # =========================================================================
    # Counts
    # =========================================================================

    async def completed_count(self, project_id: UUID) -> int:
        """Number of approved tasks in a project."""
        result = await self.db.execute(
            select(func.count(Task.id)).where(
                Task.project_id == project_id,
                Task.approval_status == ApprovalStatus.APPROVED.value,
            )
        )
        return result.scalar_one()

    async def organization_completed_count(self, organization_id: UUID) -> int:
        """Number of approved tasks across an organization's projects."""
        result = await self.db.execute(
            select(func.count(Task.id))
            .join(Project, Project.id == Task.project_id)
            .where(
                Project.organization_id == organization_id,
                Task.approval_status == ApprovalStatus.APPROVED.value,
            )
        )
        return result.scalar_one()

    async def pending_count(self, project_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(Task.id)).where(
                Task.project_id == project_id,
                Task.approval_status == ApprovalStatus.PENDING.value,
            )
        )
        return result.scalar_one()

    async def pending_tasks(self, project_id: UUID) -> Sequence[Task]:
        """Tasks awaiting a decision, oldest submission first."""
        result = await self.db.execute(
            select(Task)
            .where(
                Task.project_id == project_id,
                Task.approval_status == ApprovalStatus.PENDING.value,
            )
            .order_by(Task.moved_to_done_at, Task.created_at)
        )
        return result.scalars().all()
