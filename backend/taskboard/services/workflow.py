"""Workflow service for stage configuration and task transitions."""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.exceptions import StageInUseByTasksError
from taskboard.models.enums import ApprovalStatus
from taskboard.models.project import Task
from taskboard.schemas.workflow import CURRENT_SCHEMA_VERSION, WorkflowStage, WorkflowStages
from taskboard.services import board
from taskboard.services.access_control import Principal
from taskboard.services.activity import ActivityService
from taskboard.services.approval import ApprovalTransition, apply_stage_change
from taskboard.utils.time import utcnow

logger = structlog.get_logger()

CONFIGURE_ROLE = "admin"
MOVE_ROLE = "editor"


@dataclass
class MoveResult:
    """Outcome of a stage transition."""

    task: Task
    from_stage_id: str
    to_stage_id: str
    moved: bool
    warning: board.WIPLimitWarning | None = None
    approval_transition: ApprovalTransition | None = None


class WorkflowService:
    """Service owning per-project stage lists and task stage transitions."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.activity = ActivityService(db)

    # =========================================================================
    # Stage Configuration
    # =========================================================================

    async def get_stages(self, project_id: UUID) -> WorkflowStages:
        project = await board.get_project(self.db, project_id)
        return board.project_stages(project)

    async def configure_stages(
        self,
        project_id: UUID,
        stages: list[dict[str, Any] | WorkflowStage],
        actor: Principal,
    ) -> WorkflowStages:
        """
        Replace a project's stage list.

        Tasks whose stage is removed block the change. If the terminal stage
        moves to a different id, approval sub-states are re-derived so that
        pending tasks always sit in the terminal stage.

        Raises:
            ForbiddenError: actor is not owner/admin on the project
            StageConfigInvalidError: the list violates a configuration rule
            StageInUseByTasksError: a removed stage still holds tasks
        """
        await actor.require_project_role(project_id, CONFIGURE_ROLE)
        new_stages = WorkflowStages.validate(stages)

        project = await board.get_project(self.db, project_id, lock=True)
        old_stages = board.project_stages(project)

        removed = [stage_id for stage_id in old_stages.ids if stage_id not in new_stages]
        if removed:
            result = await self.db.execute(
                select(Task.stage_id, func.count(Task.id))
                .where(Task.project_id == project_id, Task.stage_id.in_(removed))
                .group_by(Task.stage_id)
            )
            in_use = sorted(stage_id for stage_id, count in result.all() if count)
            if in_use:
                raise StageInUseByTasksError(in_use)

        old_terminal = old_stages.terminal.id
        new_terminal = new_stages.terminal.id
        if old_terminal != new_terminal:
            await self._rederive_approval(project_id, old_terminal, new_terminal, actor.user_id)

        project.workflow_stages = new_stages.dump()
        project.workflow_schema_version = CURRENT_SCHEMA_VERSION
        await self.db.flush()

        logger.info(
            "workflow_stages_configured",
            project_id=str(project_id),
            stage_count=len(new_stages),
            terminal_stage=new_terminal,
        )
        return new_stages

    async def _rederive_approval(
        self,
        project_id: UUID,
        old_terminal: str,
        new_terminal: str,
        actor_id: UUID,
    ) -> None:
        result = await self.db.execute(
            select(Task).where(
                Task.project_id == project_id,
                Task.stage_id.in_([old_terminal, new_terminal]),
            )
        )
        now = utcnow()
        for task in result.scalars().all():
            if task.stage_id == old_terminal and task.approval_status == ApprovalStatus.PENDING.value:
                task.approval_status = ApprovalStatus.NONE.value
                task.moved_to_done_at = None
                task.moved_to_done_by_id = None
            elif task.stage_id == new_terminal and task.approval_status in (
                ApprovalStatus.NONE.value,
                ApprovalStatus.REJECTED.value,
            ):
                task.approval_status = ApprovalStatus.PENDING.value
                task.moved_to_done_at = now
                task.moved_to_done_by_id = actor_id
                task.rejection_reason = None

    # =========================================================================
    # Task Transitions
    # =========================================================================

    async def move_task(
        self,
        task_id: UUID,
        to_stage_id: str,
        actor: Principal,
        index: int | None = None,
    ) -> MoveResult:
        """
        Move a task to another stage of its project.

        Args:
            task_id: Task to move
            to_stage_id: Destination stage id
            actor: Caller; needs editor role or above
            index: Optional position in the destination column (appended when omitted)

        Returns:
            MoveResult with a WIP warning when a warning-mode limit was reached

        Raises:
            UnknownStageError: destination is not a stage of the project
            WIPLimitExceededError: destination is full and its limit is strict
        """
        task = await board.get_task(self.db, task_id, lock=True)
        await actor.require_project_role(task.project_id, MOVE_ROLE)

        # Serializes concurrent moves so WIP counts stay accurate
        project = await board.get_project(self.db, task.project_id, lock=True)
        stages = board.project_stages(project)
        to_stage = stages.require(to_stage_id)
        from_stage_id = task.stage_id

        if from_stage_id == to_stage.id:
            return MoveResult(task=task, from_stage_id=from_stage_id, to_stage_id=to_stage.id, moved=False)

        warning = None
        if task.parent_task_id is None:
            count = await board.count_wip(self.db, project.id, to_stage.id, exclude_task_id=task.id)
            warning = board.evaluate_wip(to_stage, count)

        transition = apply_stage_change(task, stages, from_stage_id, to_stage.id, actor.user_id)
        await board.place_task(self.db, task, to_stage.id, index)
        task.updated_by_id = actor.user_id
        await self.db.flush()

        await self.activity.log_task(
            task=task,
            organization_id=project.organization_id,
            actor_id=actor.user_id,
            activity_type="task.moved",
            description=f"Moved '{task.title}' to {to_stage.name}",
            extra_data={"from_stage_id": from_stage_id, "to_stage_id": to_stage.id},
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
            "task_moved",
            task_id=str(task.id),
            from_stage_id=from_stage_id,
            to_stage_id=to_stage.id,
            approval_status=task.approval_status,
            wip_warning=warning is not None,
        )
        return MoveResult(
            task=task,
            from_stage_id=from_stage_id,
            to_stage_id=to_stage.id,
            moved=True,
            warning=warning,
            approval_transition=transition,
        )

    async def reorder_task(self, task_id: UUID, index: int, actor: Principal) -> Task:
        """Change a task's position inside its current stage."""
        task = await board.get_task(self.db, task_id, lock=True)
        await actor.require_project_role(task.project_id, MOVE_ROLE)
        await board.get_project(self.db, task.project_id, lock=True)

        await board.place_task(self.db, task, task.stage_id, index)
        task.updated_by_id = actor.user_id
        await self.db.flush()
        return task

    # =========================================================================
    # Board Queries
    # =========================================================================

    async def stage_counts(self, project_id: UUID) -> dict[str, int]:
        """Top-level task count per stage, in stage order."""
        stages = await self.get_stages(project_id)
        result = await self.db.execute(
            select(Task.stage_id, func.count(Task.id))
            .where(Task.project_id == project_id, Task.parent_task_id.is_(None))
            .group_by(Task.stage_id)
        )
        counts = dict(result.all())
        return {stage_id: counts.get(stage_id, 0) for stage_id in stages.ids}

    async def board(self, project_id: UUID) -> dict[str, list[Task]]:
        """Tasks grouped by stage in board order."""
        stages = await self.get_stages(project_id)
        result = await self.db.execute(
            select(Task)
            .where(Task.project_id == project_id)
            .order_by(Task.position, Task.created_at)
        )
        columns: dict[str, list[Task]] = {stage_id: [] for stage_id in stages.ids}
        for task in result.scalars().all():
            columns.setdefault(task.stage_id, []).append(task)
        return columns
