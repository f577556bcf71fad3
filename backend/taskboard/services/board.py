"""Board helpers shared by the workflow and approval services.

Loading and locking of projects and tasks, WIP counting and dense position
maintenance within a (project, stage) column.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.exceptions import NotFoundError, WIPLimitExceededError
from taskboard.models.enums import WIPLimitMode
from taskboard.models.project import Project, Task
from taskboard.schemas.workflow import WorkflowStage, WorkflowStages


@dataclass(frozen=True)
class WIPLimitWarning:
    """Advisory returned when a warning-mode WIP limit is reached."""

    stage_id: str
    limit: int
    current_count: int

    @property
    def message(self) -> str:
        return (
            f"Stage '{self.stage_id}' is at or above its WIP limit "
            f"({self.current_count}/{self.limit})"
        )


async def get_project(db: AsyncSession, project_id: UUID, lock: bool = False) -> Project:
    """Load a project, optionally taking a row lock.

    Raises:
        NotFoundError: if the project does not exist
    """
    query = select(Project).where(Project.id == project_id)
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    project = result.scalar_one_or_none()
    if project is None:
        raise NotFoundError("Project", project_id)
    return project


async def get_task(db: AsyncSession, task_id: UUID, lock: bool = False) -> Task:
    """Load a task, optionally taking a row lock.

    Raises:
        NotFoundError: if the task does not exist
    """
    query = select(Task).where(Task.id == task_id)
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


def project_stages(project: Project) -> WorkflowStages:
    return WorkflowStages.load(project.workflow_stages or [], project.workflow_schema_version)


async def count_wip(
    db: AsyncSession,
    project_id: UUID,
    stage_id: str,
    exclude_task_id: UUID | None = None,
) -> int:
    """Count top-level tasks in a stage, the population WIP limits apply to."""
    query = select(func.count(Task.id)).where(
        Task.project_id == project_id,
        Task.stage_id == stage_id,
        Task.parent_task_id.is_(None),
    )
    if exclude_task_id is not None:
        query = query.where(Task.id != exclude_task_id)
    result = await db.execute(query)
    return result.scalar_one()


def evaluate_wip(stage: WorkflowStage, current_count: int) -> WIPLimitWarning | None:
    """Apply a stage's WIP limit to the number of tasks already in it.

    Raises:
        WIPLimitExceededError: the stage is full and the limit is strict
    """
    if stage.wip_limit is None or current_count < stage.wip_limit:
        return None
    if stage.wip_limit_mode == WIPLimitMode.STRICT:
        raise WIPLimitExceededError(stage.id, stage.wip_limit, current_count)
    return WIPLimitWarning(stage_id=stage.id, limit=stage.wip_limit, current_count=current_count)


async def stage_tasks(
    db: AsyncSession,
    project_id: UUID,
    stage_id: str,
    exclude_task_id: UUID | None = None,
) -> list[Task]:
    """Tasks of a column in board order."""
    query = select(Task).where(Task.project_id == project_id, Task.stage_id == stage_id)
    if exclude_task_id is not None:
        query = query.where(Task.id != exclude_task_id)
    query = query.order_by(Task.position, Task.created_at, Task.id)
    result = await db.execute(query)
    return list(result.scalars().all())


def renumber(tasks: list[Task]) -> None:
    """Make positions dense (0..n-1) in list order."""
    for index, task in enumerate(tasks):
        if task.position != index:
            task.position = index


async def place_task(
    db: AsyncSession,
    task: Task,
    to_stage_id: str,
    index: int | None = None,
) -> None:
    """Move ``task`` into ``to_stage_id`` at ``index`` (append when None).

    Positions in both the source and destination columns stay dense and unique.
    """
    from_stage_id = task.stage_id

    if from_stage_id != to_stage_id:
        remaining = await stage_tasks(db, task.project_id, from_stage_id, exclude_task_id=task.id)
        renumber(remaining)

    column = await stage_tasks(db, task.project_id, to_stage_id, exclude_task_id=task.id)
    if index is None or index > len(column):
        index = len(column)
    index = max(index, 0)
    column.insert(index, task)

    task.stage_id = to_stage_id
    renumber(column)
