"""Task dependency graph service.

Edges point from the blocking task to the blocked task. The graph is kept
acyclic: before an edge ``a -> b`` is stored, a breadth-first walk from ``b``
along outgoing edges must not reach ``a``.
"""

from collections import deque
from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

import structlog
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.exceptions import (
    CircularDependencyError,
    DuplicateDependencyError,
    NotFoundError,
    SelfDependencyError,
)
from taskboard.models.enums import ApprovalStatus, DependencyType
from taskboard.models.project import Project, Task, TaskDependency
from taskboard.schemas.workflow import WorkflowStages
from taskboard.services import board
from taskboard.services.access_control import Principal
from taskboard.services.activity import ActivityService

logger = structlog.get_logger()

EDIT_ROLE = "editor"


@dataclass
class Blocker:
    task: Task
    dependency: TaskDependency
    is_complete: bool


@dataclass
class BlockedTask:
    task: Task
    dependency: TaskDependency


class DependencyService:
    """Service for the blocking-relationship graph between tasks."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.activity = ActivityService(db)
        self._stages: dict[UUID, WorkflowStages] = {}

    # =========================================================================
    # Edge CRUD
    # =========================================================================

    async def add_dependency(
        self,
        blocking_task_id: UUID,
        blocked_task_id: UUID,
        actor: Principal,
        dependency_type: DependencyType | str = DependencyType.FINISH_TO_START,
        lag_days: int = 0,
    ) -> TaskDependency:
        """
        Add a blocking edge.

        Raises:
            SelfDependencyError: blocking and blocked are the same task
            DuplicateDependencyError: the edge already exists
            CircularDependencyError: the edge would close a cycle
        """
        if blocking_task_id == blocked_task_id:
            raise SelfDependencyError(blocking_task_id)

        dependency_type = DependencyType(dependency_type)

        # Lock both endpoints in a stable order
        first, second = sorted([blocking_task_id, blocked_task_id], key=str)
        tasks = {
            first: await board.get_task(self.db, first, lock=True),
            second: await board.get_task(self.db, second, lock=True),
        }
        blocking, blocked = tasks[blocking_task_id], tasks[blocked_task_id]
        await actor.require_project_role(blocked.project_id, EDIT_ROLE)
        if blocking.project_id != blocked.project_id:
            await actor.require_project_role(blocking.project_id, "reader")

        existing = await self._get_edge(blocking_task_id, blocked_task_id)
        if existing is not None:
            raise DuplicateDependencyError(blocking_task_id, blocked_task_id)

        if await self._reaches(blocked_task_id, blocking_task_id):
            raise CircularDependencyError(blocking_task_id, blocked_task_id)

        dependency = TaskDependency(
            blocking_task_id=blocking_task_id,
            blocked_task_id=blocked_task_id,
            dependency_type=dependency_type.value,
            lag_days=lag_days,
            created_by_id=actor.user_id,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(dependency)
        except IntegrityError as e:
            # Lost a race with an identical insert
            raise DuplicateDependencyError(blocking_task_id, blocked_task_id) from e

        project = await board.get_project(self.db, blocked.project_id)
        await self.activity.log_task(
            task=blocked,
            organization_id=project.organization_id,
            actor_id=actor.user_id,
            activity_type="task.dependency_added",
            description=f"'{blocking.title}' now blocks '{blocked.title}'",
            extra_data={"blocking_task_id": str(blocking_task_id), "type": dependency_type.value},
        )

        logger.info(
            "dependency_added",
            blocking_task_id=str(blocking_task_id),
            blocked_task_id=str(blocked_task_id),
            dependency_type=dependency_type.value,
        )
        return dependency

    async def remove_dependency(
        self,
        blocking_task_id: UUID,
        blocked_task_id: UUID,
        actor: Principal,
    ) -> bool:
        """Remove an edge. Removing a missing edge is not an error."""
        result = await self.db.execute(select(Task.project_id).where(Task.id == blocked_task_id))
        project_id = result.scalar_one_or_none()
        if project_id is not None:
            await actor.require_project_role(project_id, EDIT_ROLE)

        result = await self.db.execute(
            delete(TaskDependency).where(
                TaskDependency.blocking_task_id == blocking_task_id,
                TaskDependency.blocked_task_id == blocked_task_id,
            )
        )
        removed = result.rowcount > 0
        if removed:
            logger.info(
                "dependency_removed",
                blocking_task_id=str(blocking_task_id),
                blocked_task_id=str(blocked_task_id),
            )
        return removed

    async def update_dependency(
        self,
        dependency_id: UUID,
        actor: Principal,
        dependency_type: DependencyType | str | None = None,
        lag_days: int | None = None,
    ) -> TaskDependency:
        """Change the type or lag of an existing edge."""
        result = await self.db.execute(
            select(TaskDependency).where(TaskDependency.id == dependency_id)
        )
        dependency = result.scalar_one_or_none()
        if dependency is None:
            raise NotFoundError("Dependency", dependency_id)

        blocked = await board.get_task(self.db, dependency.blocked_task_id)
        await actor.require_project_role(blocked.project_id, EDIT_ROLE)

        if dependency_type is not None:
            dependency.dependency_type = DependencyType(dependency_type).value
        if lag_days is not None:
            dependency.lag_days = lag_days
        await self.db.flush()
        return dependency

    # =========================================================================
    # Queries
    # =========================================================================

    async def blockers_of(self, task_id: UUID) -> list[Blocker]:
        """Tasks that block ``task_id``, each flagged with whether it is complete."""
        result = await self.db.execute(
            select(Task, TaskDependency)
            .join(TaskDependency, TaskDependency.blocking_task_id == Task.id)
            .where(TaskDependency.blocked_task_id == task_id)
            .order_by(TaskDependency.created_at, TaskDependency.id)
        )
        blockers = []
        for task, dependency in result.all():
            blockers.append(
                Blocker(task=task, dependency=dependency, is_complete=await self.is_complete(task))
            )
        return blockers

    async def blocked_by(self, task_id: UUID) -> list[BlockedTask]:
        """Tasks that ``task_id`` blocks."""
        result = await self.db.execute(
            select(Task, TaskDependency)
            .join(TaskDependency, TaskDependency.blocked_task_id == Task.id)
            .where(TaskDependency.blocking_task_id == task_id)
            .order_by(TaskDependency.created_at, TaskDependency.id)
        )
        return [BlockedTask(task=task, dependency=dependency) for task, dependency in result.all()]

    async def is_blocked(self, task_id: UUID) -> bool:
        """True iff at least one blocker is not complete."""
        return any(not blocker.is_complete for blocker in await self.blockers_of(task_id))

    async def is_complete(self, task: Task) -> bool:
        """A task is complete when it sits in its terminal stage and is approved."""
        if task.approval_status != ApprovalStatus.APPROVED.value:
            return False
        stages = await self._project_stages(task.project_id)
        return stages.is_terminal(task.stage_id)

    async def project_dependencies(self, project_id: UUID) -> Sequence[TaskDependency]:
        """Edges touching any task of the project."""
        project_tasks = select(Task.id).where(Task.project_id == project_id)
        result = await self.db.execute(
            select(TaskDependency)
            .where(
                or_(
                    TaskDependency.blocking_task_id.in_(project_tasks),
                    TaskDependency.blocked_task_id.in_(project_tasks),
                )
            )
            .order_by(TaskDependency.created_at, TaskDependency.id)
        )
        return result.scalars().all()

    async def would_create_cycle(self, blocking_task_id: UUID, blocked_task_id: UUID) -> bool:
        """Check a prospective edge without storing it."""
        if blocking_task_id == blocked_task_id:
            return True
        return await self._reaches(blocked_task_id, blocking_task_id)

    async def critical_path(self, project_id: UUID) -> list[Task]:
        """
        Topological order of the project's top-level tasks.

        Kahn's algorithm over the edges between those tasks; ties are broken
        by task creation order.
        """
        result = await self.db.execute(
            select(Task)
            .where(Task.project_id == project_id, Task.parent_task_id.is_(None))
            .order_by(Task.created_at, Task.id)
        )
        tasks = list(result.scalars().all())
        by_id = {task.id: task for task in tasks}

        successors: dict[UUID, list[UUID]] = {task.id: [] for task in tasks}
        in_degree: dict[UUID, int] = {task.id: 0 for task in tasks}
        for dependency in await self.project_dependencies(project_id):
            if dependency.blocking_task_id in by_id and dependency.blocked_task_id in by_id:
                successors[dependency.blocking_task_id].append(dependency.blocked_task_id)
                in_degree[dependency.blocked_task_id] += 1

        queue = deque(task.id for task in tasks if in_degree[task.id] == 0)
        ordered: list[Task] = []
        while queue:
            current = queue.popleft()
            ordered.append(by_id[current])
            for successor in successors[current]:
                in_degree[successor] -= 1
                if in_degree[successor] == 0:
                    queue.append(successor)

        return ordered

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _get_edge(self, blocking_task_id: UUID, blocked_task_id: UUID) -> TaskDependency | None:
        result = await self.db.execute(
            select(TaskDependency).where(
                TaskDependency.blocking_task_id == blocking_task_id,
                TaskDependency.blocked_task_id == blocked_task_id,
            )
        )
        return result.scalar_one_or_none()

    async def _reaches(self, start_id: UUID, target_id: UUID) -> bool:
        """Breadth-first search along blocking -> blocked edges."""
        visited = {start_id}
        frontier = [start_id]
        while frontier:
            result = await self.db.execute(
                select(TaskDependency.blocked_task_id).where(
                    TaskDependency.blocking_task_id.in_(frontier)
                )
            )
            next_frontier = []
            for node in result.scalars().all():
                if node == target_id:
                    return True
                if node not in visited:
                    visited.add(node)
                    next_frontier.append(node)
            frontier = next_frontier
        return False

    async def _project_stages(self, project_id: UUID) -> WorkflowStages:
        if project_id not in self._stages:
            result = await self.db.execute(select(Project).where(Project.id == project_id))
            project = result.scalar_one()
            self._stages[project_id] = board.project_stages(project)
        return self._stages[project_id]
