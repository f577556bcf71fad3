"""Task endpoints: CRUD, board moves, approval, assignments, comments, dependencies."""

from dataclasses import asdict
from datetime import date, datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Query, status
from pydantic import BaseModel, Field

from taskboard.api.deps import Commands
from taskboard.models.enums import AssignmentRole, DependencyType, TaskPriority
from taskboard.models.project import Task, TaskAssignment, TaskComment, TaskDependency, TaskRecurrence
from taskboard.services.board import WIPLimitWarning

router = APIRouter()


# =============================================================================
# Schemas
# =============================================================================


class TaskResponse(BaseModel):
    """Task response."""

    id: UUID
    project_id: UUID
    title: str
    description: str | None
    priority: str
    stage_id: str
    position: int
    start_date: date | None
    due_date: date | None
    estimated_hours: float | None
    parent_task_id: UUID | None
    milestone_id: UUID | None
    color: str | None
    approval_status: str
    approved_at: datetime | None
    approved_by_id: UUID | None
    rejection_reason: str | None
    completed_at: datetime | None
    recurrence_template_id: UUID | None
    recurrence_date: date | None
    created_by_id: UUID | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TaskCreate(BaseModel):
    """Task create request."""

    project_id: UUID
    title: str = Field(..., min_length=1, max_length=500)
    stage_id: str | None = None
    description: str | None = None
    priority: TaskPriority = TaskPriority.NONE
    start_date: date | None = None
    due_date: date | None = None
    estimated_hours: float | None = Field(None, ge=0)
    parent_task_id: UUID | None = None
    milestone_id: UUID | None = None
    color: str | None = None
    index: int | None = Field(None, ge=0)


class TaskUpdate(BaseModel):
    """Task update request; only fields that are sent are changed."""

    title: str | None = Field(None, min_length=1, max_length=500)
    description: str | None = None
    priority: TaskPriority | None = None
    start_date: date | None = None
    due_date: date | None = None
    estimated_hours: float | None = Field(None, ge=0)
    milestone_id: UUID | None = None
    color: str | None = None


class ParentUpdate(BaseModel):
    parent_task_id: UUID | None


class WIPWarningResponse(BaseModel):
    stage_id: str
    limit: int
    current_count: int
    message: str

    @classmethod
    def from_warning(cls, warning: WIPLimitWarning | None) -> "WIPWarningResponse | None":
        if warning is None:
            return None
        return cls(**asdict(warning), message=warning.message)


class MoveRequest(BaseModel):
    stage_id: str = Field(..., min_length=1)
    index: int | None = Field(None, ge=0)


class MoveResponse(BaseModel):
    task: TaskResponse
    moved: bool
    from_stage_id: str
    to_stage_id: str
    warning: WIPWarningResponse | None = None


class ReorderRequest(BaseModel):
    index: int = Field(..., ge=0)


class RejectRequest(BaseModel):
    return_stage_id: str = Field(..., min_length=1)
    reason: str | None = Field(None, max_length=2000)


class RejectResponse(BaseModel):
    task: TaskResponse
    from_stage_id: str
    warning: WIPWarningResponse | None = None


class AssignmentResponse(BaseModel):
    id: UUID
    task_id: UUID
    user_id: UUID
    assigned_by_id: UUID | None
    role: str
    assigned_at: datetime

    class Config:
        from_attributes = True


class AssignmentCreate(BaseModel):
    user_id: UUID
    role: AssignmentRole = AssignmentRole.ASSIGNEE


class CommentResponse(BaseModel):
    id: UUID
    task_id: UUID
    project_id: UUID
    user_id: UUID | None
    content: str
    mentions: list[str]
    edited_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1)


class DependencyResponse(BaseModel):
    id: UUID
    blocking_task_id: UUID
    blocked_task_id: UUID
    dependency_type: str
    lag_days: int
    created_at: datetime

    class Config:
        from_attributes = True


class DependencyCreate(BaseModel):
    blocking_task_id: UUID
    dependency_type: DependencyType = DependencyType.FINISH_TO_START
    lag_days: int = 0


class DependencyUpdate(BaseModel):
    dependency_type: DependencyType | None = None
    lag_days: int | None = None


class BlockerResponse(BaseModel):
    task: TaskResponse
    dependency: DependencyResponse
    is_complete: bool


class BlockedTaskResponse(BaseModel):
    task: TaskResponse
    dependency: DependencyResponse


class BlockedStatusResponse(BaseModel):
    task_id: UUID
    is_blocked: bool


class CycleCheckResponse(BaseModel):
    would_create_cycle: bool


class RecurrenceResponse(BaseModel):
    """Recurrence rule response."""

    id: UUID
    task_id: UUID
    frequency: str
    interval: int
    days_of_week: list[int]
    day_of_month: int | None
    month_of_year: int | None
    start_date: date
    end_date: date | None
    max_occurrences: int | None
    occurrences_created: int
    next_occurrence: date | None
    is_active: bool

    class Config:
        from_attributes = True


# =============================================================================
# Tasks
# =============================================================================


@router.post("/", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(data: TaskCreate, commands: Commands) -> Task:
    """Create a task, by default at the bottom of the project's first stage."""
    fields = data.model_dump(exclude={"project_id", "title"})
    fields["priority"] = data.priority.value
    return await commands.create_task(data.project_id, data.title, **fields)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: UUID, commands: Commands) -> Task:
    return await commands.get_task(task_id)


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(task_id: UUID, data: TaskUpdate, commands: Commands) -> Task:
    changes: dict[str, Any] = data.model_dump(exclude_unset=True)
    if changes.get("priority") is not None:
        changes["priority"] = changes["priority"].value
    return await commands.update_task(task_id, changes)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: UUID, commands: Commands) -> None:
    await commands.delete_task(task_id)


@router.put("/{task_id}/parent", response_model=TaskResponse)
async def set_parent(task_id: UUID, data: ParentUpdate, commands: Commands) -> Task:
    """Attach the task under a parent, or detach it with a null parent."""
    return await commands.set_parent(task_id, data.parent_task_id)


@router.get("/{task_id}/subtasks", response_model=list[TaskResponse])
async def list_subtasks(task_id: UUID, commands: Commands) -> list[Task]:
    return await commands.subtasks(task_id)


# =============================================================================
# Board moves / Approval
# =============================================================================


@router.post("/{task_id}/move", response_model=MoveResponse)
async def move_task(task_id: UUID, data: MoveRequest, commands: Commands) -> MoveResponse:
    """Move a task to a stage. Reaching the done stage submits it for approval."""
    result = await commands.move_task(task_id, data.stage_id, data.index)
    return MoveResponse(
        task=TaskResponse.model_validate(result.task),
        moved=result.moved,
        from_stage_id=result.from_stage_id,
        to_stage_id=result.to_stage_id,
        warning=WIPWarningResponse.from_warning(result.warning),
    )


@router.post("/{task_id}/reorder", response_model=TaskResponse)
async def reorder_task(task_id: UUID, data: ReorderRequest, commands: Commands) -> Task:
    return await commands.reorder_task(task_id, data.index)


@router.post("/{task_id}/approve", response_model=TaskResponse)
async def approve_task(task_id: UUID, commands: Commands) -> Task:
    return await commands.approve(task_id)


@router.post("/{task_id}/reject", response_model=RejectResponse)
async def reject_task(task_id: UUID, data: RejectRequest, commands: Commands) -> RejectResponse:
    result = await commands.reject(task_id, data.return_stage_id, data.reason)
    return RejectResponse(
        task=TaskResponse.model_validate(result.task),
        from_stage_id=result.from_stage_id,
        warning=WIPWarningResponse.from_warning(result.warning),
    )


# =============================================================================
# Assignments
# =============================================================================


@router.get("/{task_id}/assignments", response_model=list[AssignmentResponse])
async def list_assignments(task_id: UUID, commands: Commands) -> list[TaskAssignment]:
    return list(await commands.task_assignments(task_id))


@router.post(
    "/{task_id}/assignments",
    response_model=AssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_user(task_id: UUID, data: AssignmentCreate, commands: Commands) -> TaskAssignment:
    return await commands.assign(task_id, data.user_id, data.role.value)


@router.delete("/{task_id}/assignments/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unassign_user(task_id: UUID, user_id: UUID, commands: Commands) -> None:
    await commands.unassign(task_id, user_id)


# =============================================================================
# Comments
# =============================================================================


@router.get("/{task_id}/comments", response_model=list[CommentResponse])
async def list_comments(task_id: UUID, commands: Commands) -> list[TaskComment]:
    return list(await commands.task_comments(task_id))


@router.post(
    "/{task_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(task_id: UUID, data: CommentCreate, commands: Commands) -> TaskComment:
    """Comment on a task; @username mentions of project members notify them."""
    return await commands.add_comment(task_id, data.content)


@router.patch("/comments/{comment_id}", response_model=CommentResponse)
async def edit_comment(comment_id: UUID, data: CommentCreate, commands: Commands) -> TaskComment:
    return await commands.edit_comment(comment_id, data.content)


@router.delete("/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(comment_id: UUID, commands: Commands) -> None:
    await commands.delete_comment(comment_id)


# =============================================================================
# Dependencies
# =============================================================================


@router.get("/{task_id}/blockers", response_model=list[BlockerResponse])
async def list_blockers(task_id: UUID, commands: Commands) -> list[BlockerResponse]:
    """Tasks that block this one, with their completion state."""
    return [
        BlockerResponse(
            task=TaskResponse.model_validate(blocker.task),
            dependency=DependencyResponse.model_validate(blocker.dependency),
            is_complete=blocker.is_complete,
        )
        for blocker in await commands.blockers(task_id)
    ]


@router.get("/{task_id}/blocking", response_model=list[BlockedTaskResponse])
async def list_blocked(task_id: UUID, commands: Commands) -> list[BlockedTaskResponse]:
    """Tasks this one blocks."""
    return [
        BlockedTaskResponse(
            task=TaskResponse.model_validate(blocked.task),
            dependency=DependencyResponse.model_validate(blocked.dependency),
        )
        for blocked in await commands.blocked_tasks(task_id)
    ]


@router.get("/{task_id}/blocked", response_model=BlockedStatusResponse)
async def blocked_status(task_id: UUID, commands: Commands) -> BlockedStatusResponse:
    return BlockedStatusResponse(task_id=task_id, is_blocked=await commands.is_blocked(task_id))


@router.post(
    "/{task_id}/dependencies",
    response_model=DependencyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_dependency(task_id: UUID, data: DependencyCreate, commands: Commands) -> TaskDependency:
    """Record that ``blocking_task_id`` blocks this task."""
    return await commands.add_dependency(
        data.blocking_task_id, task_id, data.dependency_type.value, data.lag_days
    )


@router.delete(
    "/{task_id}/dependencies/{blocking_task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def remove_dependency(task_id: UUID, blocking_task_id: UUID, commands: Commands) -> None:
    await commands.remove_dependency(blocking_task_id, task_id)


@router.get("/{task_id}/dependencies/check", response_model=CycleCheckResponse)
async def check_dependency(
    task_id: UUID,
    commands: Commands,
    blocking_task_id: UUID = Query(...),
) -> CycleCheckResponse:
    """Whether making ``blocking_task_id`` block this task would close a cycle."""
    return CycleCheckResponse(
        would_create_cycle=await commands.would_create_cycle(blocking_task_id, task_id)
    )


@router.patch("/dependencies/{dependency_id}", response_model=DependencyResponse)
async def update_dependency(
    dependency_id: UUID,
    data: DependencyUpdate,
    commands: Commands,
) -> TaskDependency:
    return await commands.update_dependency(
        dependency_id,
        data.dependency_type.value if data.dependency_type else None,
        data.lag_days,
    )


# =============================================================================
# Recurrence
# =============================================================================


@router.post(
    "/{task_id}/recurrence",
    response_model=RecurrenceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_recurrence(
    task_id: UUID,
    commands: Commands,
    data: dict[str, Any] = Body(...),
) -> TaskRecurrence:
    """Make the task a template that spawns copies on a schedule."""
    return await commands.create_recurrence(task_id, data)
