"""Project endpoints: membership, workflow stages, board and project-wide queries."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from taskboard.api.deps import Commands
from taskboard.api.v1.tasks import DependencyResponse, RecurrenceResponse, TaskResponse
from taskboard.models.activity import Activity
from taskboard.models.enums import ProjectRole
from taskboard.models.project import Milestone, Project, ProjectMember, Task, TaskDependency, TaskRecurrence
from taskboard.schemas.workflow import WorkflowStage, WorkflowStages

router = APIRouter()


class ProjectResponse(BaseModel):
    """Project response."""

    id: UUID
    organization_id: UUID
    team_id: UUID | None
    name: str
    description: str | None
    chat_channel: str | None
    created_at: datetime

    class Config:
        from_attributes = True


class ProjectCreate(BaseModel):
    """Project create request."""

    organization_id: UUID
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    team_id: UUID | None = None
    stages: list[dict[str, Any]] | None = None
    chat_channel: str | None = Field(None, max_length=255)


class ProjectUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    chat_channel: str | None = Field(None, max_length=255)


class ProjectMemberResponse(BaseModel):
    id: UUID
    project_id: UUID
    user_id: UUID
    role: str

    class Config:
        from_attributes = True


class ProjectMemberCreate(BaseModel):
    user_id: UUID
    role: ProjectRole = ProjectRole.EDITOR


class ProjectMemberUpdate(BaseModel):
    role: ProjectRole


class StagesUpdate(BaseModel):
    stages: list[dict[str, Any]]


class BoardColumn(BaseModel):
    stage: WorkflowStage
    tasks: list[TaskResponse]


class CompletedCountResponse(BaseModel):
    completed: int


class PendingCountResponse(BaseModel):
    pending: int


class MilestoneResponse(BaseModel):
    id: UUID
    project_id: UUID
    name: str
    description: str | None
    target_date: date
    completed_at: datetime | None
    color: str

    class Config:
        from_attributes = True


class MilestoneCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    target_date: date
    description: str | None = None
    color: str | None = None


class MilestoneProgressResponse(BaseModel):
    milestone: MilestoneResponse
    total_tasks: int
    completed_tasks: int
    percent: int


class ActivityResponse(BaseModel):
    id: UUID
    activity_type: str
    description: str | None
    target_type: str
    target_id: UUID
    target_title: str | None
    actor_id: UUID | None
    created_at: datetime

    class Config:
        from_attributes = True


def _stage_list(stages: WorkflowStages) -> list[WorkflowStage]:
    return list(stages)


# =============================================================================
# Projects
# =============================================================================


@router.get("/", response_model=list[ProjectResponse])
async def list_my_projects(commands: Commands) -> list[Project]:
    return list(await commands.my_projects())


@router.post("/", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(data: ProjectCreate, commands: Commands) -> Project:
    """Create a project; without stages the default four-column board is used."""
    return await commands.create_project(
        data.organization_id,
        data.name,
        description=data.description,
        team_id=data.team_id,
        stages=data.stages,
        chat_channel=data.chat_channel,
    )


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: UUID, commands: Commands) -> Project:
    return await commands.get_project(project_id)


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(project_id: UUID, data: ProjectUpdate, commands: Commands) -> Project:
    return await commands.update_project(project_id, **data.model_dump(exclude_unset=True))


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(project_id: UUID, commands: Commands) -> None:
    await commands.delete_project(project_id)


# =============================================================================
# Members
# =============================================================================


@router.get("/{project_id}/members", response_model=list[ProjectMemberResponse])
async def list_members(project_id: UUID, commands: Commands) -> list[ProjectMember]:
    return list(await commands.project_members(project_id))


@router.post(
    "/{project_id}/members",
    response_model=ProjectMemberResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_member(project_id: UUID, data: ProjectMemberCreate, commands: Commands) -> ProjectMember:
    return await commands.add_project_member(project_id, data.user_id, data.role.value)


@router.patch("/{project_id}/members/{user_id}", response_model=ProjectMemberResponse)
async def update_member(
    project_id: UUID,
    user_id: UUID,
    data: ProjectMemberUpdate,
    commands: Commands,
) -> ProjectMember:
    return await commands.update_project_member(project_id, user_id, data.role.value)


@router.delete("/{project_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(project_id: UUID, user_id: UUID, commands: Commands) -> None:
    await commands.remove_project_member(project_id, user_id)


# =============================================================================
# Workflow / Board
# =============================================================================


@router.get("/{project_id}/stages", response_model=list[WorkflowStage])
async def get_stages(project_id: UUID, commands: Commands) -> list[WorkflowStage]:
    return _stage_list(await commands.get_stages(project_id))


@router.put("/{project_id}/stages", response_model=list[WorkflowStage])
async def configure_stages(project_id: UUID, data: StagesUpdate, commands: Commands) -> list[WorkflowStage]:
    """Replace the stage list. Stages that still hold tasks cannot be removed."""
    return _stage_list(await commands.configure_stages(project_id, data.stages))


@router.get("/{project_id}/board", response_model=list[BoardColumn])
async def get_board(project_id: UUID, commands: Commands) -> list[BoardColumn]:
    stages = await commands.get_stages(project_id)
    columns = await commands.board(project_id)
    return [
        BoardColumn(
            stage=stage,
            tasks=[TaskResponse.model_validate(task) for task in columns.get(stage.id, [])],
        )
        for stage in stages
    ]


@router.get("/{project_id}/stage-counts", response_model=dict[str, int])
async def stage_counts(project_id: UUID, commands: Commands) -> dict[str, int]:
    """Top-level task count per stage."""
    return await commands.stage_counts(project_id)


@router.get("/{project_id}/completed-count", response_model=CompletedCountResponse)
async def completed_count(project_id: UUID, commands: Commands) -> CompletedCountResponse:
    return CompletedCountResponse(completed=await commands.completed_count(project_id))


@router.get("/{project_id}/pending-count", response_model=PendingCountResponse)
async def pending_count(project_id: UUID, commands: Commands) -> PendingCountResponse:
    return PendingCountResponse(pending=await commands.pending_count(project_id))


@router.get("/{project_id}/pending-approvals", response_model=list[TaskResponse])
async def pending_approvals(project_id: UUID, commands: Commands) -> list[Task]:
    return list(await commands.pending_tasks(project_id))


# =============================================================================
# Dependencies / Recurrences
# =============================================================================


@router.get("/{project_id}/dependencies", response_model=list[DependencyResponse])
async def project_dependencies(project_id: UUID, commands: Commands) -> list[TaskDependency]:
    return list(await commands.project_dependencies(project_id))


@router.get("/{project_id}/critical-path", response_model=list[TaskResponse])
async def critical_path(project_id: UUID, commands: Commands) -> list[Task]:
    """Top-level tasks in dependency order."""
    return await commands.critical_path(project_id)


@router.get("/{project_id}/recurrences", response_model=list[RecurrenceResponse])
async def project_recurrences(
    project_id: UUID,
    commands: Commands,
    active_only: bool = Query(True),
) -> list[TaskRecurrence]:
    return list(await commands.project_recurrences(project_id, active_only))


# =============================================================================
# Milestones / Activity
# =============================================================================


@router.get("/{project_id}/milestones", response_model=list[MilestoneResponse])
async def list_milestones(project_id: UUID, commands: Commands) -> list[Milestone]:
    return list(await commands.project_milestones(project_id))


@router.post(
    "/{project_id}/milestones",
    response_model=MilestoneResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_milestone(project_id: UUID, data: MilestoneCreate, commands: Commands) -> Milestone:
    return await commands.create_milestone(
        project_id,
        data.name,
        data.target_date,
        description=data.description,
        color=data.color,
    )


@router.get("/milestones/{milestone_id}/progress", response_model=MilestoneProgressResponse)
async def milestone_progress(milestone_id: UUID, commands: Commands) -> MilestoneProgressResponse:
    progress = await commands.milestone_progress(milestone_id)
    return MilestoneProgressResponse(
        milestone=MilestoneResponse.model_validate(progress.milestone),
        total_tasks=progress.total_tasks,
        completed_tasks=progress.completed_tasks,
        percent=progress.percent,
    )


@router.post("/milestones/{milestone_id}/complete", response_model=MilestoneResponse)
async def complete_milestone(
    milestone_id: UUID,
    commands: Commands,
    completed: bool = Query(True),
) -> Milestone:
    return await commands.set_milestone_completed(milestone_id, completed)


@router.delete("/milestones/{milestone_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_milestone(milestone_id: UUID, commands: Commands) -> None:
    await commands.delete_milestone(milestone_id)


@router.get("/{project_id}/activity", response_model=list[ActivityResponse])
async def project_activity(
    project_id: UUID,
    commands: Commands,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> list[Activity]:
    return list(await commands.activity(project_id, limit, offset))
