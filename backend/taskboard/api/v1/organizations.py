"""Organization management endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from taskboard.api.deps import Commands
from taskboard.models.enums import OrganizationRole, TeamRole
from taskboard.models.organization import Organization, OrganizationMember, Team, TeamMember

router = APIRouter()


class OrganizationResponse(BaseModel):
    """Organization response."""

    id: UUID
    name: str
    slug: str
    created_at: datetime

    class Config:
        from_attributes = True


class OrganizationCreate(BaseModel):
    """Organization create request."""

    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=100, pattern="^[a-z0-9-]+$")


class MemberResponse(BaseModel):
    """Organization member response."""

    id: UUID
    organization_id: UUID
    user_id: UUID
    role: str
    created_at: datetime

    class Config:
        from_attributes = True


class MemberCreate(BaseModel):
    user_id: UUID
    role: OrganizationRole = OrganizationRole.READER


class MemberRoleUpdate(BaseModel):
    role: OrganizationRole


class TeamResponse(BaseModel):
    """Team response."""

    id: UUID
    organization_id: UUID
    name: str
    description: str | None

    class Config:
        from_attributes = True


class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=1000)


class TeamMemberResponse(BaseModel):
    id: UUID
    team_id: UUID
    user_id: UUID
    role: str

    class Config:
        from_attributes = True


class TeamMemberCreate(BaseModel):
    user_id: UUID
    role: TeamRole = TeamRole.MEMBER


class CompletedCountResponse(BaseModel):
    completed: int


@router.get("/", response_model=list[OrganizationResponse])
async def list_my_organizations(commands: Commands) -> list[Organization]:
    """List organizations the current user belongs to."""
    return list(await commands.my_organizations())


@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(data: OrganizationCreate, commands: Commands) -> Organization:
    """Create an organization; the creator becomes its owner."""
    return await commands.create_organization(data.name, data.slug)


@router.get("/{org_id}/members", response_model=list[MemberResponse])
async def list_members(org_id: UUID, commands: Commands) -> list[OrganizationMember]:
    return list(await commands.organization_members(org_id))


@router.post("/{org_id}/members", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def add_member(org_id: UUID, data: MemberCreate, commands: Commands) -> OrganizationMember:
    return await commands.add_organization_member(org_id, data.user_id, data.role.value)


@router.patch("/{org_id}/members/{user_id}", response_model=MemberResponse)
async def update_member_role(
    org_id: UUID,
    user_id: UUID,
    data: MemberRoleUpdate,
    commands: Commands,
) -> OrganizationMember:
    """Change a member's role. The last owner cannot be demoted."""
    return await commands.update_organization_member(org_id, user_id, data.role.value)


@router.delete("/{org_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(org_id: UUID, user_id: UUID, commands: Commands) -> None:
    """Remove a member. Members may remove themselves unless they are the last owner."""
    await commands.remove_organization_member(org_id, user_id)


@router.get("/{org_id}/teams", response_model=list[TeamResponse])
async def list_teams(org_id: UUID, commands: Commands) -> list[Team]:
    return list(await commands.organization_teams(org_id))


@router.post("/{org_id}/teams", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(org_id: UUID, data: TeamCreate, commands: Commands) -> Team:
    return await commands.create_team(org_id, data.name, data.description)


@router.post(
    "/teams/{team_id}/members",
    response_model=TeamMemberResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_team_member(team_id: UUID, data: TeamMemberCreate, commands: Commands) -> TeamMember:
    return await commands.add_team_member(team_id, data.user_id, data.role.value)


@router.get("/{org_id}/completed-count", response_model=CompletedCountResponse)
async def completed_count(org_id: UUID, commands: Commands) -> CompletedCountResponse:
    """Approved tasks across all projects of the organization."""
    return CompletedCountResponse(completed=await commands.organization_completed_count(org_id))
