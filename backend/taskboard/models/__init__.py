"""SQLAlchemy models package."""

from taskboard.models.organization import (
    Organization,
    OrganizationMember,
    Team,
    TeamMember,
)
from taskboard.models.user import User
from taskboard.models.project import (
    Milestone,
    Project,
    ProjectMember,
    Task,
    TaskAssignment,
    TaskComment,
    TaskDependency,
    TaskRecurrence,
)
from taskboard.models.attention import AttentionItem, Mention
from taskboard.models.activity import Activity
from taskboard.models.auth import PasswordResetPin

__all__ = [
    # Organization
    "Organization",
    "OrganizationMember",
    "Team",
    "TeamMember",
    # User
    "User",
    # Project
    "Milestone",
    "Project",
    "ProjectMember",
    "Task",
    "TaskAssignment",
    "TaskComment",
    "TaskDependency",
    "TaskRecurrence",
    # Attention
    "AttentionItem",
    "Mention",
    # Activity
    "Activity",
    # Auth
    "PasswordResetPin",
]
