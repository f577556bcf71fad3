"""Services package."""

from taskboard.services.access_control import Principal
from taskboard.services.activity import ActivityService
from taskboard.services.approval import ApprovalService
from taskboard.services.attention import AttentionService
from taskboard.services.comment import CommentService
from taskboard.services.dependency import DependencyService
from taskboard.services.milestone import MilestoneService
from taskboard.services.organization import OrganizationService
from taskboard.services.password_reset import PinService
from taskboard.services.project import ProjectService
from taskboard.services.recurring_task import RecurringTaskService
from taskboard.services.task import TaskService
from taskboard.services.task_assignment import TaskAssignmentService
from taskboard.services.workflow import WorkflowService

__all__ = [
    "ActivityService",
    "ApprovalService",
    "AttentionService",
    "CommentService",
    "DependencyService",
    "MilestoneService",
    "OrganizationService",
    "PinService",
    "Principal",
    "ProjectService",
    "RecurringTaskService",
    "TaskAssignmentService",
    "TaskService",
    "WorkflowService",
]
