"""Closed value sets used by models and services."""

from enum import Enum


class OrganizationRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    READER = "reader"


class TeamRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class ProjectRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    READER = "reader"


class TaskPriority(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ApprovalStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WIPLimitMode(str, Enum):
    WARNING = "warning"
    STRICT = "strict"


class AssignmentRole(str, Enum):
    OWNER = "owner"
    ASSIGNEE = "assignee"
    REVIEWER = "reviewer"
    COLLABORATOR = "collaborator"


class DependencyType(str, Enum):
    FINISH_TO_START = "finish_to_start"
    START_TO_START = "start_to_start"
    FINISH_TO_FINISH = "finish_to_finish"
    START_TO_FINISH = "start_to_finish"


class RecurrenceFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class AttentionType(str, Enum):
    MENTION = "mention"
    ASSIGNMENT = "assignment"
    UNASSIGNMENT = "unassignment"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"
    COMMENT = "comment"
    STATUS_CHANGE = "status_change"


class AttentionPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


# Sort rank used when listing the inbox (lower first)
ATTENTION_PRIORITY_RANK = {
    AttentionPriority.URGENT.value: 0,
    AttentionPriority.HIGH.value: 1,
    AttentionPriority.NORMAL.value: 2,
    AttentionPriority.LOW.value: 3,
}

ATTENTION_TYPE_PRIORITY = {
    AttentionType.OVERDUE: AttentionPriority.URGENT,
    AttentionType.MENTION: AttentionPriority.URGENT,
    AttentionType.ASSIGNMENT: AttentionPriority.HIGH,
    AttentionType.DUE_SOON: AttentionPriority.HIGH,
    AttentionType.COMMENT: AttentionPriority.NORMAL,
    AttentionType.STATUS_CHANGE: AttentionPriority.NORMAL,
    AttentionType.UNASSIGNMENT: AttentionPriority.LOW,
}

# Fixed palette for task colors
TASK_COLORS = (
    "#EF4444",  # red
    "#F97316",  # orange
    "#EAB308",  # yellow
    "#22C55E",  # green
    "#3B82F6",  # blue
    "#8B5CF6",  # purple
    "#EC4899",  # pink
)
