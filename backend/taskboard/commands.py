"""Command facade.

Every write follows the same shape: authorize against the caller's
(request-memoized) roles, run the service call, commit, then hand the
out-of-band side effects (change-feed hints, email, chat) to the
dispatcher. A failing or slow sink never fails or rolls back a command.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date
from typing import Any, AsyncIterator, Sequence
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import Settings, get_settings
from taskboard.exceptions import PinError
from taskboard.models.attention import AttentionItem
from taskboard.models.enums import ApprovalStatus
from taskboard.models.organization import Organization, OrganizationMember, Team, TeamMember
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
from taskboard.models.user import User
from taskboard.notifications.chat import task_event_text
from taskboard.notifications.dispatcher import NotificationDispatcher
from taskboard.notifications.email import password_reset_pin_email
from taskboard.notifications.feed import change
from taskboard.schemas.recurrence import RecurrenceSpec
from taskboard.schemas.workflow import WorkflowStages
from taskboard.services import board
from taskboard.services.access_control import Principal
from taskboard.services.approval import ApprovalService, ApprovalTransition, RejectResult
from taskboard.services.attention import AttentionService, InboxFilter
from taskboard.services.comment import CommentService
from taskboard.services.dependency import Blocker, BlockedTask, DependencyService
from taskboard.services.milestone import MilestoneProgress, MilestoneService
from taskboard.services.organization import OrganizationService
from taskboard.services.password_reset import PinService
from taskboard.services.project import ProjectService
from taskboard.services.recurrence import describe, upcoming_occurrences
from taskboard.services.recurring_task import RecurringTaskService
from taskboard.services.task import TaskService
from taskboard.services.task_assignment import TaskAssignmentService
from taskboard.services.workflow import MoveResult, WorkflowService

logger = structlog.get_logger()


@dataclass
class RecurrencePreview:
    description: str
    upcoming: list[date]


class TaskCommands:
    """Authorized commands and queries for one caller within one unit of work."""

    def __init__(
        self,
        db: AsyncSession,
        user_id: UUID,
        dispatcher: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.actor = Principal(db, user_id)
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.settings = settings or get_settings()

        self.workflow = WorkflowService(db)
        self.approval = ApprovalService(db)
        self.dependencies = DependencyService(db)
        self.recurrences = RecurringTaskService(db)
        self.attention = AttentionService(db)
        self.tasks = TaskService(db)
        self.assignments = TaskAssignmentService(db)
        self.comments = CommentService(db)
        self.projects = ProjectService(db)
        self.organizations = OrganizationService(db)
        self.milestones = MilestoneService(db)

    @property
    def user_id(self) -> UUID:
        return self.actor.user_id

    @asynccontextmanager
    async def _command(self, name: str, **context: Any) -> AsyncIterator[None]:
        """Commit on success, roll back and drop queued effects on failure."""
        try:
            yield
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            self.dispatcher.discard()
            logger.info("command_failed", command=name, error=str(e), **context)
            raise
        await self.dispatcher.flush()

    # =========================================================================
    # Organizations / Projects
    # =========================================================================

    async def create_organization(self, name: str, slug: str) -> Organization:
        async with self._command("create_organization"):
            organization = await self.organizations.create_organization(name, slug, self.actor)
        return organization

    async def add_organization_member(
        self, organization_id: UUID, user_id: UUID, role: str = "reader"
    ) -> OrganizationMember:
        async with self._command("add_organization_member"):
            member = await self.organizations.add_member(organization_id, user_id, self.actor, role)
        return member

    async def update_organization_member(
        self, organization_id: UUID, user_id: UUID, role: str
    ) -> OrganizationMember:
        async with self._command("update_organization_member"):
            member = await self.organizations.update_member_role(
                organization_id, user_id, role, self.actor
            )
        return member

    async def remove_organization_member(self, organization_id: UUID, user_id: UUID) -> None:
        async with self._command("remove_organization_member"):
            await self.organizations.remove_member(organization_id, user_id, self.actor)

    async def create_team(self, organization_id: UUID, name: str, description: str | None = None) -> Team:
        async with self._command("create_team"):
            team = await self.organizations.create_team(organization_id, name, self.actor, description)
        return team

    async def create_project(self, organization_id: UUID, name: str, **fields: Any) -> Project:
        async with self._command("create_project"):
            project = await self.projects.create_project(organization_id, name, self.actor, **fields)
            self.dispatcher.publish(change("projects", "insert", project.id, project.id))
        return project

    async def add_project_member(self, project_id: UUID, user_id: UUID, role: str = "editor") -> ProjectMember:
        async with self._command("add_project_member"):
            member = await self.projects.add_member(project_id, user_id, self.actor, role)
            self.dispatcher.publish(change("project_members", "insert", member.id, project_id))
        return member

    async def my_organizations(self) -> Sequence[Organization]:
        return await self.organizations.user_organizations(self.user_id)

    async def organization_members(self, organization_id: UUID) -> Sequence[OrganizationMember]:
        await self.actor.require_organization_role(organization_id, "reader")
        return await self.organizations.members(organization_id)

    async def organization_teams(self, organization_id: UUID) -> Sequence[Team]:
        await self.actor.require_organization_role(organization_id, "reader")
        return await self.organizations.organization_teams(organization_id)

    async def add_team_member(self, team_id: UUID, user_id: UUID, role: str = "member") -> TeamMember:
        async with self._command("add_team_member"):
            member = await self.organizations.add_team_member(team_id, user_id, self.actor, role)
        return member

    async def my_projects(self) -> Sequence[Project]:
        return await self.projects.user_projects(self.user_id)

    async def get_project(self, project_id: UUID) -> Project:
        return await self.projects.get_project(project_id, self.actor)

    async def update_project(self, project_id: UUID, **fields: Any) -> Project:
        async with self._command("update_project", project_id=str(project_id)):
            project = await self.projects.update_project(project_id, self.actor, **fields)
            self.dispatcher.publish(change("projects", "update", project_id, project_id))
        return project

    async def delete_project(self, project_id: UUID) -> None:
        async with self._command("delete_project", project_id=str(project_id)):
            await self.projects.delete_project(project_id, self.actor)
            self.dispatcher.publish(change("projects", "delete", project_id, project_id))

    async def project_members(self, project_id: UUID) -> Sequence[ProjectMember]:
        await self.actor.require_project_role(project_id, "reader")
        return await self.projects.members(project_id)

    async def update_project_member(self, project_id: UUID, user_id: UUID, role: str) -> ProjectMember:
        async with self._command("update_project_member"):
            member = await self.projects.update_member_role(project_id, user_id, role, self.actor)
            self.dispatcher.publish(change("project_members", "update", member.id, project_id))
        return member

    async def remove_project_member(self, project_id: UUID, user_id: UUID) -> None:
        async with self._command("remove_project_member"):
            await self.projects.remove_member(project_id, user_id, self.actor)
            self.dispatcher.publish(change("project_members", "delete", f"{project_id}:{user_id}", project_id))

    async def organization_completed_count(self, organization_id: UUID) -> int:
        await self.actor.require_organization_role(organization_id, "reader")
        return await self.approval.organization_completed_count(organization_id)

    # =========================================================================
    # Workflow
    # =========================================================================

    async def configure_stages(self, project_id: UUID, stages: list[dict[str, Any]]) -> WorkflowStages:
        async with self._command("configure_stages", project_id=str(project_id)):
            configured = await self.workflow.configure_stages(project_id, stages, self.actor)
            self.dispatcher.publish(change("projects", "update", project_id, project_id))
        return configured

    async def get_stages(self, project_id: UUID) -> WorkflowStages:
        await self.actor.require_project_role(project_id, "reader")
        return await self.workflow.get_stages(project_id)

    async def board(self, project_id: UUID) -> dict[str, list[Task]]:
        await self.actor.require_project_role(project_id, "reader")
        return await self.workflow.board(project_id)

    async def stage_counts(self, project_id: UUID) -> dict[str, int]:
        await self.actor.require_project_role(project_id, "reader")
        return await self.workflow.stage_counts(project_id)

    async def move_task(self, task_id: UUID, to_stage_id: str, index: int | None = None) -> MoveResult:
        async with self._command("move_task", task_id=str(task_id), to_stage_id=to_stage_id):
            result = await self.workflow.move_task(task_id, to_stage_id, self.actor, index)
            if result.moved:
                task = result.task
                project = await board.get_project(self.db, task.project_id)
                stage = board.project_stages(project).require(result.to_stage_id)
                items = await self.attention.on_status_change(task, stage.name, self.user_id)
                self._publish_task(task, "update")
                self._publish_items(items)

                actor_name = await self._actor_name()
                lines = [task_event_text("moved", task.title, actor_name, stage=stage.name)]
                if result.approval_transition == ApprovalTransition.SUBMITTED:
                    lines.append(task_event_text("approval_requested", task.title, actor_name))
                self.dispatcher.task_chat(task, project.chat_channel, "\n".join(lines))
        return result

    async def reorder_task(self, task_id: UUID, index: int) -> Task:
        async with self._command("reorder_task", task_id=str(task_id)):
            task = await self.workflow.reorder_task(task_id, index, self.actor)
            self._publish_task(task, "update")
        return task

    # =========================================================================
    # Tasks
    # =========================================================================

    async def create_task(self, project_id: UUID, title: str, **fields: Any) -> Task:
        async with self._command("create_task", project_id=str(project_id)):
            task = await self.tasks.create_task(project_id, title, self.actor, **fields)
            self._publish_task(task, "insert")
            project = await board.get_project(self.db, project_id)
            actor_name = await self._actor_name()
            lines = [task_event_text("created", task.title, actor_name)]
            if task.approval_status == ApprovalStatus.PENDING.value:
                lines.append(task_event_text("approval_requested", task.title, actor_name))
            self.dispatcher.task_chat(task, project.chat_channel, "\n".join(lines))
        return task

    async def get_task(self, task_id: UUID) -> Task:
        return await self.tasks.get_task(task_id, self.actor)

    async def update_task(self, task_id: UUID, changes: dict[str, Any]) -> Task:
        async with self._command("update_task", task_id=str(task_id)):
            task = await self.tasks.update_task(task_id, changes, self.actor)
            self._publish_task(task, "update")
        return task

    async def set_parent(self, task_id: UUID, parent_task_id: UUID | None) -> Task:
        async with self._command("set_parent", task_id=str(task_id)):
            task = await self.tasks.set_parent(task_id, parent_task_id, self.actor)
            self._publish_task(task, "update")
        return task

    async def delete_task(self, task_id: UUID) -> None:
        async with self._command("delete_task", task_id=str(task_id)):
            task = await board.get_task(self.db, task_id)
            project_id = task.project_id
            await self.tasks.delete_task(task_id, self.actor)
            self.dispatcher.publish(change("tasks", "delete", task_id, project_id))

    async def subtasks(self, task_id: UUID) -> list[Task]:
        await self._require_task_access(task_id)
        return await self.tasks.subtasks(task_id)

    async def activity(self, project_id: UUID, limit: int = 50, offset: int = 0):
        await self.actor.require_project_role(project_id, "reader")
        return await self.workflow.activity.project_feed(project_id, limit, offset)

    # =========================================================================
    # Approval
    # =========================================================================

    async def approve(self, task_id: UUID) -> Task:
        async with self._command("approve", task_id=str(task_id)):
            task = await self.approval.approve(task_id, self.actor)
            self._publish_task(task, "update")
            project = await board.get_project(self.db, task.project_id)
            self.dispatcher.task_chat(
                task,
                project.chat_channel,
                task_event_text("approved", task.title, await self._actor_name()),
            )
        return task

    async def reject(self, task_id: UUID, return_stage_id: str, reason: str | None = None) -> RejectResult:
        async with self._command("reject", task_id=str(task_id)):
            result = await self.approval.reject(task_id, self.actor, return_stage_id, reason)
            task = result.task
            self._publish_task(task, "update")
            project = await board.get_project(self.db, task.project_id)
            stage = board.project_stages(project).require(task.stage_id)
            self._publish_items(await self.attention.on_status_change(task, stage.name, self.user_id))
            self.dispatcher.task_chat(
                task,
                project.chat_channel,
                task_event_text("rejected", task.title, await self._actor_name(), stage=stage.name, reason=reason),
            )
        return result

    async def completed_count(self, project_id: UUID) -> int:
        await self.actor.require_project_role(project_id, "reader")
        return await self.approval.completed_count(project_id)

    async def pending_count(self, project_id: UUID) -> int:
        await self.actor.require_project_role(project_id, "reader")
        return await self.approval.pending_count(project_id)

    async def pending_tasks(self, project_id: UUID) -> Sequence[Task]:
        await self.actor.require_project_role(project_id, "reader")
        return await self.approval.pending_tasks(project_id)

    # =========================================================================
    # Dependencies
    # =========================================================================

    async def add_dependency(
        self,
        blocking_task_id: UUID,
        blocked_task_id: UUID,
        dependency_type: str = "finish_to_start",
        lag_days: int = 0,
    ) -> TaskDependency:
        async with self._command(
            "add_dependency",
            blocking_task_id=str(blocking_task_id),
            blocked_task_id=str(blocked_task_id),
        ):
            dependency = await self.dependencies.add_dependency(
                blocking_task_id, blocked_task_id, self.actor, dependency_type, lag_days
            )
            blocked = await board.get_task(self.db, blocked_task_id)
            self.dispatcher.publish(
                change("task_dependencies", "insert", dependency.id, blocked.project_id)
            )
        return dependency

    async def remove_dependency(self, blocking_task_id: UUID, blocked_task_id: UUID) -> bool:
        async with self._command("remove_dependency"):
            result = await self.db.execute(select(Task.project_id).where(Task.id == blocked_task_id))
            project_id = result.scalar_one_or_none()
            removed = await self.dependencies.remove_dependency(
                blocking_task_id, blocked_task_id, self.actor
            )
            if removed:
                self.dispatcher.publish(
                    change("task_dependencies", "delete", f"{blocking_task_id}:{blocked_task_id}", project_id)
                )
        return removed

    async def update_dependency(
        self, dependency_id: UUID, dependency_type: str | None = None, lag_days: int | None = None
    ) -> TaskDependency:
        async with self._command("update_dependency"):
            dependency = await self.dependencies.update_dependency(
                dependency_id, self.actor, dependency_type, lag_days
            )
        return dependency

    async def blockers(self, task_id: UUID) -> list[Blocker]:
        await self._require_task_access(task_id)
        return await self.dependencies.blockers_of(task_id)

    async def blocked_tasks(self, task_id: UUID) -> list[BlockedTask]:
        await self._require_task_access(task_id)
        return await self.dependencies.blocked_by(task_id)

    async def is_blocked(self, task_id: UUID) -> bool:
        await self._require_task_access(task_id)
        return await self.dependencies.is_blocked(task_id)

    async def would_create_cycle(self, blocking_task_id: UUID, blocked_task_id: UUID) -> bool:
        await self._require_task_access(blocking_task_id)
        await self._require_task_access(blocked_task_id)
        return await self.dependencies.would_create_cycle(blocking_task_id, blocked_task_id)

    async def project_dependencies(self, project_id: UUID) -> Sequence[TaskDependency]:
        await self.actor.require_project_role(project_id, "reader")
        return await self.dependencies.project_dependencies(project_id)

    async def critical_path(self, project_id: UUID) -> list[Task]:
        await self.actor.require_project_role(project_id, "reader")
        return await self.dependencies.critical_path(project_id)

    # =========================================================================
    # Assignments / Comments
    # =========================================================================

    async def assign(self, task_id: UUID, user_id: UUID, role: str = "assignee") -> TaskAssignment:
        async with self._command("assign", task_id=str(task_id), user_id=str(user_id)):
            assignment = await self.assignments.assign_user(task_id, user_id, self.actor, role)
            task = await board.get_task(self.db, task_id)
            self.dispatcher.publish(
                change("task_assignments", "insert", assignment.id, task.project_id),
                change("attention_items", "insert", task_id, user_id=user_id),
            )
        return assignment

    async def unassign(self, task_id: UUID, user_id: UUID) -> bool:
        async with self._command("unassign", task_id=str(task_id), user_id=str(user_id)):
            removed = await self.assignments.unassign_user(task_id, user_id, self.actor)
            if removed:
                task = await board.get_task(self.db, task_id)
                self.dispatcher.publish(
                    change("task_assignments", "delete", f"{task_id}:{user_id}", task.project_id),
                    change("attention_items", "insert", task_id, user_id=user_id),
                )
        return removed

    async def task_assignments(self, task_id: UUID) -> Sequence[TaskAssignment]:
        await self._require_task_access(task_id)
        return await self.assignments.get_task_assignments(task_id)

    async def add_comment(self, task_id: UUID, content: str) -> TaskComment:
        async with self._command("add_comment", task_id=str(task_id)):
            comment = await self.comments.add_comment(task_id, content, self.actor)
            self.dispatcher.publish(change("task_comments", "insert", comment.id, comment.project_id))
            self._publish_items(await self._comment_items(comment.id))
        return comment

    async def edit_comment(self, comment_id: UUID, content: str) -> TaskComment:
        async with self._command("edit_comment", comment_id=str(comment_id)):
            comment = await self.comments.edit_comment(comment_id, content, self.actor)
            self.dispatcher.publish(change("task_comments", "update", comment.id, comment.project_id))
            self._publish_items(await self._comment_items(comment.id))
        return comment

    async def delete_comment(self, comment_id: UUID) -> None:
        async with self._command("delete_comment", comment_id=str(comment_id)):
            comment = await self.comments.get_comment(comment_id)
            project_id = comment.project_id
            await self.comments.delete_comment(comment_id, self.actor)
            self.dispatcher.publish(change("task_comments", "delete", comment_id, project_id))

    async def task_comments(self, task_id: UUID) -> Sequence[TaskComment]:
        await self._require_task_access(task_id)
        return await self.comments.task_comments(task_id)

    # =========================================================================
    # Recurrences
    # =========================================================================

    async def create_recurrence(self, task_id: UUID, data: dict[str, Any]) -> TaskRecurrence:
        async with self._command("create_recurrence", task_id=str(task_id)):
            recurrence = await self.recurrences.create_recurrence(task_id, data, self.actor)
            task = await board.get_task(self.db, task_id)
            self.dispatcher.publish(change("task_recurrences", "insert", recurrence.id, task.project_id))
        return recurrence

    async def update_recurrence(self, recurrence_id: UUID, data: dict[str, Any]) -> TaskRecurrence:
        async with self._command("update_recurrence", recurrence_id=str(recurrence_id)):
            recurrence = await self.recurrences.update_recurrence(recurrence_id, data, self.actor)
            task = await board.get_task(self.db, recurrence.task_id)
            self.dispatcher.publish(change("task_recurrences", "update", recurrence.id, task.project_id))
        return recurrence

    async def set_recurrence_active(self, recurrence_id: UUID, is_active: bool) -> TaskRecurrence:
        async with self._command("set_recurrence_active", recurrence_id=str(recurrence_id)):
            recurrence = await self.recurrences.set_active(recurrence_id, is_active, self.actor)
        return recurrence

    async def delete_recurrence(self, recurrence_id: UUID) -> None:
        async with self._command("delete_recurrence", recurrence_id=str(recurrence_id)):
            await self.recurrences.delete_recurrence(recurrence_id, self.actor)
            self.dispatcher.publish(change("task_recurrences", "delete", recurrence_id))

    async def project_recurrences(self, project_id: UUID, active_only: bool = True) -> Sequence[TaskRecurrence]:
        await self.actor.require_project_role(project_id, "reader")
        return await self.recurrences.get_project_recurrences(project_id, active_only)

    @staticmethod
    def preview_recurrence(data: dict[str, Any], count: int = 5, after: date | None = None) -> RecurrencePreview:
        """Describe a pattern and list its next occurrences without storing anything."""
        spec = RecurrenceSpec.parse(data)
        return RecurrencePreview(
            description=describe(spec),
            upcoming=upcoming_occurrences(spec, count=count, after=after),
        )

    # =========================================================================
    # Milestones
    # =========================================================================

    async def create_milestone(self, project_id: UUID, name: str, target_date: date, **fields: Any) -> Milestone:
        async with self._command("create_milestone", project_id=str(project_id)):
            milestone = await self.milestones.create_milestone(
                project_id, name, target_date, self.actor, **fields
            )
            self.dispatcher.publish(change("milestones", "insert", milestone.id, project_id))
        return milestone

    async def project_milestones(self, project_id: UUID) -> Sequence[Milestone]:
        await self.actor.require_project_role(project_id, "reader")
        return await self.milestones.project_milestones(project_id)

    async def set_milestone_completed(self, milestone_id: UUID, completed: bool) -> Milestone:
        async with self._command("set_milestone_completed", milestone_id=str(milestone_id)):
            milestone = await self.milestones.set_completed(milestone_id, completed, self.actor)
            self.dispatcher.publish(change("milestones", "update", milestone.id, milestone.project_id))
        return milestone

    async def delete_milestone(self, milestone_id: UUID) -> None:
        async with self._command("delete_milestone", milestone_id=str(milestone_id)):
            milestone = await self.milestones.get_milestone(milestone_id)
            project_id = milestone.project_id
            await self.milestones.delete_milestone(milestone_id, self.actor)
            self.dispatcher.publish(change("milestones", "delete", milestone_id, project_id))

    async def milestone_progress(self, milestone_id: UUID) -> MilestoneProgress:
        milestone = await self.milestones.get_milestone(milestone_id)
        await self.actor.require_project_role(milestone.project_id, "reader")
        return await self.milestones.progress(milestone_id)

    # =========================================================================
    # Inbox
    # =========================================================================

    async def inbox(self, inbox_filter: InboxFilter = "all", limit: int = 50, offset: int = 0) -> Sequence[AttentionItem]:
        return await self.attention.list_items(self.user_id, inbox_filter, limit, offset)

    async def unread_count(self) -> int:
        return await self.attention.unread_count(self.user_id)

    async def mark_read(self, item_id: UUID) -> AttentionItem:
        async with self._command("mark_read"):
            item = await self.attention.mark_read(item_id, self.user_id)
            self.dispatcher.publish(change("attention_items", "update", item.id, user_id=self.user_id))
        return item

    async def mark_all_read(self) -> int:
        async with self._command("mark_all_read"):
            count = await self.attention.mark_all_read(self.user_id)
            if count:
                self.dispatcher.publish(change("attention_items", "update", "*", user_id=self.user_id))
        return count

    async def dismiss(self, item_id: UUID) -> AttentionItem:
        async with self._command("dismiss"):
            item = await self.attention.dismiss(item_id, self.user_id)
            self.dispatcher.publish(change("attention_items", "update", item.id, user_id=self.user_id))
        return item

    async def mark_actioned(self, item_id: UUID) -> AttentionItem:
        async with self._command("mark_actioned"):
            item = await self.attention.mark_actioned(item_id, self.user_id)
            self.dispatcher.publish(change("attention_items", "update", item.id, user_id=self.user_id))
        return item

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _require_task_access(self, task_id: UUID) -> Task:
        task = await board.get_task(self.db, task_id)
        await self.actor.require_project_role(task.project_id, "reader")
        return task

    async def _actor_name(self) -> str:
        result = await self.db.execute(select(User.display_name).where(User.id == self.user_id))
        return result.scalar_one_or_none() or "Someone"

    async def _comment_items(self, comment_id: UUID) -> Sequence[AttentionItem]:
        result = await self.db.execute(
            select(AttentionItem).where(AttentionItem.comment_id == comment_id)
        )
        return result.scalars().all()

    def _publish_task(self, task: Task, op: str) -> None:
        self.dispatcher.publish(change("tasks", op, task.id, task.project_id))

    def _publish_items(self, items: Sequence[AttentionItem]) -> None:
        for item in items:
            self.dispatcher.publish(change("attention_items", "insert", item.id, user_id=item.user_id))


class PasswordResetCommands:
    """Unauthenticated PIN flow. Responses never reveal whether an account exists."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.settings = settings or get_settings()
        self.pins = PinService(db, self.settings)

    async def request_pin(self, email: str) -> None:
        """Issue a PIN and email it after commit."""
        try:
            issued = await self.pins.issue_pin(email)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if issued is not None:
            self.dispatcher.email(
                password_reset_pin_email(issued.email, issued.pin, self.settings.pin_expiry_minutes)
            )
            await self.dispatcher.flush()

    async def verify_pin(self, email: str, pin: str) -> None:
        """Verify a PIN. Attempt counters are committed even when verification fails."""
        try:
            await self.pins.verify_pin(email, pin)
        except PinError:
            await self.db.commit()
            raise
        except Exception:
            await self.db.rollback()
            raise
        await self.db.commit()
