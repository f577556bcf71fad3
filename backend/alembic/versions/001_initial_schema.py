"""Initial schema: tenancy, projects, tasks, approval, dependencies, recurrence, inbox.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def _fk(name: str, target: str, ondelete: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
    )


def upgrade() -> None:
    # Users
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    # Organizations and teams
    op.create_table(
        "organizations",
        _id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        _fk("created_by_id", "users.id", "SET NULL", nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    op.create_table(
        "organization_members",
        _id(),
        _fk("organization_id", "organizations.id", "CASCADE"),
        _fk("user_id", "users.id", "CASCADE"),
        sa.Column("role", sa.String(20), nullable=False, server_default="reader"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "user_id", name="uq_organization_member"),
    )
    op.create_index("ix_organization_members_organization_id", "organization_members", ["organization_id"])
    op.create_index("ix_organization_members_user_id", "organization_members", ["user_id"])

    op.create_table(
        "teams",
        _id(),
        _fk("organization_id", "organizations.id", "CASCADE"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        _fk("created_by_id", "users.id", "SET NULL", nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_teams_organization_id", "teams", ["organization_id"])

    op.create_table(
        "team_members",
        _id(),
        _fk("team_id", "teams.id", "CASCADE"),
        _fk("user_id", "users.id", "CASCADE"),
        sa.Column("role", sa.String(20), nullable=False, server_default="member"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("team_id", "user_id", name="uq_team_member"),
    )
    op.create_index("ix_team_members_team_id", "team_members", ["team_id"])
    op.create_index("ix_team_members_user_id", "team_members", ["user_id"])

    # Projects
    op.create_table(
        "projects",
        _id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _fk("organization_id", "organizations.id", "CASCADE"),
        _fk("team_id", "teams.id", "SET NULL", nullable=True),
        _fk("created_by_id", "users.id", "SET NULL", nullable=True),
        sa.Column(
            "workflow_stages",
            postgresql.JSONB(),
            nullable=False,
            server_default="[]",
        ),
        sa.Column("workflow_schema_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("chat_channel", sa.String(255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_projects_organization_id", "projects", ["organization_id"])
    op.create_index("ix_projects_team_id", "projects", ["team_id"])

    op.create_table(
        "project_members",
        _id(),
        _fk("project_id", "projects.id", "CASCADE"),
        _fk("user_id", "users.id", "CASCADE"),
        sa.Column("role", sa.String(20), nullable=False, server_default="editor"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "user_id", name="uq_project_member"),
    )
    op.create_index("ix_project_members_project_id", "project_members", ["project_id"])
    op.create_index("ix_project_members_user_id", "project_members", ["user_id"])

    op.create_table(
        "milestones",
        _id(),
        _fk("project_id", "projects.id", "CASCADE"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("color", sa.String(20), nullable=False, server_default="#3B82F6"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_milestones_project_id", "milestones", ["project_id"])

    # Tasks
    op.create_table(
        "tasks",
        _id(),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("priority", sa.String(20), nullable=False, server_default="none"),
        _fk("project_id", "projects.id", "CASCADE"),
        sa.Column("stage_id", sa.String(100), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("estimated_hours", sa.Float(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _fk("parent_task_id", "tasks.id", "CASCADE", nullable=True),
        _fk("milestone_id", "milestones.id", "SET NULL", nullable=True),
        sa.Column("color", sa.String(20), nullable=True),
        _fk("created_by_id", "users.id", "SET NULL", nullable=True),
        _fk("updated_by_id", "users.id", "SET NULL", nullable=True),
        sa.Column("approval_status", sa.String(20), nullable=False, server_default="none"),
        sa.Column("moved_to_done_at", sa.DateTime(timezone=True), nullable=True),
        _fk("moved_to_done_by_id", "users.id", "SET NULL", nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        _fk("approved_by_id", "users.id", "SET NULL", nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("chat_thread_ref", sa.String(100), nullable=True),
        sa.Column("chat_thread_started_at", sa.DateTime(timezone=True), nullable=True),
        _fk("recurrence_template_id", "tasks.id", "SET NULL", nullable=True),
        sa.Column("recurrence_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "recurrence_template_id", "recurrence_date", name="uq_task_recurrence_occurrence"
        ),
    )
    op.create_index("ix_tasks_project_id", "tasks", ["project_id"])
    op.create_index("ix_tasks_project_stage_position", "tasks", ["project_id", "stage_id", "position"])
    op.create_index("ix_tasks_parent_task_id", "tasks", ["parent_task_id"])
    op.create_index("ix_tasks_milestone_id", "tasks", ["milestone_id"])
    op.create_index("ix_tasks_approval_status", "tasks", ["approval_status"])
    op.create_index("ix_tasks_recurrence_template_id", "tasks", ["recurrence_template_id"])

    op.create_table(
        "task_assignments",
        _id(),
        _fk("task_id", "tasks.id", "CASCADE"),
        _fk("user_id", "users.id", "CASCADE"),
        _fk("assigned_by_id", "users.id", "SET NULL", nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="assignee"),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("task_id", "user_id", name="uq_task_assignment"),
    )
    op.create_index("ix_task_assignments_task_id", "task_assignments", ["task_id"])
    op.create_index("ix_task_assignments_user_id", "task_assignments", ["user_id"])

    op.create_table(
        "task_dependencies",
        _id(),
        _fk("blocking_task_id", "tasks.id", "CASCADE"),
        _fk("blocked_task_id", "tasks.id", "CASCADE"),
        sa.Column("dependency_type", sa.String(30), nullable=False, server_default="finish_to_start"),
        sa.Column("lag_days", sa.Integer(), nullable=False, server_default="0"),
        _fk("created_by_id", "users.id", "SET NULL", nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("blocking_task_id", "blocked_task_id", name="uq_task_dependency"),
        sa.CheckConstraint("blocking_task_id <> blocked_task_id", name="ck_task_dependency_not_self"),
    )
    op.create_index("ix_task_dependencies_blocking_task_id", "task_dependencies", ["blocking_task_id"])
    op.create_index("ix_task_dependencies_blocked_task_id", "task_dependencies", ["blocked_task_id"])

    op.create_table(
        "task_comments",
        _id(),
        _fk("task_id", "tasks.id", "CASCADE"),
        _fk("project_id", "projects.id", "CASCADE"),
        _fk("user_id", "users.id", "SET NULL", nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("mentions", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_comments_task_id", "task_comments", ["task_id"])
    op.create_index("ix_task_comments_project_id", "task_comments", ["project_id"])

    op.create_table(
        "task_recurrences",
        _id(),
        _fk("task_id", "tasks.id", "CASCADE"),
        sa.Column("frequency", sa.String(20), nullable=False),
        sa.Column("interval", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("days_of_week", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("day_of_month", sa.Integer(), nullable=True),
        sa.Column("month_of_year", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("max_occurrences", sa.Integer(), nullable=True),
        sa.Column("occurrences_created", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_occurrence", sa.Date(), nullable=True),
        sa.Column("last_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _fk("created_by_id", "users.id", "SET NULL", nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("task_id", name="uq_task_recurrence_task"),
    )
    op.create_index("ix_task_recurrences_next_occurrence", "task_recurrences", ["next_occurrence"])
    op.create_index("ix_task_recurrences_is_active", "task_recurrences", ["is_active"])

    # Mentions and attention inbox
    op.create_table(
        "mentions",
        _id(),
        _fk("mentioned_user_id", "users.id", "CASCADE"),
        _fk("mentioner_user_id", "users.id", "SET NULL", nullable=True),
        _fk("task_id", "tasks.id", "CASCADE", nullable=True),
        _fk("comment_id", "task_comments.id", "CASCADE", nullable=True),
        _fk("project_id", "projects.id", "CASCADE", nullable=True),
        sa.Column("mention_context", sa.Text(), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("task_id IS NOT NULL OR comment_id IS NOT NULL", name="ck_mention_has_target"),
        sa.UniqueConstraint("comment_id", "mentioned_user_id", name="uq_mention_comment_user"),
    )
    op.create_index("ix_mentions_mentioned_user_id", "mentions", ["mentioned_user_id"])
    op.create_index("ix_mentions_task_id", "mentions", ["task_id"])

    op.create_table(
        "attention_items",
        _id(),
        _fk("user_id", "users.id", "CASCADE"),
        sa.Column("attention_type", sa.String(30), nullable=False),
        sa.Column("priority", sa.String(20), nullable=False, server_default="normal"),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        _fk("task_id", "tasks.id", "CASCADE", nullable=True),
        _fk("comment_id", "task_comments.id", "CASCADE", nullable=True),
        _fk("mention_id", "mentions.id", "CASCADE", nullable=True),
        _fk("project_id", "projects.id", "CASCADE", nullable=True),
        _fk("actor_user_id", "users.id", "SET NULL", nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dismissed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actioned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dedup_key", sa.String(200), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_attention_items_user_id", "attention_items", ["user_id"])
    op.create_index("ix_attention_items_task_id", "attention_items", ["task_id"])
    op.create_index("ix_attention_items_user_created", "attention_items", ["user_id", "created_at"])
    op.create_index(
        "uq_attention_items_user_dedup_live",
        "attention_items",
        ["user_id", "dedup_key"],
        unique=True,
        postgresql_where=sa.text("dismissed_at IS NULL"),
    )

    # Activity log
    op.create_table(
        "activities",
        _id(),
        sa.Column("activity_type", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("target_type", sa.String(50), nullable=False),
        sa.Column("target_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("target_title", sa.String(500), nullable=True),
        _fk("project_id", "projects.id", "CASCADE", nullable=True),
        _fk("organization_id", "organizations.id", "CASCADE"),
        _fk("actor_id", "users.id", "SET NULL", nullable=True),
        sa.Column("extra_data", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activities_activity_type", "activities", ["activity_type"])
    op.create_index("ix_activities_target", "activities", ["target_type", "target_id"])
    op.create_index("ix_activities_project_id", "activities", ["project_id"])
    op.create_index("ix_activities_organization_id", "activities", ["organization_id"])
    op.create_index("ix_activities_actor_id", "activities", ["actor_id"])

    # Password reset PINs
    op.create_table(
        "password_reset_pins",
        _id(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("pin_hash", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invalidated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_password_reset_pins_email", "password_reset_pins", ["email"], unique=True)


def downgrade() -> None:
    op.drop_table("password_reset_pins")
    op.drop_table("activities")
    op.drop_table("attention_items")
    op.drop_table("mentions")
    op.drop_table("task_recurrences")
    op.drop_table("task_comments")
    op.drop_table("task_dependencies")
    op.drop_table("task_assignments")
    op.drop_table("tasks")
    op.drop_table("milestones")
    op.drop_table("project_members")
    op.drop_table("projects")
    op.drop_table("team_members")
    op.drop_table("teams")
    op.drop_table("organization_members")
    op.drop_table("organizations")
    op.drop_table("users")
