"""Activity log model."""

from uuid import UUID

from sqlalchemy import ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from taskboard.db.base import BaseModel, JSONType


class Activity(BaseModel):
    """
    Activity log for tracking user actions on tasks.

    Append-only audit trail that powers project activity feeds.
    """

    __tablename__ = "activities"

    activity_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Type of activity (e.g., 'task.moved', 'task.approved')",
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Human-readable description of the activity",
    )

    # Target entity (polymorphic reference)
    target_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    target_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    target_title: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Context
    project_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    organization_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    actor_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    extra_data: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Additional context data (old values, changes, etc.)",
    )
