"""Attention inbox and mention models."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from taskboard.db.base import BaseModel

# Dedup keys are opaque UTF-8 strings of at most this many bytes
DEDUP_KEY_MAX_BYTES = 200


class AttentionItem(BaseModel):
    """Per-user inbox entry produced from a domain event."""

    __tablename__ = "attention_items"
    __table_args__ = (
        # At most one live item per (recipient, dedup_key)
        Index(
            "uq_attention_items_user_dedup_live",
            "user_id",
            "dedup_key",
            unique=True,
            postgresql_where=text("dismissed_at IS NULL"),
            sqlite_where=text("dismissed_at IS NULL"),
        ),
        Index("ix_attention_items_user_created", "user_id", "created_at"),
    )

    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    attention_type: Mapped[str] = mapped_column(
        String(30), nullable=False
    )  # mention, assignment, unassignment, due_soon, overdue, comment, status_change
    priority: Mapped[str] = mapped_column(
        String(20), nullable=False, default="normal"
    )  # urgent, high, normal, low
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)

    # References
    task_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    comment_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("task_comments.id", ondelete="CASCADE"),
        nullable=True,
    )
    mention_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("mentions.id", ondelete="CASCADE"),
        nullable=True,
    )
    project_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
    )
    actor_user_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dismissed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actioned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    dedup_key: Mapped[str] = mapped_column(String(DEDUP_KEY_MAX_BYTES), nullable=False)

    def __repr__(self) -> str:
        return f"<AttentionItem {self.attention_type} user={self.user_id} key={self.dedup_key}>"


class Mention(BaseModel):
    """A user being @mentioned on a task or comment."""

    __tablename__ = "mentions"
    __table_args__ = (
        CheckConstraint(
            "task_id IS NOT NULL OR comment_id IS NOT NULL", name="ck_mention_has_target"
        ),
        UniqueConstraint("comment_id", "mentioned_user_id", name="uq_mention_comment_user"),
    )

    mentioned_user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    mentioner_user_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    task_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    comment_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("task_comments.id", ondelete="CASCADE"),
        nullable=True,
    )
    project_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
    )
    mention_context: Mapped[str | None] = mapped_column(Text, nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Mention user={self.mentioned_user_id} comment={self.comment_id}>"
