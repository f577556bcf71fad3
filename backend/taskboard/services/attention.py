"""Attention inbox service.

Turns domain events into per-user attention items. Two rules hold for every
item:

- Actor suppression: nobody is notified about their own action.
- Deduplication: at most one non-dismissed item per (recipient, dedup_key);
  a repeated event refreshes the existing item instead of adding a row.

Fan-out is best-effort per recipient: each insert runs in its own savepoint
and a failure for one recipient is logged and skipped.
"""

from datetime import date, datetime, timedelta
from typing import Iterable, Literal, Sequence
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.exceptions import InvalidError, NotFoundError
from taskboard.models.attention import DEDUP_KEY_MAX_BYTES, AttentionItem, Mention
from taskboard.models.enums import ATTENTION_TYPE_PRIORITY, ApprovalStatus, AttentionType
from taskboard.models.project import Task, TaskAssignment, TaskComment
from taskboard.models.user import User
from taskboard.utils.time import hour_bucket, utcnow

logger = structlog.get_logger()

InboxFilter = Literal["all", "unread", "mentions", "assignments"]

MAX_PAGE_SIZE = 100
BODY_PREVIEW_LENGTH = 100


def check_dedup_key(dedup_key: str) -> str:
    if not dedup_key or len(dedup_key.encode("utf-8")) > DEDUP_KEY_MAX_BYTES:
        raise InvalidError(
            f"dedup_key must be 1-{DEDUP_KEY_MAX_BYTES} UTF-8 bytes", code="INVALID_DEDUP_KEY"
        )
    return dedup_key


class AttentionService:
    """Service for creating and managing attention items."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Upsert
    # =========================================================================

    async def upsert(
        self,
        user_id: UUID,
        attention_type: AttentionType,
        title: str,
        dedup_key: str,
        body: str | None = None,
        actor_user_id: UUID | None = None,
        task_id: UUID | None = None,
        comment_id: UUID | None = None,
        mention_id: UUID | None = None,
        project_id: UUID | None = None,
    ) -> AttentionItem | None:
        """
        Insert or refresh the live item for (user_id, dedup_key).

        Returns:
            The item, or None when the recipient is the actor
        """
        if actor_user_id is not None and user_id == actor_user_id:
            return None
        check_dedup_key(dedup_key)

        item = await self._live_item(user_id, dedup_key)
        if item is not None:
            self._refresh(item, title, body, actor_user_id)
            await self.db.flush()
            return item

        item = AttentionItem(
            user_id=user_id,
            attention_type=attention_type.value,
            priority=ATTENTION_TYPE_PRIORITY[attention_type].value,
            title=title,
            body=body,
            task_id=task_id,
            comment_id=comment_id,
            mention_id=mention_id,
            project_id=project_id,
            actor_user_id=actor_user_id,
            dedup_key=dedup_key,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(item)
        except IntegrityError:
            # A concurrent writer created the live item first
            existing = await self._live_item(user_id, dedup_key)
            if existing is None:
                raise
            self._refresh(existing, title, body, actor_user_id)
            await self.db.flush()
            return existing

        logger.debug(
            "attention_item_created",
            user_id=str(user_id),
            attention_type=attention_type.value,
            dedup_key=dedup_key,
        )
        return item

    async def notify(
        self,
        recipients: Iterable[UUID],
        attention_type: AttentionType,
        title: str,
        dedup_key: str,
        body: str | None = None,
        actor_user_id: UUID | None = None,
        task_id: UUID | None = None,
        comment_id: UUID | None = None,
        project_id: UUID | None = None,
    ) -> list[AttentionItem]:
        """Fan an event out to several recipients sharing one dedup key."""
        items = []
        for user_id in dict.fromkeys(recipients):
            item = await self._safe_upsert(
                user_id=user_id,
                attention_type=attention_type,
                title=title,
                dedup_key=dedup_key,
                body=body,
                actor_user_id=actor_user_id,
                task_id=task_id,
                comment_id=comment_id,
                project_id=project_id,
            )
            if item is not None:
                items.append(item)
        return items

    async def _safe_upsert(self, **kwargs) -> AttentionItem | None:
        try:
            async with self.db.begin_nested():
                return await self.upsert(**kwargs)
        except SQLAlchemyError as e:
            logger.warning(
                "attention_item_failed",
                user_id=str(kwargs["user_id"]),
                dedup_key=kwargs.get("dedup_key"),
                error=str(e),
            )
            return None

    async def _live_item(self, user_id: UUID, dedup_key: str) -> AttentionItem | None:
        result = await self.db.execute(
            select(AttentionItem).where(
                AttentionItem.user_id == user_id,
                AttentionItem.dedup_key == dedup_key,
                AttentionItem.dismissed_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _refresh(
        item: AttentionItem,
        title: str,
        body: str | None,
        actor_user_id: UUID | None,
    ) -> None:
        item.title = title
        item.body = body
        item.updated_at = utcnow()
        if actor_user_id is not None:
            item.actor_user_id = actor_user_id

    # =========================================================================
    # Domain Events
    # =========================================================================

    async def on_assignment(self, task: Task, user_id: UUID, actor_user_id: UUID | None) -> AttentionItem | None:
        actor_name = await self._display_name(actor_user_id)
        return await self._safe_upsert(
            user_id=user_id,
            attention_type=AttentionType.ASSIGNMENT,
            title=f"Task assigned: {task.title}",
            body=f"{actor_name} assigned you to this task",
            dedup_key=f"assignment:{task.id}",
            actor_user_id=actor_user_id,
            task_id=task.id,
            project_id=task.project_id,
        )

    async def on_unassignment(
        self,
        task: Task,
        user_id: UUID,
        actor_user_id: UUID | None,
        today: date | None = None,
    ) -> AttentionItem | None:
        today = today or utcnow().date()
        return await self._safe_upsert(
            user_id=user_id,
            attention_type=AttentionType.UNASSIGNMENT,
            title=f"Task unassigned: {task.title}",
            body="You were unassigned from this task",
            dedup_key=f"unassignment:{task.id}:{today.isoformat()}",
            actor_user_id=actor_user_id,
            task_id=task.id,
            project_id=task.project_id,
        )

    async def on_status_change(
        self,
        task: Task,
        stage_name: str,
        actor_user_id: UUID | None,
    ) -> list[AttentionItem]:
        """Tell the task's assignees that it changed stage."""
        actor_name = await self._display_name(actor_user_id)
        return await self.notify(
            recipients=await self._assignee_ids(task.id),
            attention_type=AttentionType.STATUS_CHANGE,
            title=f"Status changed: {task.title}",
            body=f"{actor_name} moved this task to {stage_name}",
            dedup_key=f"status:{task.id}:{task.stage_id}",
            actor_user_id=actor_user_id,
            task_id=task.id,
            project_id=task.project_id,
        )

    async def on_comment(
        self,
        task: Task,
        comment: TaskComment,
        actor_user_id: UUID | None,
        now: datetime | None = None,
    ) -> list[AttentionItem]:
        """Notify assignees and the task creator about a new comment.

        Items are bucketed per hour so a burst of comments refreshes one item.
        """
        bucket = hour_bucket(now or utcnow())
        actor_name = await self._display_name(actor_user_id)
        title = f"New comment on: {task.title}"
        body = f"{actor_name}: {comment.content[:BODY_PREVIEW_LENGTH]}"

        assignees = await self._assignee_ids(task.id)
        items = await self.notify(
            recipients=assignees,
            attention_type=AttentionType.COMMENT,
            title=title,
            body=body,
            dedup_key=f"comment:{task.id}:{bucket}",
            actor_user_id=actor_user_id,
            task_id=task.id,
            comment_id=comment.id,
            project_id=task.project_id,
        )
        if task.created_by_id is not None and task.created_by_id not in assignees:
            items += await self.notify(
                recipients=[task.created_by_id],
                attention_type=AttentionType.COMMENT,
                title=title,
                body=body,
                dedup_key=f"comment:{task.id}:creator:{bucket}",
                actor_user_id=actor_user_id,
                task_id=task.id,
                comment_id=comment.id,
                project_id=task.project_id,
            )
        return items

    async def on_mentions(
        self,
        task: Task,
        comment: TaskComment,
        mentioned_users: Sequence[User],
        actor_user_id: UUID | None,
    ) -> list[AttentionItem]:
        """Record mentions of resolved users and notify each of them once per comment."""
        actor_name = await self._display_name(actor_user_id)
        items = []
        for user in mentioned_users:
            if user.id == actor_user_id:
                continue
            try:
                async with self.db.begin_nested():
                    mention = await self._record_mention(task, comment, user.id, actor_user_id)
                    item = await self.upsert(
                        user_id=user.id,
                        attention_type=AttentionType.MENTION,
                        title=f"{actor_name} mentioned you",
                        body=f"On '{task.title}': {comment.content[:BODY_PREVIEW_LENGTH]}",
                        dedup_key=f"mention:{comment.id}:{user.id}",
                        actor_user_id=actor_user_id,
                        task_id=task.id,
                        comment_id=comment.id,
                        mention_id=mention.id,
                        project_id=task.project_id,
                    )
            except SQLAlchemyError as e:
                logger.warning(
                    "mention_notification_failed",
                    comment_id=str(comment.id),
                    user_id=str(user.id),
                    error=str(e),
                )
                continue
            if item is not None:
                items.append(item)
        return items

    async def withdraw_mentions(self, comment: TaskComment, kept_user_ids: Iterable[UUID]) -> int:
        """Drop mentions, and their inbox items, of users no longer named in ``comment``."""
        kept = list(kept_user_ids)
        await self.db.execute(
            delete(AttentionItem).where(
                AttentionItem.comment_id == comment.id,
                AttentionItem.attention_type == AttentionType.MENTION.value,
                AttentionItem.user_id.not_in(kept),
            )
        )
        result = await self.db.execute(
            delete(Mention).where(
                Mention.comment_id == comment.id,
                Mention.mentioned_user_id.not_in(kept),
            )
        )
        if result.rowcount:
            logger.info("mentions_withdrawn", comment_id=str(comment.id), count=result.rowcount)
        return result.rowcount

    async def _record_mention(
        self,
        task: Task,
        comment: TaskComment,
        user_id: UUID,
        actor_user_id: UUID | None,
    ) -> Mention:
        result = await self.db.execute(
            select(Mention).where(
                Mention.comment_id == comment.id,
                Mention.mentioned_user_id == user_id,
            )
        )
        mention = result.scalar_one_or_none()
        if mention is None:
            mention = Mention(
                mentioned_user_id=user_id,
                mentioner_user_id=actor_user_id,
                task_id=task.id,
                comment_id=comment.id,
                project_id=task.project_id,
            )
            self.db.add(mention)
        mention.mention_context = comment.content[:500]
        await self.db.flush()
        return mention

    # =========================================================================
    # Due Date Sweep
    # =========================================================================

    async def sweep_due_dates(self, now: datetime | None = None, window_hours: int = 24) -> int:
        """
        Create due-soon and overdue items for assignees of unfinished tasks.

        Safe to run repeatedly: keys include the due date, so each task yields
        at most one live item of each kind per due date.

        Returns:
            Number of items created or refreshed
        """
        now = now or utcnow()
        today = now.date()
        horizon = (now + timedelta(hours=window_hours)).date()

        result = await self.db.execute(
            select(Task).where(
                Task.due_date.is_not(None),
                Task.due_date <= horizon,
                Task.approval_status != ApprovalStatus.APPROVED.value,
                Task.completed_at.is_(None),
            )
        )
        touched = 0
        for task in result.scalars().all():
            assignees = await self._assignee_ids(task.id)
            if not assignees:
                continue
            due = task.due_date.isoformat()
            if task.due_date < today:
                items = await self.notify(
                    recipients=assignees,
                    attention_type=AttentionType.OVERDUE,
                    title=f"Overdue: {task.title}",
                    body=f"This task was due on {due}",
                    dedup_key=f"overdue:{task.id}:{due}",
                    task_id=task.id,
                    project_id=task.project_id,
                )
            else:
                items = await self.notify(
                    recipients=assignees,
                    attention_type=AttentionType.DUE_SOON,
                    title=f"Due soon: {task.title}",
                    body=f"This task is due on {due}",
                    dedup_key=f"due_soon:{task.id}:{due}",
                    task_id=task.id,
                    project_id=task.project_id,
                )
            touched += len(items)

        logger.info("due_date_sweep_completed", items=touched)
        return touched

    # =========================================================================
    # Inbox Operations
    # =========================================================================

    async def list_items(
        self,
        user_id: UUID,
        inbox_filter: InboxFilter = "all",
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[AttentionItem]:
        """Live items of a user, newest first."""
        query = select(AttentionItem).where(
            AttentionItem.user_id == user_id,
            AttentionItem.dismissed_at.is_(None),
        )
        if inbox_filter == "unread":
            query = query.where(AttentionItem.read_at.is_(None))
        elif inbox_filter == "mentions":
            query = query.where(AttentionItem.attention_type == AttentionType.MENTION.value)
        elif inbox_filter == "assignments":
            query = query.where(
                AttentionItem.attention_type.in_(
                    [AttentionType.ASSIGNMENT.value, AttentionType.UNASSIGNMENT.value]
                )
            )

        query = (
            query.order_by(AttentionItem.created_at.desc(), AttentionItem.id)
            .offset(offset)
            .limit(min(limit, MAX_PAGE_SIZE))
        )
        result = await self.db.execute(query)
        return result.scalars().all()

    async def unread_count(self, user_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(AttentionItem.id)).where(
                AttentionItem.user_id == user_id,
                AttentionItem.read_at.is_(None),
                AttentionItem.dismissed_at.is_(None),
            )
        )
        return result.scalar_one()

    async def mark_read(self, item_id: UUID, user_id: UUID) -> AttentionItem:
        item = await self._get_own_item(item_id, user_id)
        if item.read_at is None:
            item.read_at = utcnow()
            await self.db.flush()
        return item

    async def mark_all_read(self, user_id: UUID) -> int:
        """Mark every unread live item as read; returns how many changed."""
        now = utcnow()
        result = await self.db.execute(
            update(AttentionItem)
            .where(
                AttentionItem.user_id == user_id,
                AttentionItem.read_at.is_(None),
                AttentionItem.dismissed_at.is_(None),
            )
            .values(read_at=now, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    async def dismiss(self, item_id: UUID, user_id: UUID) -> AttentionItem:
        """Dismiss an item; a later event with the same key creates a fresh one."""
        item = await self._get_own_item(item_id, user_id)
        if item.dismissed_at is None:
            item.dismissed_at = utcnow()
            await self.db.flush()
        return item

    async def mark_actioned(self, item_id: UUID, user_id: UUID) -> AttentionItem:
        item = await self._get_own_item(item_id, user_id)
        now = utcnow()
        item.actioned_at = item.actioned_at or now
        item.read_at = item.read_at or now
        await self.db.flush()
        return item

    async def _get_own_item(self, item_id: UUID, user_id: UUID) -> AttentionItem:
        result = await self.db.execute(
            select(AttentionItem).where(
                AttentionItem.id == item_id,
                AttentionItem.user_id == user_id,
            )
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise NotFoundError("Attention item", item_id)
        return item

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _assignee_ids(self, task_id: UUID) -> list[UUID]:
        result = await self.db.execute(
            select(TaskAssignment.user_id)
            .where(TaskAssignment.task_id == task_id)
            .order_by(TaskAssignment.assigned_at)
        )
        return list(result.scalars().all())

    async def _display_name(self, user_id: UUID | None) -> str:
        if user_id is None:
            return "Someone"
        result = await self.db.execute(select(User.display_name).where(User.id == user_id))
        return result.scalar_one_or_none() or "Someone"
