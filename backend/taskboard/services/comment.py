"""Task comment service with @mention resolution."""

from typing import Sequence
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.exceptions import ForbiddenError, InvalidError, NotFoundError
from taskboard.models.project import TaskComment
from taskboard.models.user import User
from taskboard.services import board
from taskboard.services.access_control import Principal, has_project_access
from taskboard.services.attention import AttentionService
from taskboard.utils.mentions import extract_mentions
from taskboard.utils.time import utcnow

logger = structlog.get_logger()

COMMENT_ROLE = "reader"
MAX_COMMENT_LENGTH = 10000


class CommentService:
    """Service for task comments and the attention they generate."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.attention = AttentionService(db)

    async def add_comment(self, task_id: UUID, content: str, actor: Principal) -> TaskComment:
        """
        Add a comment to a task.

        Assignees and the task creator get a comment item; every resolved
        @mention gets a mention item. The author is never notified.
        """
        content = self._clean(content)
        task = await board.get_task(self.db, task_id)
        await actor.require_project_role(task.project_id, COMMENT_ROLE)

        mentioned = await self.resolve_mentions(task.project_id, content)
        comment = TaskComment(
            task_id=task.id,
            project_id=task.project_id,
            user_id=actor.user_id,
            content=content,
            mentions=[str(user.id) for user in mentioned],
        )
        self.db.add(comment)
        await self.db.flush()

        await self.attention.on_comment(task, comment, actor.user_id)
        await self.attention.on_mentions(task, comment, mentioned, actor.user_id)

        logger.info(
            "comment_added",
            task_id=str(task.id),
            comment_id=str(comment.id),
            mention_count=len(mentioned),
        )
        return comment

    async def edit_comment(self, comment_id: UUID, content: str, actor: Principal) -> TaskComment:
        """Edit a comment; mention items are refreshed, not duplicated."""
        content = self._clean(content)
        comment = await self.get_comment(comment_id)
        if comment.user_id != actor.user_id:
            raise ForbiddenError("Only the author can edit a comment")

        task = await board.get_task(self.db, comment.task_id)
        await actor.require_project_role(task.project_id, COMMENT_ROLE)

        mentioned = await self.resolve_mentions(task.project_id, content)
        comment.content = content
        comment.mentions = [str(user.id) for user in mentioned]
        comment.edited_at = utcnow()
        await self.db.flush()

        await self.attention.withdraw_mentions(comment, [user.id for user in mentioned])
        await self.attention.on_mentions(task, comment, mentioned, actor.user_id)

        logger.info("comment_edited", comment_id=str(comment.id), mention_count=len(mentioned))
        return comment

    async def delete_comment(self, comment_id: UUID, actor: Principal) -> None:
        comment = await self.get_comment(comment_id)
        if comment.user_id != actor.user_id:
            await actor.require_project_role(comment.project_id, "admin")
        await self.db.delete(comment)
        await self.db.flush()

    async def get_comment(self, comment_id: UUID) -> TaskComment:
        result = await self.db.execute(select(TaskComment).where(TaskComment.id == comment_id))
        comment = result.scalar_one_or_none()
        if comment is None:
            raise NotFoundError("Comment", comment_id)
        return comment

    async def task_comments(self, task_id: UUID) -> Sequence[TaskComment]:
        result = await self.db.execute(
            select(TaskComment)
            .where(TaskComment.task_id == task_id)
            .order_by(TaskComment.created_at, TaskComment.id)
        )
        return result.scalars().all()

    async def resolve_mentions(self, project_id: UUID, content: str) -> list[User]:
        """Resolve @usernames against the project's members.

        Unknown names and users without access to the project are dropped.
        Order follows first appearance.
        """
        usernames = extract_mentions(content)
        if not usernames:
            return []

        result = await self.db.execute(
            select(User)
            .where(
                has_project_access(User.id, project_id),
                func.lower(User.username).in_(usernames),
            )
        )
        by_name = {user.username.lower(): user for user in result.scalars().all()}
        return [by_name[name] for name in usernames if name in by_name]

    @staticmethod
    def _clean(content: str) -> str:
        content = content.strip()
        if not content:
            raise InvalidError("Comment cannot be empty", code="EMPTY_COMMENT")
        if len(content) > MAX_COMMENT_LENGTH:
            raise InvalidError("Comment is too long", code="COMMENT_TOO_LONG")
        return content

