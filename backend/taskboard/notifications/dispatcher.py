"""Post-commit side effects.

Commands queue change-feed hints, emails and chat posts while they run and
call ``flush()`` once their transaction has committed. Every sink call is
bounded by a timeout; failures are logged and never reach the caller.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable
from uuid import UUID

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskboard.models.project import Task
from taskboard.notifications.base import ChatMessageData, ChatSink, EmailMessageData, EmailSink, SinkResult
from taskboard.notifications.chat import should_use_thread
from taskboard.notifications.feed import ChangeEvent, InMemoryChangeFeed
from taskboard.utils.time import utcnow

logger = structlog.get_logger()


@dataclass
class TaskChatPost:
    """A lifecycle post about one task."""

    task_id: UUID
    channel: str
    text: str
    thread_ref: str | None
    thread_started_at: datetime | None


class NotificationDispatcher:
    """Collects side effects for one command and runs them after commit."""

    def __init__(
        self,
        feed: InMemoryChangeFeed | None = None,
        email_sink: EmailSink | None = None,
        chat_sink: ChatSink | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        timeout: float = 10.0,
    ):
        self.feed = feed
        self.email_sink = email_sink
        self.chat_sink = chat_sink
        self.session_factory = session_factory
        self.timeout = timeout
        self._events: list[ChangeEvent] = []
        self._emails: list[EmailMessageData] = []
        self._chat_posts: list[TaskChatPost] = []

    # =========================================================================
    # Queueing
    # =========================================================================

    def publish(self, *events: ChangeEvent) -> None:
        self._events.extend(events)

    def email(self, message: EmailMessageData) -> None:
        self._emails.append(message)

    def task_chat(self, task: Task, channel: str | None, text: str) -> None:
        """Queue a lifecycle post; dropped when the project has no channel or chat is off."""
        if not channel or self.chat_sink is None:
            return
        self._chat_posts.append(
            TaskChatPost(
                task_id=task.id,
                channel=channel,
                text=text,
                thread_ref=task.chat_thread_ref,
                thread_started_at=task.chat_thread_started_at,
            )
        )

    def discard(self) -> None:
        """Forget queued effects after a rollback."""
        self._events.clear()
        self._emails.clear()
        self._chat_posts.clear()

    @property
    def pending(self) -> int:
        return len(self._events) + len(self._emails) + len(self._chat_posts)

    # =========================================================================
    # Delivery
    # =========================================================================

    async def flush(self) -> None:
        """Deliver everything queued so far. Never raises."""
        events, emails, posts = self._events, self._emails, self._chat_posts
        self._events, self._emails, self._chat_posts = [], [], []

        if self.feed is not None:
            for event in events:
                self.feed.publish(event)

        calls = [self._guard("email", lambda m=m: self.email_sink.send(m)) for m in emails if self.email_sink]
        calls += [self._deliver_chat(post) for post in posts]
        if calls:
            await asyncio.gather(*calls)

    async def _deliver_chat(self, post: TaskChatPost) -> None:
        now = utcnow()
        reuse = should_use_thread(post.thread_ref, post.thread_started_at, now)
        result = await self._guard(
            "chat",
            lambda: self.chat_sink.post(
                ChatMessageData(
                    channel=post.channel,
                    text=post.text,
                    thread_ref=post.thread_ref if reuse else None,
                )
            ),
        )
        if result is None or not result.success or reuse or not result.thread_ref:
            return
        await self._store_thread(post.task_id, result.thread_ref, now)

    async def _store_thread(self, task_id: UUID, thread_ref: str, started_at: datetime) -> None:
        """Remember the new thread on the task, in a unit of work of its own."""
        if self.session_factory is None:
            return
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(Task)
                    .where(Task.id == task_id)
                    .values(chat_thread_ref=thread_ref, chat_thread_started_at=started_at)
                )
                await session.commit()
        except Exception as e:
            logger.warning("chat_thread_store_failed", task_id=str(task_id), error=str(e))

    async def _guard(self, sink: str, call: Callable[[], Awaitable[SinkResult]]) -> SinkResult | None:
        try:
            result = await asyncio.wait_for(call(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("sink_timeout", sink=sink, timeout=self.timeout)
            return None
        except Exception as e:
            logger.error("sink_failed", sink=sink, error=str(e))
            return None
        if not result.success:
            logger.warning("sink_rejected", sink=sink, error=result.error)
        return result
