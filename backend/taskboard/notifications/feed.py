"""In-process change feed.

Events are hints: subscribers re-query canonical state and must tolerate
duplicates, gaps and reordering. Each subscriber has a bounded queue; when it
is full the oldest hint is dropped.
"""

import asyncio
from dataclasses import dataclass
from typing import Literal
from uuid import UUID

import structlog

logger = structlog.get_logger()

ChangeOp = Literal["insert", "update", "delete"]


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    op: ChangeOp
    pk: str
    project_id: str | None = None
    # Set for per-user rows such as attention items
    user_id: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "table": self.table,
            "op": self.op,
            "pk": self.pk,
            "project_id": self.project_id,
            "user_id": self.user_id,
        }


def change(
    table: str,
    op: ChangeOp,
    pk: UUID | str,
    project_id: UUID | str | None = None,
    user_id: UUID | str | None = None,
) -> ChangeEvent:
    return ChangeEvent(
        table=table,
        op=op,
        pk=str(pk),
        project_id=str(project_id) if project_id is not None else None,
        user_id=str(user_id) if user_id is not None else None,
    )


@dataclass(eq=False)
class Subscription:
    """Pull stream of change events for one consumer."""

    feed: "InMemoryChangeFeed"
    queue: asyncio.Queue
    idle_timeout: float | None
    project_ids: frozenset[str] | None = None
    user_id: str | None = None
    dropped: int = 0
    closed: bool = False

    def accepts(self, event: ChangeEvent) -> bool:
        """Per-user events reach only their user; project events reach watchers of the project."""
        if event.user_id is not None:
            return self.user_id is None or event.user_id == self.user_id
        if self.project_ids is None:
            return True
        return event.project_id is not None and event.project_id in self.project_ids

    async def next_event(self) -> ChangeEvent | None:
        """Wait for the next event; None after ``idle_timeout`` seconds without one."""
        if self.closed:
            return None
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=self.idle_timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.feed.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.next_event()
        if event is None:
            self.close()
            raise StopAsyncIteration
        return event


class InMemoryChangeFeed:
    """Fan-out of change events to in-process subscribers."""

    def __init__(self, queue_size: int = 256, idle_timeout: float | None = 300.0):
        self.queue_size = queue_size
        self.idle_timeout = idle_timeout
        self._subscribers: list[Subscription] = []

    def subscribe(
        self,
        project_ids: list[UUID] | None = None,
        user_id: UUID | None = None,
    ) -> Subscription:
        """Subscribe to events of the given projects (all when None) and of one user."""
        subscription = Subscription(
            feed=self,
            queue=asyncio.Queue(maxsize=self.queue_size),
            idle_timeout=self.idle_timeout,
            project_ids=frozenset(str(p) for p in project_ids) if project_ids is not None else None,
            user_id=str(user_id) if user_id is not None else None,
        )
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscribers):
            if not subscription.accepts(event):
                continue
            if subscription.queue.full():
                subscription.queue.get_nowait()
                subscription.dropped += 1
                logger.debug("change_event_dropped", table=event.table, dropped=subscription.dropped)
            subscription.queue.put_nowait(event)
