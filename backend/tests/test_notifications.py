import asyncio
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from taskboard.models.project import Task
from taskboard.notifications.base import ChatMessageData, ChatSink, EmailMessageData, EmailSink, SinkResult
from taskboard.notifications.chat import should_use_thread, task_event_text
from taskboard.notifications.dispatcher import NotificationDispatcher
from taskboard.notifications.feed import InMemoryChangeFeed, change


class SlowChatSink(ChatSink):
    async def post(self, message: ChatMessageData) -> SinkResult:
        await asyncio.sleep(1)
        return SinkResult(success=True)


class BrokenEmailSink(EmailSink):
    async def send(self, message: EmailMessageData) -> SinkResult:
        raise ConnectionError("relay down")


def message(to: str = "alice@example.com") -> EmailMessageData:
    return EmailMessageData(to=to, subject="s", html="<p>h</p>", text="t")


# =============================================================================
# Change feed
# =============================================================================


async def drain(subscription) -> list:
    return [event async for event in subscription]


async def test_feed_routes_by_project_and_user() -> None:
    feed = InMemoryChangeFeed(idle_timeout=0.01)
    watched, other = uuid.uuid4(), uuid.uuid4()
    me, someone_else = uuid.uuid4(), uuid.uuid4()
    subscription = feed.subscribe(project_ids=[watched], user_id=me)

    feed.publish(change("tasks", "update", "1", watched))
    feed.publish(change("tasks", "update", "2", other))
    feed.publish(change("attention_items", "insert", "3", user_id=me))
    feed.publish(change("attention_items", "insert", "4", user_id=someone_else))

    assert [e.pk for e in await drain(subscription)] == ["1", "3"]


async def test_full_queue_drops_the_oldest_event() -> None:
    feed = InMemoryChangeFeed(queue_size=2, idle_timeout=0.01)
    subscription = feed.subscribe()

    for pk in "abc":
        feed.publish(change("tasks", "insert", pk, uuid.uuid4()))

    assert subscription.dropped == 1
    assert [e.pk for e in await drain(subscription)] == ["b", "c"]


async def test_idle_subscription_closes(feed) -> None:
    subscription = feed.subscribe()
    assert feed.subscriber_count == 1

    assert await drain(subscription) == []

    assert subscription.closed
    assert feed.subscriber_count == 0
    assert await subscription.next_event() is None


def test_event_payload() -> None:
    project_id = uuid.uuid4()
    event = change("tasks", "delete", "42", project_id)
    assert event.to_dict() == {
        "table": "tasks",
        "op": "delete",
        "pk": "42",
        "project_id": str(project_id),
        "user_id": None,
    }


# =============================================================================
# Dispatcher
# =============================================================================


async def test_sink_failures_never_reach_the_caller(make_task) -> None:
    task = await make_task("Slow")
    dispatcher = NotificationDispatcher(
        email_sink=BrokenEmailSink(), chat_sink=SlowChatSink(), timeout=0.01
    )
    dispatcher.email(message())
    dispatcher.task_chat(task, "#launch", "hello")

    await dispatcher.flush()

    assert dispatcher.pending == 0


async def test_discard_forgets_everything(dispatcher, feed, email_sink) -> None:
    subscription = feed.subscribe()
    dispatcher.publish(change("tasks", "insert", "1", uuid.uuid4()))
    dispatcher.email(message())
    assert dispatcher.pending == 2

    dispatcher.discard()
    await dispatcher.flush()

    assert dispatcher.pending == 0
    assert email_sink.outbox == []
    assert await drain(subscription) == []


async def test_chat_is_skipped_without_a_channel(make_task, dispatcher, chat_sink) -> None:
    task = await make_task()
    before = len(chat_sink.messages)
    dispatcher.task_chat(task, None, "nobody listens")
    await dispatcher.flush()
    assert len(chat_sink.messages) == before


async def test_chat_threads_are_reused_within_a_day(make_task, session_factory, dispatcher, chat_sink) -> None:
    # Creating the task posts the first message and stores its thread
    created = await make_task("Threaded")
    assert chat_sink.messages[-1].thread_ref is None
    first_ref = f"{len(chat_sink.messages)}.000000"

    async with session_factory() as session:
        task = (await session.execute(select(Task).where(Task.id == created.id))).scalar_one()
    assert task.chat_thread_ref == first_ref

    dispatcher.task_chat(task, "#launch", "same day")
    await dispatcher.flush()
    assert chat_sink.messages[-1].thread_ref == first_ref

    task.chat_thread_started_at = datetime.now(timezone.utc) - timedelta(days=1)
    dispatcher.task_chat(task, "#launch", "next day")
    await dispatcher.flush()
    assert chat_sink.messages[-1].thread_ref is None

    async with session_factory() as session:
        stored = await session.execute(select(Task.chat_thread_ref).where(Task.id == created.id))
    assert stored.scalar_one() == f"{len(chat_sink.messages)}.000000"


def test_should_use_thread() -> None:
    started = datetime(2025, 1, 6, 23, 30, tzinfo=timezone.utc)
    assert should_use_thread("1.0", started, started + timedelta(minutes=20))
    assert not should_use_thread("1.0", started, started + timedelta(minutes=40))
    assert not should_use_thread(None, started, started)
    assert not should_use_thread("1.0", None, started)
    # Naive timestamps from the store are read as UTC
    assert should_use_thread("1.0", started.replace(tzinfo=None), started)


def test_task_event_text() -> None:
    assert task_event_text("moved", "Ship", "Alice", stage="Review") == "Alice moved *Ship* to Review"
    assert task_event_text("rejected", "Ship", "Alice", stage="To Do", reason="No tests") == (
        "Alice rejected *Ship* and returned it to To Do\nReason: No tests"
    )
