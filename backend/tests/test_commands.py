import pytest

from taskboard.exceptions import WIPLimitExceededError
from taskboard.notifications.feed import change


async def drain(subscription) -> list:
    return [event async for event in subscription]


async def test_successful_move_publishes_after_commit(
    project, make_task, commands_for, feed, chat_sink, alice, bob
) -> None:
    owner = commands_for(alice)
    task = await make_task("Ship it", stage_id="review")
    await owner.assign(task.id, bob.id)
    subscription = feed.subscribe(project_ids=[project.id], user_id=bob.id)

    await owner.move_task(task.id, "done")

    events = await drain(subscription)
    assert [(e.table, e.op) for e in events] == [("tasks", "update"), ("attention_items", "insert")]
    assert events[0].pk == str(task.id)
    assert events[1].user_id == str(bob.id)

    post = chat_sink.messages[-1]
    assert post.channel == "#launch"
    assert post.text == "Alice moved *Ship it* to Done\n*Ship it* is ready for approval"


async def test_failed_command_drops_queued_effects(
    project, make_task, commands_for, dispatcher, feed, chat_sink, alice
) -> None:
    owner = commands_for(alice)
    project_id = project.id
    await owner.configure_stages(
        project_id,
        [
            {"id": "todo", "name": "To Do"},
            {"id": "doing", "name": "Doing", "wip_limit": 1, "wip_limit_mode": "strict"},
            {"id": "done", "name": "Done", "is_done_stage": True},
        ],
    )
    await make_task("Busy", stage_id="doing")
    waiting = await make_task("Waiting")
    waiting_id = waiting.id
    posts = len(chat_sink.messages)
    subscription = feed.subscribe(project_ids=[project_id])

    dispatcher.publish(change("tasks", "update", waiting_id, project_id))
    with pytest.raises(WIPLimitExceededError):
        await owner.move_task(waiting_id, "doing")

    assert dispatcher.pending == 0
    assert await drain(subscription) == []
    assert len(chat_sink.messages) == posts


async def test_projects_without_a_channel_post_nothing(organization, commands_for, chat_sink, alice) -> None:
    owner = commands_for(alice)
    quiet = await owner.create_project(organization.id, "Quiet")
    task = await owner.create_task(quiet.id, "Silent")
    await owner.move_task(task.id, "done")
    await owner.approve(task.id)
    assert chat_sink.messages == []


async def test_approval_and_rejection_posts(make_task, commands_for, chat_sink, alice) -> None:
    owner = commands_for(alice)
    first = await make_task("First", stage_id="done")
    second = await make_task("Second", stage_id="done")

    await owner.approve(first.id)
    assert chat_sink.messages[-1].text == "Alice approved *First*"

    await owner.reject(second.id, "todo", reason="Needs tests")
    assert chat_sink.messages[-1].text == "Alice rejected *Second* and returned it to To Do\nReason: Needs tests"


async def test_creating_in_the_terminal_stage_asks_for_approval(make_task, chat_sink) -> None:
    await make_task("Already done", stage_id="done")
    assert chat_sink.messages[-1].text == (
        "Alice created task *Already done*\n*Already done* is ready for approval"
    )
