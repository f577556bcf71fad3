import uuid
from datetime import date

import pytest

from taskboard.exceptions import InvalidError, NestingTooDeepError, NotFoundError, UnknownStageError
from taskboard.services.activity import ActivityService


async def test_create_at_an_index(project, make_task) -> None:
    first = await make_task("first")
    second = await make_task("second")
    inserted = await make_task("inserted", index=0)

    assert (inserted.position, first.position, second.position) == (0, 1, 2)


async def test_create_in_unknown_stage(make_task) -> None:
    with pytest.raises(UnknownStageError):
        await make_task("lost", stage_id="archive")


async def test_update_task_fields(make_task, commands_for, bob) -> None:
    task = await make_task("Draft")
    task_id = task.id
    editor = commands_for(bob)

    updated = await editor.update_task(task_id, {"title": "Final", "priority": "high", "color": "#EF4444"})
    assert (updated.title, updated.priority, updated.color) == ("Final", "high", "#EF4444")
    assert updated.updated_by_id == bob.id

    with pytest.raises(InvalidError):
        await editor.update_task(task_id, {"stage_id": "done"})
    with pytest.raises(InvalidError):
        await editor.update_task(task_id, {"color": "#123456"})


async def test_subtasks_nest_one_level(make_task, commands_for, alice) -> None:
    owner = commands_for(alice)
    parent = await make_task("parent")
    child = await make_task("child", parent_task_id=parent.id)
    loose = await make_task("loose")
    parent_id, child_id, loose_id = parent.id, child.id, loose.id

    assert [t.id for t in await owner.subtasks(parent_id)] == [child_id]

    with pytest.raises(NestingTooDeepError):
        await owner.set_parent(loose_id, child_id)
    with pytest.raises(NestingTooDeepError):
        await owner.set_parent(parent_id, loose_id)
    with pytest.raises(InvalidError):
        await owner.set_parent(loose_id, loose_id)

    attached = await owner.set_parent(loose_id, parent_id)
    assert attached.parent_task_id == parent_id
    detached = await owner.set_parent(loose_id, None)
    assert detached.parent_task_id is None


async def test_deleting_a_task_closes_the_gap(db, project, make_task, commands_for, alice) -> None:
    a, b, c = [await make_task(name) for name in "abc"]
    await commands_for(alice).delete_task(b.id)
    board = await commands_for(alice).board(project.id)
    assert [(t.id, t.position) for t in board["todo"]] == [(a.id, 0), (c.id, 1)]


async def test_milestone_progress_counts_approved_tasks(project, make_task, commands_for, alice) -> None:
    owner = commands_for(alice)
    milestone = await owner.create_milestone(project.id, "Beta", date(2025, 3, 1))
    shipped = await make_task("shipped", stage_id="done", milestone_id=milestone.id)
    await make_task("waiting", stage_id="done", milestone_id=milestone.id)
    await make_task("open", milestone_id=milestone.id)
    await owner.approve(shipped.id)

    progress = await owner.milestone_progress(milestone.id)

    assert (progress.total_tasks, progress.completed_tasks, progress.percent) == (3, 1, 33)
    assert [m.id for m in await owner.project_milestones(project.id)] == [milestone.id]

    completed = await owner.set_milestone_completed(milestone.id, True)
    assert completed.completed_at is not None


async def test_unknown_milestone(make_task) -> None:
    with pytest.raises(NotFoundError):
        await make_task("orphan", milestone_id=uuid.uuid4())


async def test_activity_trail(db, project, make_task, commands_for, alice, bob) -> None:
    task = await make_task("Audit me")
    await commands_for(bob).move_task(task.id, "done")
    await commands_for(alice).approve(task.id)

    feed = await commands_for(alice).activity(project.id)
    assert {a.activity_type for a in feed} == {
        "task.created",
        "task.moved",
        "task.approval_requested",
        "task.approved",
    }

    history = await ActivityService(db).task_history(task.id)
    assert len(history) == 4
    assert all(a.target_title == "Audit me" for a in history)
