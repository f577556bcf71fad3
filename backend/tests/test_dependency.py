import pytest

from taskboard.exceptions import (
    CircularDependencyError,
    DuplicateDependencyError,
    ForbiddenError,
    SelfDependencyError,
)
from taskboard.models.enums import DependencyType


async def test_cycle_is_rejected_and_blocking_clears_on_approval(make_task, commands_for, alice) -> None:
    owner = commands_for(alice)
    a, b, c = [await make_task(name) for name in "abc"]
    a_id, b_id, c_id = a.id, b.id, c.id

    await owner.add_dependency(a_id, b_id)
    await owner.add_dependency(b_id, c_id)
    with pytest.raises(CircularDependencyError):
        await owner.add_dependency(c_id, a_id)
    assert await owner.would_create_cycle(c_id, a_id)
    assert not await owner.would_create_cycle(a_id, c_id)

    assert await owner.is_blocked(b_id)
    await owner.move_task(a_id, "done")
    assert await owner.is_blocked(b_id), "pending approval does not unblock"
    await owner.approve(a_id)
    assert not await owner.is_blocked(b_id)
    assert await owner.is_blocked(c_id)


async def test_approved_blocker_outside_terminal_still_blocks(make_task, commands_for, alice) -> None:
    owner = commands_for(alice)
    blocker = await make_task("blocker", stage_id="done")
    blocked = await make_task("blocked")
    await owner.add_dependency(blocker.id, blocked.id)
    await owner.approve(blocker.id)
    assert not await owner.is_blocked(blocked.id)

    await owner.move_task(blocker.id, "review")

    blockers = await owner.blockers(blocked.id)
    assert [(b.task.id, b.is_complete) for b in blockers] == [(blocker.id, False)]
    assert await owner.is_blocked(blocked.id)


async def test_self_dependency(make_task, commands_for, alice) -> None:
    task = await make_task()
    with pytest.raises(SelfDependencyError):
        await commands_for(alice).add_dependency(task.id, task.id)


async def test_duplicate_dependency(make_task, commands_for, alice) -> None:
    owner = commands_for(alice)
    a, b = await make_task("a"), await make_task("b")
    await owner.add_dependency(a.id, b.id)
    with pytest.raises(DuplicateDependencyError):
        await owner.add_dependency(a.id, b.id)


async def test_reader_cannot_add_dependency(make_task, commands_for, carol) -> None:
    a, b = await make_task("a"), await make_task("b")
    with pytest.raises(ForbiddenError):
        await commands_for(carol).add_dependency(a.id, b.id)


async def test_edges_and_queries(project, make_task, commands_for, alice, bob) -> None:
    editor = commands_for(bob)
    a, b, c = [await make_task(name) for name in "abc"]

    edge = await editor.add_dependency(a.id, c.id, dependency_type="start_to_start", lag_days=2)
    await editor.add_dependency(b.id, c.id)
    assert edge.dependency_type == DependencyType.START_TO_START.value
    assert edge.lag_days == 2

    assert [blk.task.id for blk in await editor.blockers(c.id)] == [a.id, b.id]
    assert [bt.task.id for bt in await editor.blocked_tasks(a.id)] == [c.id]
    assert len(await editor.project_dependencies(project.id)) == 2

    updated = await editor.update_dependency(edge.id, lag_days=5)
    assert updated.lag_days == 5

    assert await editor.remove_dependency(a.id, c.id)
    assert not await editor.remove_dependency(a.id, c.id)
    assert [blk.task.id for blk in await editor.blockers(c.id)] == [b.id]


async def test_critical_path_is_a_topological_order(project, make_task, commands_for, alice) -> None:
    owner = commands_for(alice)
    design, build, test, docs = [await make_task(name) for name in ("design", "build", "test", "docs")]
    await owner.add_dependency(test.id, docs.id)
    await owner.add_dependency(design.id, build.id)
    await owner.add_dependency(build.id, test.id)

    ordered = [task.id for task in await owner.critical_path(project.id)]

    assert ordered == [design.id, build.id, test.id, docs.id]


async def test_critical_path_skips_subtasks(project, make_task, commands_for, alice) -> None:
    parent = await make_task("parent")
    await make_task("child", parent_task_id=parent.id)

    ordered = await commands_for(alice).critical_path(project.id)

    assert [task.id for task in ordered] == [parent.id]


async def test_deleting_a_task_removes_its_edges(project, make_task, commands_for, alice) -> None:
    owner = commands_for(alice)
    a, b = await make_task("a"), await make_task("b")
    await owner.add_dependency(a.id, b.id)

    await owner.delete_task(a.id)

    assert await owner.project_dependencies(project.id) == []
    assert not await owner.is_blocked(b.id)
