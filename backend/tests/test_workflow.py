import pytest
from sqlalchemy import select

from taskboard.exceptions import (
    ForbiddenError,
    StageConfigInvalidError,
    StageInUseByTasksError,
    UnknownStageError,
    WIPLimitExceededError,
)
from taskboard.models.enums import ApprovalStatus
from taskboard.models.project import Task

SCENARIO_STAGES = [
    {"id": "s1", "name": "Todo"},
    {"id": "s2", "name": "Doing", "wip_limit": 2, "wip_limit_mode": "strict"},
    {"id": "s3", "name": "Done", "is_done_stage": True},
]


async def column(db, project_id, stage_id) -> list[Task]:
    result = await db.execute(
        select(Task)
        .where(Task.project_id == project_id, Task.stage_id == stage_id)
        .order_by(Task.position)
    )
    return list(result.scalars().all())


async def test_new_tasks_are_appended_to_the_first_stage(db, project, make_task) -> None:
    tasks = [await make_task(f"Task {i}") for i in range(3)]

    assert [t.stage_id for t in tasks] == ["todo"] * 3
    assert [t.position for t in await column(db, project.id, "todo")] == [0, 1, 2]
    assert all(t.approval_status == ApprovalStatus.NONE.value for t in tasks)


async def test_move_keeps_both_columns_dense(db, project, make_task, commands_for, bob) -> None:
    first, second, third = [await make_task(f"Task {i}") for i in range(3)]
    editor = commands_for(bob)

    await editor.move_task(third.id, "in_progress")
    result = await editor.move_task(first.id, "in_progress", index=0)

    assert result.moved
    assert result.from_stage_id == "todo"
    todo = await column(db, project.id, "todo")
    doing = await column(db, project.id, "in_progress")
    assert [t.id for t in todo] == [second.id]
    assert [t.position for t in todo] == [0]
    assert [t.id for t in doing] == [first.id, third.id]
    assert [t.position for t in doing] == [0, 1]


async def test_reorder_within_stage(db, project, make_task, commands_for, bob) -> None:
    a, b, c = [await make_task(name) for name in "abc"]

    await commands_for(bob).reorder_task(c.id, 0)

    assert [t.id for t in await column(db, project.id, "todo")] == [c.id, a.id, b.id]


async def test_move_to_same_stage_is_a_no_op(make_task, commands_for, bob) -> None:
    task = await make_task()
    result = await commands_for(bob).move_task(task.id, "todo")
    assert not result.moved
    assert result.warning is None


async def test_move_to_unknown_stage(make_task, commands_for, bob) -> None:
    task = await make_task()
    with pytest.raises(UnknownStageError):
        await commands_for(bob).move_task(task.id, "archived")


async def test_reader_cannot_move(make_task, commands_for, carol) -> None:
    task = await make_task()
    with pytest.raises(ForbiddenError):
        await commands_for(carol).move_task(task.id, "in_progress")


async def test_strict_limit_rejects_then_warning_mode_allows(
    db, project, make_task, commands_for, alice
) -> None:
    owner = commands_for(alice)
    project_id = project.id
    await owner.configure_stages(project_id, [{"id": "todo", "name": "To Do"}, *SCENARIO_STAGES])
    t1, t2, t3 = [await make_task(f"t{i}", stage_id="s1") for i in range(1, 4)]
    t3_id = t3.id
    await owner.move_task(t1.id, "s2")
    await owner.move_task(t2.id, "s2")

    # The failed command rolls back, which expires every loaded row
    with pytest.raises(WIPLimitExceededError) as exc_info:
        await owner.move_task(t3_id, "s2")
    assert exc_info.value.limit == 2
    assert exc_info.value.current == 2
    assert [t.id for t in await column(db, project_id, "s1")] == [t3_id]

    relaxed = [dict(s) for s in SCENARIO_STAGES]
    relaxed[1]["wip_limit_mode"] = "warning"
    await owner.configure_stages(project_id, [{"id": "todo", "name": "To Do"}, *relaxed])

    result = await owner.move_task(t3_id, "s2")
    assert result.moved
    assert result.warning is not None
    assert (result.warning.stage_id, result.warning.limit, result.warning.current_count) == ("s2", 2, 2)


async def test_subtasks_do_not_count_against_wip(db, project, make_task, commands_for, alice) -> None:
    owner = commands_for(alice)
    await owner.configure_stages(project.id, [{"id": "todo", "name": "To Do"}, *SCENARIO_STAGES])
    parent = await make_task("Parent", stage_id="s2")
    await make_task("Other", stage_id="s2")
    child = await make_task("Child", parent_task_id=parent.id, stage_id="s1")

    result = await owner.move_task(child.id, "s2")

    assert result.moved
    assert result.warning is None
    counts = await owner.stage_counts(project.id)
    assert counts == {"todo": 0, "s1": 0, "s2": 2, "s3": 0}


async def test_removing_a_stage_that_holds_tasks(project, make_task, commands_for, alice) -> None:
    await make_task("Stuck", stage_id="review")
    stages = [
        {"id": "todo", "name": "To Do"},
        {"id": "in_progress", "name": "In Progress"},
        {"id": "done", "name": "Done", "is_done_stage": True},
    ]
    with pytest.raises(StageInUseByTasksError) as exc_info:
        await commands_for(alice).configure_stages(project.id, stages)
    assert exc_info.value.stage_ids == ["review"]


async def test_empty_stages_can_be_removed(project, commands_for, alice) -> None:
    owner = commands_for(alice)
    configured = await owner.configure_stages(
        project.id,
        [{"id": "todo", "name": "To Do"}, {"id": "done", "name": "Done", "is_done_stage": True}],
    )
    assert configured.ids == ["todo", "done"]
    assert (await owner.get_stages(project.id)).ids == ["todo", "done"]


async def test_invalid_configuration_leaves_stages_untouched(project, commands_for, alice) -> None:
    owner = commands_for(alice)
    project_id = project.id
    with pytest.raises(StageConfigInvalidError):
        await owner.configure_stages(project_id, [{"id": "todo", "name": "To Do"}])
    assert (await owner.get_stages(project_id)).terminal.id == "done"


async def test_editor_cannot_configure_stages(project, commands_for, bob) -> None:
    with pytest.raises(ForbiddenError):
        await commands_for(bob).configure_stages(project.id, [{"id": "x", "name": "X", "is_done_stage": True}])


async def test_changing_terminal_stage_rederives_approval(project, make_task, commands_for, alice) -> None:
    owner = commands_for(alice)
    waiting = await make_task("Waiting", stage_id="done")
    in_review = await make_task("In review", stage_id="review")
    assert waiting.approval_status == ApprovalStatus.PENDING.value

    await owner.configure_stages(
        project.id,
        [
            {"id": "todo", "name": "To Do"},
            {"id": "in_progress", "name": "In Progress"},
            {"id": "review", "name": "Review", "is_done_stage": True},
            {"id": "done", "name": "Archive"},
        ],
    )

    assert (await owner.get_task(waiting.id)).approval_status == ApprovalStatus.NONE.value
    assert (await owner.get_task(in_review.id)).approval_status == ApprovalStatus.PENDING.value


async def test_board_groups_tasks_in_stage_order(project, make_task, commands_for, carol) -> None:
    a = await make_task("a")
    b = await make_task("b", stage_id="review")
    board = await commands_for(carol).board(project.id)
    assert list(board) == ["todo", "in_progress", "review", "done"]
    assert [t.id for t in board["todo"]] == [a.id]
    assert [t.id for t in board["review"]] == [b.id]
