import uuid

import pytest

from taskboard.exceptions import ForbiddenError, InvalidReturnStageError, NotPendingError
from taskboard.models.enums import ApprovalStatus
from taskboard.models.project import Task
from taskboard.schemas.workflow import WorkflowStages
from taskboard.services.approval import ApprovalTransition, apply_stage_change

STAGES = WorkflowStages.default()


def fresh_task(status: ApprovalStatus = ApprovalStatus.NONE) -> Task:
    return Task(title="t", stage_id="todo", approval_status=status.value)


class TestApplyStageChange:
    def test_entering_terminal_requests_approval(self) -> None:
        task = fresh_task()
        actor = uuid.uuid4()
        assert apply_stage_change(task, STAGES, "review", "done", actor) == ApprovalTransition.SUBMITTED
        assert task.approval_status == ApprovalStatus.PENDING.value
        assert task.moved_to_done_by_id == actor
        assert task.moved_to_done_at is not None

    def test_creation_in_terminal_requests_approval(self) -> None:
        task = fresh_task()
        assert apply_stage_change(task, STAGES, None, "done", None) == ApprovalTransition.SUBMITTED

    def test_resubmitting_a_rejected_task_clears_the_reason(self) -> None:
        task = fresh_task(ApprovalStatus.REJECTED)
        task.rejection_reason = "missing tests"
        apply_stage_change(task, STAGES, "in_progress", "done", None)
        assert task.approval_status == ApprovalStatus.PENDING.value
        assert task.rejection_reason is None

    def test_leaving_terminal_withdraws_pending(self) -> None:
        task = fresh_task()
        apply_stage_change(task, STAGES, "review", "done", None)
        assert apply_stage_change(task, STAGES, "done", "review", None) == ApprovalTransition.WITHDRAWN
        assert task.approval_status == ApprovalStatus.NONE.value
        assert task.moved_to_done_at is None

    def test_approved_is_sticky(self) -> None:
        task = fresh_task(ApprovalStatus.APPROVED)
        assert apply_stage_change(task, STAGES, "done", "todo", None) is None
        assert apply_stage_change(task, STAGES, "todo", "done", None) is None
        assert task.approval_status == ApprovalStatus.APPROVED.value

    def test_moves_between_open_stages_change_nothing(self) -> None:
        task = fresh_task()
        assert apply_stage_change(task, STAGES, "todo", "review", None) is None
        assert task.approval_status == ApprovalStatus.NONE.value


async def test_approval_round_trip(project, make_task, commands_for, alice, bob) -> None:
    editor, owner = commands_for(bob), commands_for(alice)
    task = await make_task("Ship it", stage_id="in_progress")
    task_id, project_id, alice_id = task.id, project.id, alice.id

    result = await editor.move_task(task_id, "done")
    assert result.approval_transition == ApprovalTransition.SUBMITTED
    assert result.task.approval_status == ApprovalStatus.PENDING.value
    assert [t.id for t in await owner.pending_tasks(project_id)] == [task_id]
    assert await owner.pending_count(project_id) == 1

    with pytest.raises(ForbiddenError):
        await editor.approve(task_id)

    before = await owner.completed_count(project_id)
    approved = await owner.approve(task_id)
    assert approved.approval_status == ApprovalStatus.APPROVED.value
    assert approved.approved_by_id == alice_id
    assert approved.completed_at is not None
    assert await owner.completed_count(project_id) == before + 1

    # Moving an approved task back out does not reopen it
    moved_back = await owner.move_task(task_id, "todo")
    assert moved_back.task.approval_status == ApprovalStatus.APPROVED.value
    assert await owner.completed_count(project_id) == before + 1
    assert await owner.pending_tasks(project_id) == []


async def test_organization_completed_count(organization, make_task, commands_for, alice) -> None:
    owner = commands_for(alice)
    for title in ("one", "two"):
        task = await make_task(title, stage_id="done")
        await owner.approve(task.id)
    await make_task("three", stage_id="done")

    assert await owner.organization_completed_count(organization.id) == 2


async def test_approve_requires_pending(make_task, commands_for, alice) -> None:
    task = await make_task("Not yet")
    with pytest.raises(NotPendingError) as exc_info:
        await commands_for(alice).approve(task.id)
    assert exc_info.value.approval_status == ApprovalStatus.NONE.value


async def test_reject_returns_task_with_reason(db, project, make_task, commands_for, alice) -> None:
    owner = commands_for(alice)
    earlier = await make_task("Earlier", stage_id="in_progress")
    task = await make_task("Needs work", stage_id="done")

    result = await owner.reject(task.id, "in_progress", reason="Missing screenshots")

    assert result.from_stage_id == "done"
    assert result.warning is None
    rejected = result.task
    assert rejected.stage_id == "in_progress"
    assert rejected.approval_status == ApprovalStatus.REJECTED.value
    assert rejected.rejection_reason == "Missing screenshots"
    assert rejected.moved_to_done_at is None
    assert rejected.position == 1
    assert earlier.position == 0
    assert await owner.completed_count(project.id) == 0


async def test_reject_to_terminal_stage_is_refused(make_task, commands_for, alice) -> None:
    task = await make_task("Needs work", stage_id="done")
    with pytest.raises(InvalidReturnStageError):
        await commands_for(alice).reject(task.id, "done")


async def test_reject_warns_on_full_return_stage(project, make_task, commands_for, alice) -> None:
    owner = commands_for(alice)
    await owner.configure_stages(
        project.id,
        [
            {"id": "todo", "name": "To Do", "wip_limit": 1, "wip_limit_mode": "strict"},
            {"id": "done", "name": "Done", "is_done_stage": True},
        ],
    )
    await make_task("Occupant")
    task = await make_task("Submitted", stage_id="done")

    result = await owner.reject(task.id, "todo")

    assert result.task.stage_id == "todo"
    assert result.warning is not None
    assert result.warning.current_count == 1


async def test_reader_cannot_reject(make_task, commands_for, carol) -> None:
    task = await make_task("Submitted", stage_id="done")
    with pytest.raises(ForbiddenError):
        await commands_for(carol).reject(task.id, "todo")


async def test_pending_only_in_terminal_stage(db, project, make_task, commands_for, alice, bob) -> None:
    editor = commands_for(bob)
    tasks = [await make_task(f"t{i}") for i in range(4)]
    await editor.move_task(tasks[0].id, "done")
    await editor.move_task(tasks[1].id, "done")
    await editor.move_task(tasks[1].id, "review")
    await editor.move_task(tasks[2].id, "done")
    await commands_for(alice).approve(tasks[2].id)
    await editor.move_task(tasks[2].id, "in_progress")

    stages = await editor.get_stages(project.id)
    for task in tasks:
        loaded = await editor.get_task(task.id)
        if loaded.approval_status == ApprovalStatus.PENDING.value:
            assert stages.is_terminal(loaded.stage_id)
    assert [t.approval_status for t in tasks] == ["pending", "none", "approved", "none"]
