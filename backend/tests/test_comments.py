import pytest

from taskboard.exceptions import ForbiddenError, InvalidError, NotFoundError


async def test_reader_can_comment(make_task, commands_for, carol) -> None:
    task = await make_task()
    reader = commands_for(carol)

    comment = await reader.add_comment(task.id, "  Looks good  ")

    assert comment.content == "Looks good"
    assert [c.id for c in await reader.task_comments(task.id)] == [comment.id]


@pytest.mark.parametrize("content", ["", "   ", "x" * 10_001])
async def test_invalid_comment_content(make_task, commands_for, bob, content) -> None:
    task = await make_task()
    editor = commands_for(bob)
    with pytest.raises(InvalidError):
        await editor.add_comment(task.id, content)


async def test_only_the_author_edits(make_task, commands_for, alice, bob) -> None:
    task = await make_task()
    owner, editor = commands_for(alice), commands_for(bob)
    comment = await editor.add_comment(task.id, "first draft")
    comment_id = comment.id

    with pytest.raises(ForbiddenError):
        await owner.edit_comment(comment_id, "hijacked")

    edited = await editor.edit_comment(comment_id, "second draft")
    assert edited.content == "second draft"
    assert edited.edited_at is not None


async def test_delete_own_or_as_admin(make_task, commands_for, alice, bob, carol) -> None:
    task = await make_task()
    task_id = task.id
    owner, editor, reader = commands_for(alice), commands_for(bob), commands_for(carol)
    mine = await editor.add_comment(task_id, "mine")
    other = await editor.add_comment(task_id, "other")
    mine_id, other_id = mine.id, other.id

    with pytest.raises(ForbiddenError):
        await reader.delete_comment(other_id)

    await editor.delete_comment(mine_id)
    await owner.delete_comment(other_id)
    assert await owner.task_comments(task_id) == []

    with pytest.raises(NotFoundError):
        await owner.delete_comment(other_id)


async def test_outsider_cannot_read_comments(make_task, make_user, commands_for) -> None:
    task = await make_task()
    outsider = commands_for(await make_user("mallory"))
    with pytest.raises(NotFoundError):
        await outsider.task_comments(task.id)
