from datetime import date, datetime, timezone

import pytest
from sqlalchemy import func, select

from taskboard.exceptions import InvalidError, NotFoundError
from taskboard.models.attention import AttentionItem, Mention
from taskboard.models.enums import AttentionPriority, AttentionType
from taskboard.services.attention import AttentionService


async def items_for(db, user_id, attention_type: AttentionType | None = None) -> list[AttentionItem]:
    query = select(AttentionItem).where(AttentionItem.user_id == user_id)
    if attention_type is not None:
        query = query.where(AttentionItem.attention_type == attention_type.value)
    result = await db.execute(query.order_by(AttentionItem.created_at))
    return list(result.scalars().all())


# =============================================================================
# Upsert rules
# =============================================================================


async def test_repeated_event_refreshes_the_live_item(db, alice, bob) -> None:
    service = AttentionService(db)
    first = await service.upsert(bob.id, AttentionType.COMMENT, "first", "k:1", actor_user_id=alice.id)
    second = await service.upsert(bob.id, AttentionType.COMMENT, "second", "k:1", actor_user_id=alice.id)

    assert first.id == second.id
    assert second.title == "second"
    assert len(await items_for(db, bob.id)) == 1


async def test_actor_is_never_notified(db, alice) -> None:
    service = AttentionService(db)
    assert await service.upsert(alice.id, AttentionType.COMMENT, "self", "k:1", actor_user_id=alice.id) is None
    assert await service.notify([alice.id], AttentionType.COMMENT, "self", "k:2", actor_user_id=alice.id) == []
    assert await items_for(db, alice.id) == []


async def test_dismissed_item_is_replaced_by_a_fresh_one(db, alice, bob) -> None:
    service = AttentionService(db)
    item = await service.upsert(bob.id, AttentionType.ASSIGNMENT, "assigned", "assignment:x", actor_user_id=alice.id)
    await service.dismiss(item.id, bob.id)

    fresh = await service.upsert(bob.id, AttentionType.ASSIGNMENT, "assigned", "assignment:x", actor_user_id=alice.id)

    assert fresh.id != item.id
    live = [i for i in await items_for(db, bob.id) if i.dismissed_at is None]
    assert [i.id for i in live] == [fresh.id]


async def test_priority_follows_type(db, alice, bob) -> None:
    service = AttentionService(db)
    overdue = await service.upsert(bob.id, AttentionType.OVERDUE, "late", "overdue:1")
    unassigned = await service.upsert(bob.id, AttentionType.UNASSIGNMENT, "bye", "unassignment:1")
    assert overdue.priority == AttentionPriority.URGENT.value
    assert unassigned.priority == AttentionPriority.LOW.value


@pytest.mark.parametrize("dedup_key", ["", "x" * 201, "é" * 101])
async def test_dedup_key_must_fit(db, bob, dedup_key) -> None:
    with pytest.raises(InvalidError):
        await AttentionService(db).upsert(bob.id, AttentionType.COMMENT, "t", dedup_key)


async def test_notify_deduplicates_recipients(db, alice, bob, carol) -> None:
    items = await AttentionService(db).notify(
        [bob.id, carol.id, bob.id, alice.id],
        AttentionType.STATUS_CHANGE,
        "moved",
        "status:1:done",
        actor_user_id=alice.id,
    )
    assert sorted(i.user_id for i in items) == sorted([bob.id, carol.id])


# =============================================================================
# Domain events through the command facade
# =============================================================================


async def test_comment_mentions(db, make_task, commands_for, alice, bob, carol) -> None:
    task = await make_task("Review copy")
    author = commands_for(carol)

    comment = await author.add_comment(task.id, "Hi @alice and @bob, @alice please review @nobody")

    assert comment.mentions == [str(alice.id), str(bob.id)]
    alice_mentions = await items_for(db, alice.id, AttentionType.MENTION)
    assert [i.dedup_key for i in alice_mentions] == [f"mention:{comment.id}:{alice.id}"]
    assert alice_mentions[0].priority == AttentionPriority.URGENT.value
    assert len(await items_for(db, bob.id, AttentionType.MENTION)) == 1
    assert await items_for(db, carol.id) == []
    # Alice created the task, so she also hears about the comment itself
    assert len(await items_for(db, alice.id, AttentionType.COMMENT)) == 1

    await author.edit_comment(comment.id, "Hi @alice and @bob, @alice please review again")

    assert len(await items_for(db, alice.id, AttentionType.MENTION)) == 1
    mentions = await db.execute(select(func.count(Mention.id)).where(Mention.comment_id == comment.id))
    assert mentions.scalar_one() == 2


async def test_mentions_of_non_members_are_dropped(db, make_task, make_user, commands_for, alice) -> None:
    outsider = await make_user("dave")
    task = await make_task()
    comment = await commands_for(alice).add_comment(task.id, "cc @dave")

    assert comment.mentions == []
    assert await items_for(db, outsider.id) == []


async def test_assignment_and_status_change(db, make_task, commands_for, alice, bob) -> None:
    owner = commands_for(alice)
    task = await make_task("Fix login")

    await owner.assign(task.id, bob.id)
    assignment_items = await items_for(db, bob.id, AttentionType.ASSIGNMENT)
    assert [i.dedup_key for i in assignment_items] == [f"assignment:{task.id}"]
    assert assignment_items[0].body == "Alice assigned you to this task"

    await owner.move_task(task.id, "in_progress")
    status_items = await items_for(db, bob.id, AttentionType.STATUS_CHANGE)
    assert [i.dedup_key for i in status_items] == [f"status:{task.id}:in_progress"]

    # Bob moving his own task notifies nobody
    await commands_for(bob).move_task(task.id, "review")
    assert len(await items_for(db, bob.id, AttentionType.STATUS_CHANGE)) == 1
    assert await items_for(db, alice.id) == []

    assert await owner.unassign(task.id, bob.id)
    assert len(await items_for(db, bob.id, AttentionType.UNASSIGNMENT)) == 1


async def test_assigning_a_non_member_is_refused(make_task, make_user, commands_for, alice) -> None:
    outsider = await make_user("erin")
    task = await make_task()
    with pytest.raises(InvalidError):
        await commands_for(alice).assign(task.id, outsider.id)


async def test_rejection_tells_assignees_where_the_task_went(db, make_task, commands_for, alice, bob) -> None:
    owner = commands_for(alice)
    task = await make_task("Fix login")
    await owner.assign(task.id, bob.id)
    await owner.move_task(task.id, "done")

    await owner.reject(task.id, "in_progress", reason="needs tests")

    status_items = await items_for(db, bob.id, AttentionType.STATUS_CHANGE)
    assert {i.dedup_key for i in status_items} == {f"status:{task.id}:done", f"status:{task.id}:in_progress"}
    returned = next(i for i in status_items if i.dedup_key.endswith(":in_progress"))
    assert returned.body == "Alice moved this task to In Progress"


async def test_editing_out_a_mention_withdraws_it(db, make_task, commands_for, alice, bob, carol) -> None:
    task = await make_task()
    author = commands_for(carol)
    comment = await author.add_comment(task.id, "@alice and @bob take a look")
    comment_id = comment.id

    await author.edit_comment(comment_id, "@alice take a look")

    assert await items_for(db, bob.id, AttentionType.MENTION) == []
    assert len(await items_for(db, alice.id, AttentionType.MENTION)) == 1
    remaining = await db.execute(select(Mention.mentioned_user_id).where(Mention.comment_id == comment_id))
    assert list(remaining.scalars()) == [alice.id]


async def test_org_admins_can_be_assigned_and_mentioned(
    db, organization, make_task, make_user, commands_for, alice, carol
) -> None:
    admin = await make_user("frank")
    editor = await make_user("gina")
    admin_id, editor_id = admin.id, editor.id
    owner = commands_for(alice)
    await owner.add_organization_member(organization.id, admin_id, "admin")
    await owner.add_organization_member(organization.id, editor_id, "editor")
    task = await make_task()
    task_id = task.id

    await owner.assign(task_id, admin_id)
    comment = await commands_for(carol).add_comment(task_id, "@frank over to you, cc @gina")

    assert comment.mentions == [str(admin_id)]
    assert len(await items_for(db, admin_id, AttentionType.MENTION)) == 1
    assert len(await items_for(db, admin_id, AttentionType.ASSIGNMENT)) == 1

    # Organization editors do not inherit project access
    with pytest.raises(InvalidError):
        await owner.assign(task_id, editor_id)


# =============================================================================
# Due date sweep
# =============================================================================


async def test_due_date_sweep(db, make_task, commands_for, alice, bob) -> None:
    owner = commands_for(alice)
    soon = await make_task("Soon", due_date=date(2025, 1, 11))
    late = await make_task("Late", due_date=date(2025, 1, 9))
    later = await make_task("Later", due_date=date(2025, 1, 20))
    done = await make_task("Done", due_date=date(2025, 1, 9), stage_id="done")
    for task in (soon, late, later, done):
        await owner.assign(task.id, bob.id)
    await owner.approve(done.id)

    service = AttentionService(db)
    now = datetime(2025, 1, 10, 12, tzinfo=timezone.utc)
    assert await service.sweep_due_dates(now=now, window_hours=24) == 2
    await db.commit()

    keys = {i.dedup_key for i in await items_for(db, bob.id)}
    assert f"due_soon:{soon.id}:2025-01-11" in keys
    assert f"overdue:{late.id}:2025-01-09" in keys
    assert not any(key.endswith(f"{later.id}:2025-01-20") for key in keys)
    assert not any(str(done.id) in key and key.startswith("overdue") for key in keys)

    before = len(await items_for(db, bob.id))
    await service.sweep_due_dates(now=now, window_hours=24)
    assert len(await items_for(db, bob.id)) == before


# =============================================================================
# Inbox operations
# =============================================================================


async def test_inbox_operations(db, make_task, commands_for, alice, bob) -> None:
    owner, inbox = commands_for(alice), commands_for(bob)
    first, second = await make_task("first"), await make_task("second")
    await owner.assign(first.id, bob.id)
    await owner.assign(second.id, bob.id)
    await owner.add_comment(first.id, "@bob can you look?")

    # Two assignments, the comment itself and the mention
    assert await inbox.unread_count() == 4
    assert len(await inbox.inbox("assignments")) == 2
    mentions = await inbox.inbox("mentions")
    assert len(mentions) == 1

    newest = mentions[0]
    await inbox.mark_read(newest.id)
    assert await inbox.unread_count() == 3
    assert len(await inbox.inbox("unread")) == 3

    assert await inbox.mark_all_read() == 3
    assert await inbox.unread_count() == 0

    dismissed = await inbox.dismiss(newest.id)
    assert dismissed.dismissed_at is not None
    assert newest.id not in [i.id for i in await inbox.inbox()]

    remaining = (await inbox.inbox())[0]
    actioned = await inbox.mark_actioned(remaining.id)
    assert actioned.actioned_at is not None
    assert actioned.read_at is not None


async def test_items_of_other_users_are_hidden(db, alice, bob) -> None:
    service = AttentionService(db)
    item = await service.upsert(bob.id, AttentionType.COMMENT, "t", "k:1")
    with pytest.raises(NotFoundError):
        await service.mark_read(item.id, alice.id)
