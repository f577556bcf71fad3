import pytest
from sqlalchemy import func, select

from taskboard.exceptions import (
    ConflictError,
    DuplicateMemberError,
    ForbiddenError,
    LastOwnerError,
    NotFoundError,
)
from taskboard.models.attention import AttentionItem
from taskboard.models.project import Task, TaskComment


async def count(db, model, **filters) -> int:
    query = select(func.count()).select_from(model)
    for column, value in filters.items():
        query = query.where(getattr(model, column) == value)
    result = await db.execute(query)
    return result.scalar_one()


# =============================================================================
# Organizations
# =============================================================================


async def test_creator_owns_the_organization(organization, commands_for, alice) -> None:
    owner = commands_for(alice)
    members = await owner.organization_members(organization.id)
    assert [(m.user_id, m.role) for m in members] == [(alice.id, "owner")]
    assert [o.id for o in await owner.my_organizations()] == [organization.id]


async def test_slug_must_be_unique(organization, commands_for, bob) -> None:
    with pytest.raises(ConflictError):
        await commands_for(bob).create_organization("Other Acme", "acme")


async def test_last_owner_cannot_leave_or_step_down(organization, commands_for, alice, bob) -> None:
    owner = commands_for(alice)
    organization_id, alice_id, bob_id = organization.id, alice.id, bob.id

    with pytest.raises(LastOwnerError):
        await owner.remove_organization_member(organization_id, alice_id)
    with pytest.raises(LastOwnerError):
        await owner.update_organization_member(organization_id, alice_id, "admin")

    await owner.add_organization_member(organization_id, bob_id, "owner")
    demoted = await owner.update_organization_member(organization_id, alice_id, "admin")
    assert demoted.role == "admin"


async def test_duplicate_member(organization, commands_for, alice, bob) -> None:
    owner = commands_for(alice)
    organization_id, bob_id = organization.id, bob.id
    await owner.add_organization_member(organization_id, bob_id)
    with pytest.raises(DuplicateMemberError):
        await owner.add_organization_member(organization_id, bob_id, "editor")


async def test_reader_cannot_add_members(organization, commands_for, alice, bob, carol) -> None:
    await commands_for(alice).add_organization_member(organization.id, bob.id)
    with pytest.raises(ForbiddenError):
        await commands_for(bob).add_organization_member(organization.id, carol.id)


async def test_members_may_leave(organization, commands_for, alice, bob) -> None:
    await commands_for(alice).add_organization_member(organization.id, bob.id, "editor")
    await commands_for(bob).remove_organization_member(organization.id, bob.id)
    assert [m.user_id for m in await commands_for(alice).organization_members(organization.id)] == [alice.id]


# =============================================================================
# Project access
# =============================================================================


async def test_organization_admin_inherits_project_access(
    project, organization, make_user, commands_for, alice
) -> None:
    dave = await make_user("dave")
    erin = await make_user("erin")
    owner = commands_for(alice)
    await owner.add_organization_member(organization.id, dave.id, "admin")
    await owner.add_organization_member(organization.id, erin.id, "editor")
    admin, editor = commands_for(dave), commands_for(erin)

    assert (await admin.get_project(project.id)).id == project.id
    configured = await admin.configure_stages(
        project.id,
        [
            {"id": "todo", "name": "To Do"},
            {"id": "in_progress", "name": "In Progress"},
            {"id": "review", "name": "Review"},
            {"id": "done", "name": "Shipped", "is_done_stage": True},
        ],
    )
    assert configured.terminal.name == "Shipped"

    # Organization editors only see projects they are members of
    with pytest.raises(NotFoundError):
        await editor.get_project(project.id)


async def test_outsider_sees_nothing(project, make_user, commands_for) -> None:
    outsider = commands_for(await make_user("mallory"))
    with pytest.raises(NotFoundError):
        await outsider.get_project(project.id)
    assert await outsider.my_projects() == []


async def test_project_members(project, commands_for, alice, bob, carol) -> None:
    owner = commands_for(alice)
    project_id, bob_id = project.id, bob.id
    roles = {m.user_id: m.role for m in await owner.project_members(project_id)}
    assert roles == {alice.id: "owner", bob.id: "editor", carol.id: "reader"}

    with pytest.raises(DuplicateMemberError):
        await owner.add_project_member(project_id, bob_id)

    promoted = await owner.update_project_member(project_id, bob_id, "admin")
    assert promoted.role == "admin"

    await owner.remove_project_member(project_id, bob_id)
    assert bob_id not in {m.user_id for m in await owner.project_members(project_id)}


async def test_update_project_requires_admin(project, commands_for, alice, bob) -> None:
    owner, editor = commands_for(alice), commands_for(bob)
    project_id = project.id
    with pytest.raises(ForbiddenError):
        await editor.update_project(project_id, name="Renamed")

    updated = await owner.update_project(project_id, name="Renamed", chat_channel="#renamed")
    assert updated.name == "Renamed"
    assert updated.chat_channel == "#renamed"


async def test_deleting_a_project_removes_everything_it_owns(
    db, project, make_task, commands_for, alice, bob
) -> None:
    owner = commands_for(alice)
    task = await make_task("Doomed")
    await owner.assign(task.id, bob.id)
    await owner.add_comment(task.id, "@bob see this")
    project_id = project.id
    assert await count(db, AttentionItem, project_id=project_id) > 0

    with pytest.raises(ForbiddenError):
        await commands_for(bob).delete_project(project_id)

    await owner.delete_project(project_id)

    assert await count(db, Task, project_id=project_id) == 0
    assert await count(db, TaskComment, project_id=project_id) == 0
    assert await count(db, AttentionItem, project_id=project_id) == 0
    assert await owner.my_projects() == []
