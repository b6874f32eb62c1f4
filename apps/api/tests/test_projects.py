import uuid
from datetime import date

import pytest
from sqlalchemy import select

from complisite.core.enums import OrgRole, ProjectMemberStatus, ProjectRole, ProjectStatus
from complisite.core.errors import AccessDenied, Conflict, NotFound, ValidationFailed
from complisite.db.models import ProjectMember
from complisite.services.projects import (
    add_project_member,
    apply_template,
    checklist_items,
    create_project,
    get_project,
    list_checklists,
    list_projects,
    list_templates,
    revoke_project_member,
    set_item_completion,
    update_compliance_score,
    update_project_status,
)
from complisite.services.stats import dashboard_stats


async def _site(factory):
    """An organization with an admin, a worker and one project."""
    admin = await factory.user()
    org = await factory.organization(admin)
    worker = await factory.user()
    await factory.member(org, worker, OrgRole.WORKER)
    project = await factory.project(org)
    return admin, worker, org, project


# ────────────────────────────────────────────────
# Projects
# ────────────────────────────────────────────────
async def test_creator_becomes_project_manager(db, factory):
    admin = await factory.user()
    org = await factory.organization(admin)

    project = await create_project(db, admin.id, org.id, "Harbour Tower", address="1 Quay St")
    assert project.status is ProjectStatus.PLANNING
    assert project.compliance_score == 0
    assert project.created_by == admin.id

    [member] = (await db.scalars(select(ProjectMember).where(ProjectMember.project_id == project.id))).all()
    assert member.user_id == admin.id
    assert member.role is ProjectRole.MANAGER


async def test_workers_cannot_create_projects(db, factory):
    _, worker, org, _ = await _site(factory)
    with pytest.raises(AccessDenied):
        await create_project(db, worker.id, org.id, "Rogue Site")


async def test_end_date_before_start_date_is_rejected(db, factory):
    admin = await factory.user()
    org = await factory.organization(admin)
    with pytest.raises(ValidationFailed):
        await create_project(
            db, admin.id, org.id, "Backwards", start_date=date(2025, 6, 1), end_date=date(2025, 5, 1)
        )


async def test_list_projects_only_shows_visible_ones(db, factory):
    admin, worker, org, project = await _site(factory)
    other = await factory.project(org, name="Depot Upgrade")
    await factory.project_member(other, worker)

    assert {p.id for p in await list_projects(db, admin.id)} == {project.id, other.id}
    assert [p.id for p in await list_projects(db, worker.id)] == [other.id]
    assert await list_projects(db, worker.id, organization_id=uuid.uuid4()) == []

    outsider = await factory.user()
    assert await list_projects(db, outsider.id) == []
    with pytest.raises(AccessDenied):
        await get_project(db, outsider.id, project.id)


async def test_status_change_requires_project_manager(db, factory):
    admin, worker, _, project = await _site(factory)
    await factory.project_member(project, worker, ProjectRole.MEMBER)

    with pytest.raises(AccessDenied):
        await update_project_status(db, worker.id, project.id, ProjectStatus.ACTIVE)

    updated = await update_project_status(db, admin.id, project.id, ProjectStatus.ACTIVE)
    assert updated.status is ProjectStatus.ACTIVE


@pytest.mark.parametrize("score", [-1, 101])
async def test_compliance_score_must_be_a_percentage(db, factory, score):
    admin, _, _, project = await _site(factory)
    with pytest.raises(ValidationFailed):
        await update_compliance_score(db, admin.id, project.id, score)


async def test_manual_score_override(db, factory):
    admin, _, _, project = await _site(factory)
    updated = await update_compliance_score(db, admin.id, project.id, 80)
    assert updated.compliance_score == 80


# ────────────────────────────────────────────────
# Project members
# ────────────────────────────────────────────────
async def test_add_and_revoke_project_member(db, factory):
    admin, worker, _, project = await _site(factory)

    member = await add_project_member(db, admin.id, project.id, worker.id, ProjectRole.MEMBER)
    assert member.status is ProjectMemberStatus.ACTIVE
    assert [p.id for p in await list_projects(db, worker.id)] == [project.id]

    revoked = await revoke_project_member(db, admin.id, project.id, worker.id)
    assert revoked.status is ProjectMemberStatus.REVOKED
    assert await list_projects(db, worker.id) == []

    # Re-adding re-activates the same row
    again = await add_project_member(db, admin.id, project.id, worker.id, ProjectRole.VIEWER)
    assert again.id == member.id
    assert again.status is ProjectMemberStatus.ACTIVE
    assert again.role is ProjectRole.VIEWER


async def test_project_members_must_belong_to_the_organization(db, factory):
    admin, _, _, project = await _site(factory)
    stranger = await factory.user()
    with pytest.raises(ValidationFailed):
        await add_project_member(db, admin.id, project.id, stranger.id)


async def test_revoking_an_inherited_manager_blocks_the_project(db, factory):
    admin, _, org, project = await _site(factory)
    manager = await factory.user()
    await factory.member(org, manager, OrgRole.MANAGER)

    await revoke_project_member(db, admin.id, project.id, manager.id)
    with pytest.raises(AccessDenied):
        await get_project(db, manager.id, project.id)


async def test_managers_cannot_revoke_themselves(db, factory):
    admin, _, _, project = await _site(factory)
    with pytest.raises(Conflict):
        await revoke_project_member(db, admin.id, project.id, admin.id)


# ────────────────────────────────────────────────
# Checklists
# ────────────────────────────────────────────────
async def test_list_templates_by_category(db, factory):
    await factory.template("Working at Heights", "safety")
    await factory.template("Asbestos Register", "environmental")

    assert [t.name for t in await list_templates(db)] == ["Asbestos Register", "Working at Heights"]
    assert [t.name for t in await list_templates(db, "safety")] == ["Working at Heights"]


async def test_template_can_only_be_applied_once(db, factory):
    admin, _, _, project = await _site(factory)
    template, _ = await factory.template()

    await apply_template(db, admin.id, project.id, template.id)
    with pytest.raises(Conflict):
        await apply_template(db, admin.id, project.id, template.id)
    with pytest.raises(NotFound):
        await apply_template(db, admin.id, project.id, uuid.uuid4())


async def test_completing_items_drives_the_score(db, factory):
    admin, worker, _, project = await _site(factory)
    await factory.project_member(project, worker, ProjectRole.MEMBER)
    template, items = await factory.template(items=4)
    applied = await apply_template(db, admin.id, project.id, template.id)

    completion = await set_item_completion(db, worker.id, applied.id, items[0].id, True, notes="Harness tagged")
    assert completion.completed_by == worker.id
    assert completion.completed_at is not None
    assert project.compliance_score == 25

    await set_item_completion(db, worker.id, applied.id, items[1].id, True)
    assert project.compliance_score == 50

    reopened = await set_item_completion(db, worker.id, applied.id, items[0].id, False)
    assert reopened.completed_by is None
    assert reopened.notes == "Harness tagged"
    assert project.compliance_score == 25

    [summary] = await list_checklists(db, admin.id, project.id)
    assert summary.total_items == 4
    assert summary.completed_items == 1

    views = await checklist_items(db, worker.id, applied.id)
    assert [v.id for v in views] == [i.id for i in items]
    assert [v.completed for v in views] == [False, True, False, False]


async def test_score_counts_every_applied_template(db, factory):
    admin, _, _, project = await _site(factory)
    heights, heights_items = await factory.template("Working at Heights", items=3)
    electrical, _ = await factory.template("Electrical", items=1)

    first = await apply_template(db, admin.id, project.id, heights.id)
    for item in heights_items:
        await set_item_completion(db, admin.id, first.id, item.id, True)
    assert project.compliance_score == 100

    await apply_template(db, admin.id, project.id, electrical.id)
    assert project.compliance_score == 75


async def test_manual_override_is_replaced_on_the_next_change(db, factory):
    admin, _, _, project = await _site(factory)
    template, items = await factory.template(items=4)
    applied = await apply_template(db, admin.id, project.id, template.id)

    await update_compliance_score(db, admin.id, project.id, 90)
    await set_item_completion(db, admin.id, applied.id, items[0].id, True)
    assert project.compliance_score == 25


async def test_items_from_another_template_are_not_found(db, factory):
    admin, _, _, project = await _site(factory)
    template, _ = await factory.template("Working at Heights")
    _, foreign_items = await factory.template("Confined Spaces")
    applied = await apply_template(db, admin.id, project.id, template.id)

    with pytest.raises(NotFound):
        await set_item_completion(db, admin.id, applied.id, foreign_items[0].id, True)
    with pytest.raises(NotFound):
        await set_item_completion(db, admin.id, uuid.uuid4(), foreign_items[0].id, True)


async def test_viewers_cannot_complete_items(db, factory):
    admin, worker, _, project = await _site(factory)
    await factory.project_member(project, worker, ProjectRole.VIEWER)
    template, items = await factory.template()
    applied = await apply_template(db, admin.id, project.id, template.id)

    assert len(await checklist_items(db, worker.id, applied.id)) == len(items)
    with pytest.raises(AccessDenied):
        await set_item_completion(db, worker.id, applied.id, items[0].id, True)


# ────────────────────────────────────────────────
# Dashboard
# ────────────────────────────────────────────────
async def test_dashboard_stats(db, factory):
    admin, worker, org, project = await _site(factory)
    await factory.project(org, name="Depot Upgrade")
    template, items = await factory.template(items=4)
    applied = await apply_template(db, admin.id, project.id, template.id)
    await set_item_completion(db, admin.id, applied.id, items[0].id, True)
    await set_item_completion(db, admin.id, applied.id, items[1].id, True)

    stats = await dashboard_stats(db, admin.id)
    assert stats.totalProjects == 2
    assert stats.activeChecklists == 1
    assert stats.averageCompliance == 25
    assert stats.pendingItems == 2

    # Workers see nothing until they join a project
    assert (await dashboard_stats(db, worker.id)).totalProjects == 0
