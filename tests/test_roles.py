"""Tests for role management and user role assignments."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from community_hub.core.database.base import utcnow
from community_hub.core.errors import BadRequestError, ConflictError, ForbiddenError
from community_hub.features.permissions.models import AuditLog, RolePermission, UserRoleAssignment
from community_hub.features.permissions.roles import RoleService
from tests.factories import make_permission, make_role, make_user


@pytest.mark.asyncio
async def test_reserved_code_cannot_be_created(session, tenant, user) -> None:
    with pytest.raises(ForbiddenError) as exc:
        await RoleService(session).create_role({"name": "Root", "code": "SUPER_ADMIN"}, user.id, tenant.id)

    assert exc.value.message == "SUPER_ADMIN role cannot be created"


@pytest.mark.asyncio
async def test_non_system_role_needs_positive_level(session, tenant, user) -> None:
    with pytest.raises(BadRequestError) as exc:
        await RoleService(session).create_role(
            {"name": "Boss", "code": "BOSS", "hierarchy_level": 0}, user.id, tenant.id
        )

    assert exc.value.message == "Non-system roles must have hierarchy level greater than 0"


@pytest.mark.asyncio
async def test_create_role_grants_known_permissions_and_audits(session, tenant, user) -> None:
    read = await make_permission(session, "MEMBERS", "READ")
    service = RoleService(session)

    role = await service.create_role(
        {"name": "Usher", "code": "USHER", "hierarchy_level": 70, "permission_ids": [read.id, "unknown"]},
        user.id,
        tenant.id,
    )

    grants = await service.active_grants(role.id)
    assert [g.permission_id for g in grants] == [read.id]
    result = await session.execute(select(AuditLog).where(AuditLog.resource_id == role.id))
    entry = result.scalars().one()
    assert entry.action == "create"
    assert entry.details["permission_ids"] == [read.id]

    with pytest.raises(ConflictError):
        await service.create_role({"name": "Usher 2", "code": "USHER"}, user.id, tenant.id)


@pytest.mark.asyncio
async def test_update_role_replaces_active_grants(session, tenant, user) -> None:
    read = await make_permission(session, "MEMBERS", "READ")
    create = await make_permission(session, "MEMBERS", "CREATE")
    export = await make_permission(session, "MEMBERS", "EXPORT")
    service = RoleService(session)
    role = await service.create_role(
        {"name": "Usher", "code": "USHER", "permission_ids": [read.id, create.id]}, user.id, tenant.id
    )

    await service.update_role(role.id, {"name": "Head usher", "permission_ids": [read.id, export.id]}, user.id, tenant.id)

    assert {g.permission_id for g in await service.active_grants(role.id)} == {read.id, export.id}
    result = await session.execute(
        select(RolePermission).where(RolePermission.role_id == role.id, RolePermission.permission_id == create.id)
    )
    assert result.scalars().one().is_active is False

    # Re-granting a deactivated pair flips the existing row back on
    updated = await service.update_role(role.id, {"permission_ids": [read.id, create.id]}, user.id, tenant.id)
    assert updated.name == "Head usher"
    result = await session.execute(select(RolePermission).where(RolePermission.role_id == role.id))
    rows = {g.permission_id: g.is_active for g in result.scalars().all()}
    assert rows == {read.id: True, create.id: True, export.id: False}


@pytest.mark.asyncio
async def test_update_role_rejects_zero_level(session, tenant, user) -> None:
    role = await make_role(session, tenant, "USHER")

    with pytest.raises(BadRequestError):
        await RoleService(session).update_role(role.id, {"hierarchy_level": 0}, user.id, tenant.id)


@pytest.mark.asyncio
async def test_delete_role_deactivates_grants_and_assignments(session, tenant, user) -> None:
    read = await make_permission(session, "MEMBERS", "READ")
    holder = await make_user(session, tenant, "holder@example.com")
    service = RoleService(session)
    role = await service.create_role({"name": "Usher", "code": "USHER", "permission_ids": [read.id]}, user.id, tenant.id)
    await service.assign_role_to_user(holder.id, role.id, tenant.id, user.id)

    deleted = await service.delete_role(role.id, user.id, tenant.id)

    assert deleted.is_deleted is True
    assert deleted.deleted_by_id == user.id
    grants = (await session.execute(select(RolePermission).where(RolePermission.role_id == role.id))).scalars().all()
    assignments = (
        await session.execute(select(UserRoleAssignment).where(UserRoleAssignment.role_id == role.id))
    ).scalars().all()
    assert [g.is_active for g in grants] == [False]
    assert [a.is_active for a in assignments] == [False]
    assert await service.roles.find_one(id=role.id) is None
    assert await service.list_user_roles(holder.id, tenant.id) == []


@pytest.mark.asyncio
async def test_assignment_lifecycle(session, tenant, user) -> None:
    holder = await make_user(session, tenant, "holder@example.com")
    role = await make_role(session, tenant, "USHER")
    service = RoleService(session)

    assignment = await service.assign_role_to_user(holder.id, role.id, tenant.id, user.id)
    with pytest.raises(ConflictError):
        await service.assign_role_to_user(holder.id, role.id, tenant.id, user.id)

    await service.unassign_role_from_user(holder.id, role.id, tenant.id, user.id)
    assert await service.list_user_roles(holder.id, tenant.id) == []

    expires = utcnow() + timedelta(days=30)
    again = await service.assign_role_to_user(holder.id, role.id, tenant.id, user.id, expires_at=expires)
    assert again.id == assignment.id
    assert again.is_active is True
    assert [r.id for r in await service.list_user_roles(holder.id, tenant.id)] == [role.id]


@pytest.mark.asyncio
async def test_inactive_role_cannot_be_assigned(session, tenant, user) -> None:
    role = await make_role(session, tenant, "USHER", is_active=False)

    with pytest.raises(BadRequestError):
        await RoleService(session).assign_role_to_user(user.id, role.id, tenant.id, user.id)


@pytest.mark.asyncio
async def test_hierarchy_filters(session, tenant) -> None:
    await make_role(session, tenant, "SUPER_ADMIN", hierarchy_level=0, is_system=True)
    await make_role(session, tenant, "USHER", hierarchy_level=70)
    await make_role(session, tenant, "GREETER", hierarchy_level=80, is_active=False)
    service = RoleService(session)

    assert [r.code for r in await service.get_role_hierarchy(tenant.id)] == ["SUPER_ADMIN", "USHER"]
    assert [r.code for r in await service.get_role_hierarchy(tenant.id, include_system=False)] == ["USHER"]
    assert [r.code for r in await service.get_role_hierarchy(tenant.id, include_inactive=True)] == [
        "SUPER_ADMIN", "USHER", "GREETER",
    ]

    rows, pagination = await service.list_roles(tenant.id, search="ush")
    assert [r.code for r in rows] == ["USHER"]
    assert pagination.total == 1
