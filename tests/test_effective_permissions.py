"""Tests for effective permission resolution and the permission catalog."""

from datetime import timedelta

import pytest

from community_hub.core.database.base import utcnow
from community_hub.core.errors import ConflictError, NotFoundError
from community_hub.features.permissions.models import (
    OverrideType,
    PermissionAction,
    PermissionModule,
    UserRoleAssignment,
)
from community_hub.features.permissions.roles import RoleService
from community_hub.features.permissions.service import PermissionService
from tests.factories import make_permission, make_role, make_user


async def _assign(session, user, role, **values) -> UserRoleAssignment:
    assignment = UserRoleAssignment(user_id=user.id, role_id=role.id, **values)
    session.add(assignment)
    await session.commit()
    return assignment


def _pairs(entries) -> list[tuple[str, str, str]]:
    return sorted((e.module, e.action, e.source) for e in entries)


@pytest.fixture
def service(session) -> PermissionService:
    return PermissionService(session)


@pytest.mark.asyncio
async def test_union_of_roles_and_allow_overrides(session, service, tenant, user) -> None:
    read = await make_permission(session, "MEMBERS", "READ")
    create = await make_permission(session, "MEMBERS", "CREATE")
    export = await make_permission(session, "REPORTING", "EXPORT")
    usher = await make_role(session, tenant, "USHER", hierarchy_level=70)
    clerk = await make_role(session, tenant, "CLERK", hierarchy_level=60)
    await service.grant_permissions(usher.id, [read.id], None)
    await service.grant_permissions(clerk.id, [read.id, create.id], None)
    await session.commit()
    await _assign(session, user, usher)
    await _assign(session, user, clerk)
    await service.create_override(user.id, export.id, tenant.id, None)

    entries = await service.get_effective_permissions(user.id, tenant.id)

    assert _pairs(entries) == [
        ("MEMBERS", "CREATE", "role"),
        ("MEMBERS", "READ", "role"),
        ("MEMBERS", "READ", "role"),
        ("REPORTING", "EXPORT", "override"),
    ]
    # Most privileged role first
    assert entries[0].role_code == "CLERK"
    assert entries[-1].source == "override"


@pytest.mark.asyncio
async def test_inactive_rows_are_excluded_unless_requested(session, service, tenant, user) -> None:
    read = await make_permission(session, "MEMBERS", "READ")
    retired = await make_permission(session, "EVENTS", "READ", is_active=False)
    role = await make_role(session, tenant, "USHER")
    idle = await make_role(session, tenant, "IDLE", is_active=False)
    await service.grant_permissions(role.id, [read.id, retired.id], None)
    await service.grant_permissions(idle.id, [read.id], None)
    await session.commit()
    await _assign(session, user, role)
    await _assign(session, user, idle)

    assert _pairs(await service.get_effective_permissions(user.id, tenant.id)) == [("MEMBERS", "READ", "role")]
    assert _pairs(await service.get_effective_permissions(user.id, tenant.id, include_inactive=True)) == [
        ("EVENTS", "READ", "role"),
        ("MEMBERS", "READ", "role"),
        ("MEMBERS", "READ", "role"),
    ]


@pytest.mark.asyncio
async def test_deactivated_assignment_and_deleted_role_contribute_nothing(session, service, tenant, user) -> None:
    read = await make_permission(session, "MEMBERS", "READ")
    role = await make_role(session, tenant, "USHER")
    await service.grant_permissions(role.id, [read.id], None)
    await session.commit()
    await _assign(session, user, role)
    roles = RoleService(session, permissions=service)

    assert await service.has_permission(user.id, tenant.id, PermissionModule.MEMBERS, PermissionAction.READ)

    await roles.unassign_role_from_user(user.id, role.id, tenant.id, None)
    assert await service.get_effective_permissions(user.id, tenant.id) == []

    await roles.assign_role_to_user(user.id, role.id, tenant.id, None)
    await roles.delete_role(role.id, None, tenant.id)
    assert await service.get_effective_permissions(user.id, tenant.id, include_inactive=True) == []


@pytest.mark.asyncio
async def test_expired_rows_are_excluded_unless_requested(session, service, tenant, user) -> None:
    read = await make_permission(session, "MEMBERS", "READ")
    export = await make_permission(session, "MEMBERS", "EXPORT")
    role = await make_role(session, tenant, "USHER")
    await service.grant_permissions(role.id, [read.id], None, expires_at=utcnow() - timedelta(days=1))
    await session.commit()
    await _assign(session, user, role)
    await service.create_override(user.id, export.id, tenant.id, None, expires_at=utcnow() + timedelta(days=1))

    assert _pairs(await service.get_effective_permissions(user.id, tenant.id)) == [("MEMBERS", "EXPORT", "override")]
    assert _pairs(await service.get_effective_permissions(user.id, tenant.id, include_expired=True)) == [
        ("MEMBERS", "EXPORT", "override"),
        ("MEMBERS", "READ", "role"),
    ]


@pytest.mark.asyncio
async def test_deny_override_removes_permission(session, service, tenant, user) -> None:
    read = await make_permission(session, "MEMBERS", "READ")
    create = await make_permission(session, "MEMBERS", "CREATE")
    role = await make_role(session, tenant, "USHER")
    await service.grant_permissions(role.id, [read.id, create.id], None)
    await session.commit()
    await _assign(session, user, role)

    await service.create_override(user.id, create.id, tenant.id, None, grant_type=OverrideType.DENY, reason="probation")

    assert _pairs(await service.get_effective_permissions(user.id, tenant.id)) == [("MEMBERS", "READ", "role")]
    assert not await service.has_permission(user.id, tenant.id, "MEMBERS", "CREATE")

    await service.remove_override(user.id, create.id, tenant.id, None)
    assert await service.has_permission(user.id, tenant.id, "MEMBERS", "CREATE")


@pytest.mark.asyncio
async def test_lapsed_deny_overrides_do_not_hide_permissions(session, service, tenant, user) -> None:
    read = await make_permission(session, "MEMBERS", "READ")
    create = await make_permission(session, "MEMBERS", "CREATE")
    role = await make_role(session, tenant, "USHER")
    await service.grant_permissions(role.id, [read.id, create.id], None)
    await session.commit()
    await _assign(session, user, role)

    await service.create_override(user.id, read.id, tenant.id, None, grant_type=OverrideType.DENY)
    await service.remove_override(user.id, read.id, tenant.id, None)
    await service.create_override(
        user.id, create.id, tenant.id, None, grant_type=OverrideType.DENY, expires_at=utcnow() - timedelta(days=1)
    )

    granted = [("MEMBERS", "CREATE", "role"), ("MEMBERS", "READ", "role")]
    assert _pairs(await service.get_effective_permissions(user.id, tenant.id)) == granted
    assert _pairs(await service.get_effective_permissions(user.id, tenant.id, include_inactive=True)) == granted
    assert _pairs(await service.get_effective_permissions(user.id, tenant.id, include_expired=True)) == granted
    assert _pairs(
        await service.get_effective_permissions(user.id, tenant.id, include_inactive=True, include_expired=True)
    ) == granted


@pytest.mark.asyncio
async def test_module_filter(session, service, tenant, user) -> None:
    read = await make_permission(session, "MEMBERS", "READ")
    events = await make_permission(session, "EVENTS", "READ")
    role = await make_role(session, tenant, "USHER")
    await service.grant_permissions(role.id, [read.id, events.id], None)
    await session.commit()
    await _assign(session, user, role)

    entries = await service.get_effective_permissions(user.id, tenant.id, module=PermissionModule.EVENTS)

    assert [(e.module, e.action) for e in entries] == [("EVENTS", "READ")]


@pytest.mark.asyncio
async def test_user_of_another_tenant_is_not_found(session, service, tenant) -> None:
    stranger = await make_user(session, None, "stranger@example.com")

    with pytest.raises(NotFoundError):
        await service.get_effective_permissions(stranger.id, tenant.id)


@pytest.mark.asyncio
async def test_override_lifecycle(session, service, tenant, user) -> None:
    read = await make_permission(session, "MEMBERS", "READ")

    override = await service.create_override(user.id, read.id, tenant.id, None)
    with pytest.raises(ConflictError):
        await service.create_override(user.id, read.id, tenant.id, None)

    await service.remove_override(user.id, read.id, tenant.id, None)
    again = await service.create_override(user.id, read.id, tenant.id, None, grant_type=OverrideType.DENY)

    assert again.id == override.id
    assert again.grant_type == OverrideType.DENY
    assert again.is_active is True


@pytest.mark.asyncio
async def test_catalog_skips_existing_pairs(session, service) -> None:
    await make_permission(session, "MEMBERS", "READ")

    created, skipped = await service.create_permissions([
        {"module": PermissionModule.MEMBERS, "action": PermissionAction.READ},
        {"module": PermissionModule.MEMBERS, "action": PermissionAction.CREATE},
        {"module": "MEMBERS", "action": "CREATE"},
    ])

    assert [(p.module, p.action) for p in created] == [("MEMBERS", "CREATE")]
    assert created[0].description == "CREATE permission for MEMBERS"
    assert skipped == [
        {"module": "MEMBERS", "action": "READ"},
        {"module": "MEMBERS", "action": "CREATE"},
    ]

    rows, pagination = await service.list_permissions(module="MEMBERS", search="create")
    assert [p.action for p in rows] == ["CREATE"]
    assert pagination.total == 1
