"""
Seed script to populate the permission catalog and default roles.

Run this script after database initialization to create:
- One permission per (module, action) pair
- The system roles for every active tenant
- Initial role-permission grants

Usage:
    python -m scripts.seed_permissions
"""
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.core.database.engine import AsyncSessionLocal, init_db
from community_hub.features.permissions.models import (
    Permission, PermissionAction, PermissionModule, Role, RolePermission, SystemRole,
)
from community_hub.features.tenants.models import Tenant
from community_hub.utils import format_readable_label, get_logger


log = get_logger(__name__)

READ_ONLY = [PermissionAction.READ]
EDITOR = [PermissionAction.CREATE, PermissionAction.READ, PermissionAction.UPDATE]
MANAGER = EDITOR + [PermissionAction.DELETE, PermissionAction.ARCHIVE, PermissionAction.EXPORT]

MEMBER_MODULES = [
    PermissionModule.MEMBERS,
    PermissionModule.MEMBER_REGISTRATION,
    PermissionModule.MEMBER_DIRECTORY,
    PermissionModule.MEMBER_PROFILE,
]
COMMUNITY_MODULES = [
    PermissionModule.COMMUNITIES,
    PermissionModule.CELL_MANAGEMENT,
    PermissionModule.MINISTRY_MANAGEMENT,
    PermissionModule.PROFESSION_MANAGEMENT,
    PermissionModule.TRIBE_MANAGEMENT,
    PermissionModule.COMMUNITY_LEADERSHIP,
]
ADMIN_MODULES = [
    PermissionModule.USER_MANAGEMENT,
    PermissionModule.ROLE_MANAGEMENT,
    PermissionModule.PERMISSION_MANAGEMENT,
    PermissionModule.BRANCH_MANAGEMENT,
    PermissionModule.AUDIT_LOGS,
    PermissionModule.SETTINGS,
]


# code -> (hierarchy level, description, {module: actions} or "ALL")
DEFAULT_ROLES = {
    SystemRole.SUPER_ADMIN: (0, "Full access to everything in the tenant", "ALL"),
    SystemRole.TENANT_ADMIN: (10, "Administers the tenant, its branches and its staff", {
        **{m: MANAGER for m in MEMBER_MODULES + COMMUNITY_MODULES + ADMIN_MODULES},
        PermissionModule.DEPARTMENTS: MANAGER,
        PermissionModule.EVENTS: MANAGER,
        PermissionModule.REPORTING: READ_ONLY + [PermissionAction.EXPORT],
        PermissionModule.DASHBOARD: READ_ONLY,
    }),
    SystemRole.PASTOR: (20, "Oversees members and communities", {
        **{m: MANAGER for m in MEMBER_MODULES + COMMUNITY_MODULES},
        PermissionModule.EVENTS: EDITOR + [PermissionAction.APPROVE, PermissionAction.PUBLISH],
        PermissionModule.REPORTING: READ_ONLY,
        PermissionModule.DASHBOARD: READ_ONLY,
    }),
    SystemRole.DEPARTMENT_HEAD: (30, "Runs a department", {
        PermissionModule.DEPARTMENTS: EDITOR,
        PermissionModule.MEMBERS: READ_ONLY,
        PermissionModule.MEMBER_DIRECTORY: READ_ONLY,
        PermissionModule.EVENTS: EDITOR,
        PermissionModule.DASHBOARD: READ_ONLY,
    }),
    SystemRole.COUNSELOR: (40, "Reads member profiles", {
        PermissionModule.MEMBERS: READ_ONLY,
        PermissionModule.MEMBER_PROFILE: READ_ONLY,
    }),
    SystemRole.VOLUNTEER_COORDINATOR: (50, "Coordinates volunteers across communities", {
        PermissionModule.MEMBERS: READ_ONLY,
        PermissionModule.COMMUNITIES: EDITOR,
        PermissionModule.EVENTS: EDITOR,
    }),
    SystemRole.WORKER: (60, "Registers members", {
        PermissionModule.MEMBERS: EDITOR,
        PermissionModule.MEMBER_REGISTRATION: EDITOR,
        PermissionModule.COMMUNITIES: READ_ONLY,
    }),
    SystemRole.MEMBER: (80, "Regular member", {
        PermissionModule.MEMBER_PROFILE: [PermissionAction.READ, PermissionAction.UPDATE],
        PermissionModule.COMMUNITIES: READ_ONLY,
        PermissionModule.EVENTS: READ_ONLY,
    }),
    SystemRole.GUEST: (100, "Visitor with read access to public information", {
        PermissionModule.EVENTS: READ_ONLY,
    }),
}


async def seed_permissions(db: AsyncSession) -> dict[tuple[str, str], Permission]:
    """
    Create the (module, action) permission catalog.

    Returns:
        Dictionary mapping (module, action) to Permission objects
    """
    log.info("Creating permission catalog...")
    result = await db.execute(select(Permission))
    permissions_map = {(p.module, p.action): p for p in result.scalars().all()}

    created = 0
    for module in PermissionModule:
        for action in PermissionAction:
            key = (module.value, action.value)
            if key in permissions_map:
                continue
            permission = Permission(
                module=module.value,
                action=action.value,
                description=f"{format_readable_label(action.value)} {format_readable_label(module.value).lower()}",
            )
            db.add(permission)
            permissions_map[key] = permission
            created += 1

    await db.commit()
    log.info("Created %d permissions (%d total)", created, len(permissions_map))
    return permissions_map


async def seed_roles(db: AsyncSession, tenant: Tenant, permissions_map: dict[tuple[str, str], Permission]):
    """
    Create the system roles of one tenant and grant their permissions.

    Roles are inserted directly: the reserved code cannot go through the role service.
    """
    result = await db.execute(select(Role.code).where(Role.tenant_id == tenant.id))
    existing = set(result.scalars().all())

    for code, (level, description, grants) in DEFAULT_ROLES.items():
        if code.value in existing:
            log.debug("Role %s already exists for tenant %s, skipping", code.value, tenant.id)
            continue

        role = Role(
            tenant_id=tenant.id,
            name=format_readable_label(code.value),
            code=code.value,
            description=description,
            hierarchy_level=level,
            is_system=True,
        )
        db.add(role)
        await db.flush()

        if grants == "ALL":
            permissions = list(permissions_map.values())
        else:
            permissions = [
                permissions_map[(module.value, action.value)]
                for module, actions in grants.items()
                for action in actions
            ]
        for permission in permissions:
            db.add(RolePermission(role_id=role.id, permission_id=permission.id))
        log.info("Created role %s for tenant %s with %d permissions", code.value, tenant.id, len(permissions))

    await db.commit()


async def main():
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            permissions_map = await seed_permissions(db)

            result = await db.execute(select(Tenant).where(Tenant.is_active.is_(True)))
            for tenant in result.scalars().all():
                await seed_roles(db, tenant, permissions_map)

            log.info("Permission seeding completed successfully!")
        except Exception:
            log.exception("Error seeding permissions")
            await db.rollback()
            raise


if __name__ == "__main__":
    asyncio.run(main())
