"""
Permission catalog, role grants, user overrides and effective permission resolution.

A user's effective permission set is:

1. every grant of every role the user is assigned, plus
2. every ALLOW override on the user,
3. minus any permission the user has a DENY override for.

Inactive and expired rows are left out unless asked for. Soft-deleted roles
never contribute.
"""
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.core.database.base import utcnow
from community_hub.core.database.repository import Repository
from community_hub.core.errors import ConflictError, NotFoundError
from community_hub.core.responses import Pagination
from community_hub.features.permissions.audit import create_audit_log
from community_hub.features.permissions.models import (
    OverrideType,
    Permission,
    PermissionScope,
    Role,
    RolePermission,
    UserPermissionOverride,
    UserRoleAssignment,
)
from community_hub.features.permissions.schemas import EffectivePermission
from community_hub.features.users.models import User
from community_hub.utils import get_logger


log = get_logger(__name__)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _value(item: Any) -> Any:
    return getattr(item, "value", item)


def _not_expired(column, now: datetime):
    return or_(column.is_(None), column > now)


class PermissionService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.permissions = Repository(session, Permission, conflict_message="Permission already exists")
        self.roles = Repository(session, Role)
        self.grants = Repository(
            session, RolePermission, conflict_message="Permission is already granted to this role"
        )
        self.overrides = Repository(
            session, UserPermissionOverride,
            conflict_message="An override already exists for this user and permission",
        )
        self.users = Repository(session, User)

    # ========================================================================
    # Catalog
    # ========================================================================

    async def create_permissions(self, items: Iterable[dict[str, Any]]) -> tuple[list[Permission], list[dict]]:
        """Create catalog entries; (module, action) pairs that already exist are skipped and returned as such."""
        created: list[Permission] = []
        skipped: list[dict] = []
        seen: set[tuple[str, str]] = set()
        for item in items:
            module, action = _value(item["module"]), _value(item["action"])
            if (module, action) in seen or await self.permissions.exists(module=module, action=action):
                skipped.append({"module": module, "action": action})
                continue
            seen.add((module, action))
            created.append(await self.permissions.create(
                module=module,
                action=action,
                description=item.get("description") or f"{action} permission for {module}",
                is_active=item.get("is_active", True),
            ))
        await self.session.commit()
        log.info("Created %d permissions, skipped %d existing", len(created), len(skipped))
        return created, skipped

    async def get_permission(self, permission_id: str) -> Permission:
        permission = await self.permissions.find_one(id=permission_id)
        if permission is None:
            raise NotFoundError(f"Permission with ID {permission_id} not found")
        return permission

    async def update_permission(self, permission_id: str, patch: dict[str, Any]) -> Permission:
        permission = await self.get_permission(permission_id)
        permission = await self.permissions.update(permission, **patch)
        await self.session.commit()
        return permission

    async def list_permissions(
        self,
        module: str | None = None,
        action: str | None = None,
        search: str | None = None,
        include_inactive: bool = False,
        page: int = 1,
        limit: int = 100,
    ) -> tuple[list[Permission], Pagination]:
        filters: dict[str, Any] = {}
        if module:
            filters["module"] = _value(module)
        if action:
            filters["action"] = _value(action)
        if not include_inactive:
            filters["is_active"] = True
        stmt = self.permissions.select(**filters)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(
                Permission.module.ilike(pattern),
                Permission.action.ilike(pattern),
                Permission.description.ilike(pattern),
            ))
        stmt = stmt.order_by(Permission.module, Permission.action)
        return await self.permissions.paginate(stmt, page, limit)

    # ========================================================================
    # Role grants
    # ========================================================================

    async def get_role(self, role_id: str, tenant_id: str) -> Role:
        role = await self.roles.find_one(id=role_id, tenant_id=tenant_id)
        if role is None:
            raise NotFoundError(f"Role with ID {role_id} not found")
        return role

    async def grant_permissions(
        self,
        role_id: str,
        permission_ids: Iterable[str],
        granted_by_id: str | None,
        branch_scope: PermissionScope = PermissionScope.ALL,
        department_scope: PermissionScope = PermissionScope.ALL,
        custom_conditions: dict[str, Any] | None = None,
        expires_at: datetime | None = None,
    ) -> list[RolePermission]:
        """
        Link permissions to a role inside the caller's transaction.

        Unknown permission ids and grants that are already active are skipped;
        an inactive grant for the same pair is reactivated with the new scope.
        Nothing is committed here.
        """
        wanted = list(dict.fromkeys(permission_ids))
        if not wanted:
            return []
        known = {p.id for p in await self.permissions.find_many(id=wanted)}
        existing = {g.permission_id: g for g in await self.grants.find_many(role_id=role_id, permission_id=wanted)}

        scope = {
            "branch_scope": branch_scope,
            "department_scope": department_scope,
            "custom_conditions": custom_conditions,
            "expires_at": as_utc(expires_at),
            "granted_by_id": granted_by_id,
        }
        granted = []
        for permission_id in wanted:
            if permission_id not in known:
                log.debug("Skipping unknown permission %s for role %s", permission_id, role_id)
                continue
            grant = existing.get(permission_id)
            if grant is None:
                granted.append(await self.grants.create(
                    role_id=role_id, permission_id=permission_id, is_active=True, **scope
                ))
            elif not grant.is_active:
                granted.append(await self.grants.update(grant, is_active=True, **scope))
        return granted

    async def sync_role_permissions(
        self, role_id: str, permission_ids: list[str], granted_by_id: str | None
    ) -> tuple[list[RolePermission], list[str]]:
        """Make the role's active grants equal ``permission_ids``; dropped grants are deactivated, not deleted."""
        active = await self.grants.find_many(role_id=role_id, is_active=True)
        active_ids = {g.permission_id for g in active}
        desired = list(dict.fromkeys(permission_ids))

        added = await self.grant_permissions(role_id, [pid for pid in desired if pid not in active_ids], granted_by_id)
        removed = sorted(active_ids - set(desired))
        if removed:
            await self.grants.update_many(
                role_id=role_id, permission_id=removed, values={"is_active": False}
            )
        return added, removed

    async def assign_permissions_to_role(
        self,
        role_id: str,
        tenant_id: str,
        permission_ids: list[str],
        acting_user_id: str | None,
        branch_scope: PermissionScope = PermissionScope.ALL,
        department_scope: PermissionScope = PermissionScope.ALL,
        custom_conditions: dict[str, Any] | None = None,
        expires_at: datetime | None = None,
    ) -> list[RolePermission]:
        role = await self.get_role(role_id, tenant_id)
        try:
            granted = await self.grant_permissions(
                role.id, permission_ids, acting_user_id,
                branch_scope=branch_scope,
                department_scope=department_scope,
                custom_conditions=custom_conditions,
                expires_at=expires_at,
            )
            await create_audit_log(
                self.session, acting_user_id, "grant", "role_permission", role_id, tenant_id,
                {"permission_ids": [g.permission_id for g in granted]},
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        log.info("Granted %d permissions to role %s", len(granted), role_id)
        return granted

    async def remove_permissions_from_role(
        self, role_id: str, tenant_id: str, permission_ids: list[str], acting_user_id: str | None
    ) -> int:
        role = await self.get_role(role_id, tenant_id)
        try:
            removed = await self.grants.delete_many(role_id=role.id, permission_id=list(permission_ids))
            await create_audit_log(
                self.session, acting_user_id, "revoke", "role_permission", role_id, tenant_id,
                {"permission_ids": list(permission_ids), "removed": removed},
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        log.info("Removed %d permissions from role %s", removed, role_id)
        return removed

    async def get_role_permission(self, grant_id: str, tenant_id: str) -> RolePermission:
        stmt = (
            select(RolePermission)
            .join(Role, Role.id == RolePermission.role_id)
            .where(RolePermission.id == grant_id, Role.tenant_id == tenant_id)
        )
        grant = (await self.session.execute(stmt)).scalars().first()
        if grant is None:
            raise NotFoundError(f"Role permission with ID {grant_id} not found")
        return grant

    async def update_role_permission_scope(
        self, grant_id: str, tenant_id: str, patch: dict[str, Any], acting_user_id: str | None
    ) -> RolePermission:
        grant = await self.get_role_permission(grant_id, tenant_id)
        if "expires_at" in patch:
            patch["expires_at"] = as_utc(patch["expires_at"])
        try:
            grant = await self.grants.update(grant, **patch)
            await create_audit_log(
                self.session, acting_user_id, "update", "role_permission", grant.id, tenant_id,
                {"fields": sorted(patch)},
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return grant

    async def list_role_permissions(
        self, role_id: str, tenant_id: str, include_inactive: bool = False
    ) -> list[Permission]:
        await self.get_role(role_id, tenant_id)
        stmt = (
            select(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id == role_id)
            .order_by(Permission.module, Permission.action)
        )
        if not include_inactive:
            stmt = stmt.where(RolePermission.is_active.is_(True), Permission.is_active.is_(True))
        return list((await self.session.execute(stmt)).scalars().all())

    # ========================================================================
    # User overrides
    # ========================================================================

    async def get_user(self, user_id: str, tenant_id: str) -> User:
        user = await self.users.find_one(id=user_id, tenant_id=tenant_id)
        if user is None:
            raise NotFoundError(f"User with ID {user_id} not found in this tenant")
        return user

    async def get_override(self, user_id: str, permission_id: str, tenant_id: str) -> UserPermissionOverride:
        await self.get_user(user_id, tenant_id)
        override = await self.overrides.find_one(user_id=user_id, permission_id=permission_id)
        if override is None:
            raise NotFoundError(f"No override of permission {permission_id} for user {user_id}")
        return override

    async def create_override(
        self,
        user_id: str,
        permission_id: str,
        tenant_id: str,
        acting_user_id: str | None,
        grant_type: OverrideType = OverrideType.ALLOW,
        reason: str | None = None,
        expires_at: datetime | None = None,
    ) -> UserPermissionOverride:
        """Create an override, or reactivate a previously removed one for the same pair."""
        await self.get_user(user_id, tenant_id)
        await self.get_permission(permission_id)

        values = {
            "grant_type": grant_type,
            "reason": reason,
            "expires_at": as_utc(expires_at),
            "granted_by_id": acting_user_id,
            "is_active": True,
        }
        existing = await self.overrides.find_one(user_id=user_id, permission_id=permission_id)
        if existing is not None and existing.is_active:
            raise ConflictError("An override already exists for this user and permission")
        try:
            if existing is None:
                override = await self.overrides.create(user_id=user_id, permission_id=permission_id, **values)
            else:
                override = await self.overrides.update(existing, **values)
            await create_audit_log(
                self.session, acting_user_id, "grant", "user_permission", override.id, tenant_id,
                {"user_id": user_id, "permission_id": permission_id, "grant_type": _value(grant_type)},
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        log.info("%s override of %s for user %s", _value(grant_type), permission_id, user_id)
        return override

    async def update_override(
        self, user_id: str, permission_id: str, tenant_id: str, patch: dict[str, Any], acting_user_id: str | None
    ) -> UserPermissionOverride:
        override = await self.get_override(user_id, permission_id, tenant_id)
        if "expires_at" in patch:
            patch["expires_at"] = as_utc(patch["expires_at"])
        try:
            override = await self.overrides.update(override, **patch)
            await create_audit_log(
                self.session, acting_user_id, "update", "user_permission", override.id, tenant_id,
                {"fields": sorted(patch)},
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return override

    async def remove_override(
        self, user_id: str, permission_id: str, tenant_id: str, acting_user_id: str | None
    ) -> UserPermissionOverride:
        """Deactivate the override; the row is kept for history."""
        return await self.update_override(user_id, permission_id, tenant_id, {"is_active": False}, acting_user_id)

    # ========================================================================
    # Resolution
    # ========================================================================

    async def get_effective_permissions(
        self,
        user_id: str,
        tenant_id: str,
        include_inactive: bool = False,
        include_expired: bool = False,
        module: str | None = None,
    ) -> list[EffectivePermission]:
        """
        Merge role grants and user overrides into the user's effective permissions.

        Args:
            include_inactive: also use inactive assignments, roles, grants,
                permissions and overrides
            include_expired: also use assignments, grants and overrides past
                their expires_at
            module: restrict the result to one permission module

        Returns:
            Role-derived entries followed by ALLOW override entries, without
            any permission the user holds an applicable DENY override for.
        """
        await self.get_user(user_id, tenant_id)
        now = utcnow()
        module = _value(module) if module else None

        role_stmt = (
            select(RolePermission, Permission, Role)
            .join(Permission, Permission.id == RolePermission.permission_id)
            .join(Role, Role.id == RolePermission.role_id)
            .join(UserRoleAssignment, UserRoleAssignment.role_id == Role.id)
            .where(
                UserRoleAssignment.user_id == user_id,
                Role.tenant_id == tenant_id,
                Role.is_deleted.is_(False),
            )
            .order_by(Role.hierarchy_level, Permission.module, Permission.action)
        )
        override_stmt = (
            select(
                UserPermissionOverride,
                Permission,
                and_(
                    UserPermissionOverride.is_active.is_(True),
                    _not_expired(UserPermissionOverride.expires_at, now),
                ).label("applicable"),
            )
            .join(Permission, Permission.id == UserPermissionOverride.permission_id)
            .where(UserPermissionOverride.user_id == user_id)
            .order_by(Permission.module, Permission.action)
        )
        if not include_inactive:
            role_stmt = role_stmt.where(
                UserRoleAssignment.is_active.is_(True),
                Role.is_active.is_(True),
                RolePermission.is_active.is_(True),
                Permission.is_active.is_(True),
            )
            override_stmt = override_stmt.where(
                UserPermissionOverride.is_active.is_(True),
                Permission.is_active.is_(True),
            )
        if not include_expired:
            role_stmt = role_stmt.where(
                _not_expired(UserRoleAssignment.expires_at, now),
                _not_expired(RolePermission.expires_at, now),
            )
            override_stmt = override_stmt.where(_not_expired(UserPermissionOverride.expires_at, now))
        if module:
            role_stmt = role_stmt.where(Permission.module == module)
            override_stmt = override_stmt.where(Permission.module == module)

        entries = [
            EffectivePermission(
                permission_id=permission.id,
                module=permission.module,
                action=permission.action,
                source="role",
                role_id=role.id,
                role_code=role.code,
                branch_scope=grant.branch_scope,
                department_scope=grant.department_scope,
                custom_conditions=grant.custom_conditions,
                expires_at=grant.expires_at,
                is_active=grant.is_active,
            )
            for grant, permission, role in (await self.session.execute(role_stmt)).all()
        ]

        denied = set()
        for override, permission, applicable in (await self.session.execute(override_stmt)).all():
            if override.grant_type == OverrideType.DENY:
                # the include flags only widen what is listed, never what is denied
                if applicable:
                    denied.add(permission.id)
                continue
            entries.append(EffectivePermission(
                permission_id=permission.id,
                module=permission.module,
                action=permission.action,
                source="override",
                override_id=override.id,
                expires_at=override.expires_at,
                is_active=override.is_active,
            ))

        return [entry for entry in entries if entry.permission_id not in denied]

    async def has_permission(self, user_id: str, tenant_id: str, module: str, action: str) -> bool:
        action = _value(action)
        entries = await self.get_effective_permissions(user_id, tenant_id, module=module)
        return any(entry.action == action for entry in entries)
