"""
Role management: roles, their permission links and user assignments.

Role writes that touch several tables (role + grants, role + grants +
assignments on delete) run in one transaction together with their audit entry.
"""
from datetime import datetime
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.core import config
from community_hub.core.database.base import utcnow
from community_hub.core.database.repository import Repository, transaction
from community_hub.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from community_hub.core.responses import Pagination
from community_hub.features.permissions.audit import create_audit_log
from community_hub.features.permissions.models import Role, RolePermission, UserRoleAssignment
from community_hub.features.permissions.service import PermissionService, as_utc
from community_hub.utils import get_logger


log = get_logger(__name__)

ROLE_SORT_FIELDS = {
    "name": Role.name,
    "code": Role.code,
    "hierarchy_level": Role.hierarchy_level,
    "created_at": Role.created_at,
}


def _validate_hierarchy(is_system: bool, hierarchy_level: int) -> None:
    if not is_system and hierarchy_level <= 0:
        raise BadRequestError("Non-system roles must have hierarchy level greater than 0")


class RoleService:
    def __init__(self, session: AsyncSession, permissions: PermissionService | None = None):
        self.session = session
        self.permissions = permissions or PermissionService(session)
        self.roles = Repository(session, Role, conflict_message="A role with this code already exists")
        self.grants = self.permissions.grants
        self.assignments = Repository(
            session, UserRoleAssignment, conflict_message="Role is already assigned to this user"
        )

    async def create_role(self, values: dict[str, Any], acting_user_id: str | None, tenant_id: str) -> Role:
        """
        Create a role and link ``permission_ids`` to it in one transaction.

        Unknown permission ids are skipped.
        """
        values = dict(values)
        permission_ids = values.pop("permission_ids", None) or []
        code = values["code"]

        if code == config.RESERVED_ROLE_CODE:
            raise ForbiddenError(f"{code} role cannot be created")
        _validate_hierarchy(values.get("is_system", False), values.get("hierarchy_level", 50))
        if await self.roles.exists(tenant_id=tenant_id, code=code, include_deleted=True):
            raise ConflictError(f"Role with code {code} already exists")

        async with transaction(self.session):
            role = await self.roles.create(
                tenant_id=tenant_id,
                created_by_id=acting_user_id,
                updated_by_id=acting_user_id,
                **values,
            )
            granted = await self.permissions.grant_permissions(role.id, permission_ids, acting_user_id)
            await create_audit_log(
                self.session, acting_user_id, "create", "role", role.id, tenant_id,
                {"code": code, "permission_ids": [g.permission_id for g in granted]},
            )

        log.info("Role created successfully: %s (%s) with %d permissions", role.id, code, len(granted))
        return role

    async def update_role(
        self, role_id: str, patch: dict[str, Any], acting_user_id: str | None, tenant_id: str
    ) -> Role:
        """
        Update role fields; when ``permission_ids`` is given it replaces the set
        of active grants (new ones added, missing ones deactivated).
        """
        patch = dict(patch)
        permission_ids = patch.pop("permission_ids", None)
        role = await self.get_role(role_id, tenant_id)
        _validate_hierarchy(role.is_system, patch.get("hierarchy_level", role.hierarchy_level))

        async with transaction(self.session):
            role = await self.roles.update(role, updated_by_id=acting_user_id, **patch)
            details: dict[str, Any] = {"fields": sorted(patch)}
            if permission_ids is not None:
                added, removed = await self.permissions.sync_role_permissions(
                    role.id, permission_ids, acting_user_id
                )
                details["added_permission_ids"] = [g.permission_id for g in added]
                details["removed_permission_ids"] = removed
            await create_audit_log(self.session, acting_user_id, "update", "role", role.id, tenant_id, details)

        log.info("Updated role %s: %s", role_id, details)
        return role

    async def delete_role(self, role_id: str, acting_user_id: str | None, tenant_id: str) -> Role:
        """
        Soft-delete the role and deactivate its grants and assignments, atomically.
        """
        role = await self.get_role(role_id, tenant_id)

        async with transaction(self.session):
            role = await self.roles.update(
                role,
                is_deleted=True,
                deleted_by_id=acting_user_id,
                deleted_at=utcnow(),
                updated_by_id=acting_user_id,
            )
            grants = await self.grants.update_many(role_id=role.id, values={"is_active": False})
            assignments = await self.assignments.update_many(role_id=role.id, values={"is_active": False})
            await create_audit_log(
                self.session, acting_user_id, "delete", "role", role.id, tenant_id,
                {"deactivated_grants": grants, "deactivated_assignments": assignments},
            )

        log.info("Role deleted successfully and related assignments deactivated: %s", role_id)
        return role

    async def get_role(self, role_id: str, tenant_id: str) -> Role:
        role = await self.roles.find_one(id=role_id, tenant_id=tenant_id)
        if role is None:
            raise NotFoundError(f"Role with ID {role_id} not found")
        return role

    async def list_roles(
        self,
        tenant_id: str,
        search: str | None = None,
        include_inactive: bool = True,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "hierarchy_level",
        sort_order: str = "asc",
    ) -> tuple[list[Role], Pagination]:
        filters: dict[str, Any] = {"tenant_id": tenant_id}
        if not include_inactive:
            filters["is_active"] = True
        stmt = self.roles.select(**filters)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(
                Role.name.ilike(pattern),
                Role.code.ilike(pattern),
                Role.description.ilike(pattern),
            ))
        column = ROLE_SORT_FIELDS.get(sort_by, Role.hierarchy_level)
        stmt = stmt.order_by(column.desc() if sort_order == "desc" else column.asc())
        return await self.roles.paginate(stmt, page, limit)

    async def get_role_hierarchy(
        self, tenant_id: str, include_inactive: bool = False, include_system: bool = True
    ) -> list[Role]:
        """Roles ordered from most to least privileged. Deleted roles are never included."""
        filters: dict[str, Any] = {"tenant_id": tenant_id}
        if not include_inactive:
            filters["is_active"] = True
        if not include_system:
            filters["is_system"] = False
        return await self.roles.find_many(order_by=(Role.hierarchy_level, Role.name), **filters)

    # ========================================================================
    # User assignments
    # ========================================================================

    async def assign_role_to_user(
        self,
        user_id: str,
        role_id: str,
        tenant_id: str,
        acting_user_id: str | None,
        expires_at: datetime | None = None,
    ) -> UserRoleAssignment:
        """Assign a role; an inactive assignment for the same pair is reactivated."""
        await self.permissions.get_user(user_id, tenant_id)
        role = await self.get_role(role_id, tenant_id)
        if not role.is_active:
            raise BadRequestError(f"Role {role.code} is inactive")

        existing = await self.assignments.find_one(user_id=user_id, role_id=role_id)
        if existing is not None and existing.is_active:
            raise ConflictError("Role is already assigned to this user")

        values = {"assigned_by_id": acting_user_id, "expires_at": as_utc(expires_at), "is_active": True}
        async with transaction(self.session):
            if existing is None:
                assignment = await self.assignments.create(user_id=user_id, role_id=role_id, **values)
            else:
                assignment = await self.assignments.update(existing, **values)
            await create_audit_log(
                self.session, acting_user_id, "assign", "user_role", assignment.id, tenant_id,
                {"user_id": user_id, "role_id": role_id},
            )

        log.info("Assigned role %s to user %s", role_id, user_id)
        return assignment

    async def get_assignment(self, user_id: str, role_id: str, tenant_id: str) -> UserRoleAssignment:
        await self.get_role(role_id, tenant_id)
        assignment = await self.assignments.find_one(user_id=user_id, role_id=role_id)
        if assignment is None:
            raise NotFoundError(f"Role {role_id} is not assigned to user {user_id}")
        return assignment

    async def update_user_role_assignment(
        self,
        user_id: str,
        role_id: str,
        tenant_id: str,
        patch: dict[str, Any],
        acting_user_id: str | None,
    ) -> UserRoleAssignment:
        assignment = await self.get_assignment(user_id, role_id, tenant_id)
        if "expires_at" in patch:
            patch = {**patch, "expires_at": as_utc(patch["expires_at"])}
        async with transaction(self.session):
            assignment = await self.assignments.update(assignment, **patch)
            await create_audit_log(
                self.session, acting_user_id, "update", "user_role", assignment.id, tenant_id,
                {"fields": sorted(patch)},
            )
        return assignment

    async def unassign_role_from_user(
        self, user_id: str, role_id: str, tenant_id: str, acting_user_id: str | None
    ) -> UserRoleAssignment:
        """Deactivate the assignment; the row is kept for history."""
        assignment = await self.get_assignment(user_id, role_id, tenant_id)
        if not assignment.is_active:
            raise NotFoundError(f"Role {role_id} is not assigned to user {user_id}")
        async with transaction(self.session):
            assignment = await self.assignments.update(assignment, is_active=False)
            await create_audit_log(
                self.session, acting_user_id, "unassign", "user_role", assignment.id, tenant_id,
                {"user_id": user_id, "role_id": role_id},
            )
        log.info("Unassigned role %s from user %s", role_id, user_id)
        return assignment

    async def list_user_roles(self, user_id: str, tenant_id: str, include_inactive: bool = False) -> list[Role]:
        await self.permissions.get_user(user_id, tenant_id)
        stmt = (
            select(Role)
            .join(UserRoleAssignment, UserRoleAssignment.role_id == Role.id)
            .where(
                UserRoleAssignment.user_id == user_id,
                Role.tenant_id == tenant_id,
                Role.is_deleted.is_(False),
            )
            .order_by(Role.hierarchy_level)
        )
        if not include_inactive:
            stmt = stmt.where(UserRoleAssignment.is_active.is_(True), Role.is_active.is_(True))
        return list((await self.session.execute(stmt)).scalars().all())

    async def active_grants(self, role_id: str) -> list[RolePermission]:
        return await self.grants.find_many(role_id=role_id, is_active=True)
