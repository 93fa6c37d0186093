"""
Permission management routes.

Endpoints for the permission catalog, roles, role grants, user role
assignments, user overrides and effective permissions. All are tenant-scoped
through the X-Tenant-ID header (or the caller's own tenant).
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.core.database.engine import get_db
from community_hub.core.responses import AppResponse, success
from community_hub.features.permissions.dependencies import require_permission
from community_hub.features.permissions.models import PermissionAction, PermissionModule
from community_hub.features.permissions.roles import RoleService
from community_hub.features.permissions.schemas import (
    EffectivePermission,
    PermissionBulkCreate,
    PermissionResponse,
    PermissionUpdate,
    RoleCreate,
    RolePermissionAssign,
    RolePermissionRemove,
    RolePermissionResponse,
    RolePermissionScopeUpdate,
    RoleResponse,
    RoleUpdate,
    RoleWithPermissions,
    UserPermissionOverrideCreate,
    UserPermissionOverrideResponse,
    UserPermissionOverrideUpdate,
    UserRoleAssign,
    UserRoleAssignmentResponse,
    UserRoleAssignmentUpdate,
)
from community_hub.features.permissions.service import PermissionService
from community_hub.features.tenants.dependencies import get_current_tenant
from community_hub.features.tenants.models import Tenant
from community_hub.features.users.dependencies import get_current_user
from community_hub.features.users.models import User


router = APIRouter(tags=["permissions"])

Db = Annotated[AsyncSession, Depends(get_db)]
CurrentTenant = Annotated[Tenant, Depends(get_current_tenant)]

PERMISSIONS = PermissionModule.PERMISSION_MANAGEMENT
ROLES = PermissionModule.ROLE_MANAGEMENT


# ============================================================================
# Permission catalog
# ============================================================================

@router.post("/", response_model=AppResponse[dict], status_code=status.HTTP_201_CREATED)
async def create_permissions(
    data: PermissionBulkCreate,
    db: Db,
    user: Annotated[User, Depends(require_permission(PERMISSIONS, PermissionAction.CREATE))],
):
    """Create catalog entries; existing (module, action) pairs are skipped."""
    created, skipped = await PermissionService(db).create_permissions(
        [item.model_dump() for item in data.permissions]
    )
    return success(
        {
            "created": [PermissionResponse.model_validate(p).model_dump() for p in created],
            "skipped": skipped,
        },
        f"{len(created)} permissions created, {len(skipped)} skipped",
        status.HTTP_201_CREATED,
    )


@router.get("/", response_model=AppResponse[List[PermissionResponse]])
async def list_permissions(
    db: Db,
    user: Annotated[User, Depends(get_current_user)],
    module: Optional[str] = None,
    action: Optional[str] = None,
    search: Optional[str] = None,
    include_inactive: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=1000),
):
    """List the permission catalog."""
    rows, pagination = await PermissionService(db).list_permissions(
        module, action, search, include_inactive, page, limit
    )
    return success([PermissionResponse.model_validate(p) for p in rows], pagination=pagination)


@router.patch("/{permission_id}", response_model=AppResponse[PermissionResponse])
async def update_permission(
    permission_id: str,
    data: PermissionUpdate,
    db: Db,
    user: Annotated[User, Depends(require_permission(PERMISSIONS, PermissionAction.UPDATE))],
):
    permission = await PermissionService(db).update_permission(permission_id, data.model_dump(exclude_unset=True))
    return success(PermissionResponse.model_validate(permission), "Permission updated successfully")


# ============================================================================
# Roles
# ============================================================================

@router.post("/roles", response_model=AppResponse[RoleResponse], status_code=status.HTTP_201_CREATED)
async def create_role(
    data: RoleCreate,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(ROLES, PermissionAction.CREATE))],
):
    role = await RoleService(db).create_role(data.model_dump(), user.id, tenant.id)
    return success(RoleResponse.model_validate(role), "Role created successfully", status.HTTP_201_CREATED)


@router.get("/roles", response_model=AppResponse[List[RoleResponse]])
async def list_roles(
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(ROLES, PermissionAction.READ))],
    search: Optional[str] = None,
    include_inactive: bool = True,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = "hierarchy_level",
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
):
    rows, pagination = await RoleService(db).list_roles(
        tenant.id, search, include_inactive, page, limit, sort_by, sort_order
    )
    return success([RoleResponse.model_validate(r) for r in rows], pagination=pagination)


@router.get("/roles/hierarchy", response_model=AppResponse[List[RoleResponse]])
async def get_role_hierarchy(
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(ROLES, PermissionAction.READ))],
    include_inactive: bool = False,
    include_system: bool = True,
):
    """Roles ordered by hierarchy level, most privileged first."""
    roles = await RoleService(db).get_role_hierarchy(tenant.id, include_inactive, include_system)
    return success([RoleResponse.model_validate(r) for r in roles])


@router.get("/roles/{role_id}", response_model=AppResponse[RoleWithPermissions])
async def get_role(
    role_id: str,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(ROLES, PermissionAction.READ))],
):
    service = RoleService(db)
    role = await service.get_role(role_id, tenant.id)
    permissions = await service.permissions.list_role_permissions(role_id, tenant.id)
    data = RoleWithPermissions(
        **RoleResponse.model_validate(role).model_dump(),
        permissions=[PermissionResponse.model_validate(p) for p in permissions],
    )
    return success(data)


@router.patch("/roles/{role_id}", response_model=AppResponse[RoleResponse])
async def update_role(
    role_id: str,
    data: RoleUpdate,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(ROLES, PermissionAction.UPDATE))],
):
    role = await RoleService(db).update_role(role_id, data.model_dump(exclude_unset=True), user.id, tenant.id)
    return success(RoleResponse.model_validate(role), "Role updated successfully")


@router.delete("/roles/{role_id}", response_model=AppResponse[RoleResponse])
async def delete_role(
    role_id: str,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(ROLES, PermissionAction.DELETE))],
):
    role = await RoleService(db).delete_role(role_id, user.id, tenant.id)
    return success(RoleResponse.model_validate(role), "Role deleted successfully and related assignments deactivated")


# ============================================================================
# Role grants
# ============================================================================

@router.post("/roles/{role_id}/permissions", response_model=AppResponse[List[RolePermissionResponse]])
async def assign_permissions_to_role(
    role_id: str,
    data: RolePermissionAssign,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(ROLES, PermissionAction.UPDATE))],
):
    granted = await PermissionService(db).assign_permissions_to_role(
        role_id, tenant.id, data.permission_ids, user.id,
        branch_scope=data.branch_scope,
        department_scope=data.department_scope,
        custom_conditions=data.custom_conditions,
        expires_at=data.expires_at,
    )
    return success(
        [RolePermissionResponse.model_validate(g) for g in granted],
        f"{len(granted)} permissions granted",
    )


@router.post("/roles/{role_id}/permissions/remove", response_model=AppResponse[dict])
async def remove_permissions_from_role(
    role_id: str,
    data: RolePermissionRemove,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(ROLES, PermissionAction.UPDATE))],
):
    removed = await PermissionService(db).remove_permissions_from_role(
        role_id, tenant.id, data.permission_ids, user.id
    )
    return success({"removed": removed}, f"{removed} permissions removed")


@router.patch("/role-permissions/{grant_id}", response_model=AppResponse[RolePermissionResponse])
async def update_role_permission_scope(
    grant_id: str,
    data: RolePermissionScopeUpdate,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(ROLES, PermissionAction.UPDATE))],
):
    grant = await PermissionService(db).update_role_permission_scope(
        grant_id, tenant.id, data.model_dump(exclude_unset=True), user.id
    )
    return success(RolePermissionResponse.model_validate(grant), "Role permission updated successfully")


# ============================================================================
# User role assignments
# ============================================================================

@router.post("/assignments", response_model=AppResponse[UserRoleAssignmentResponse], status_code=status.HTTP_201_CREATED)
async def assign_role_to_user(
    data: UserRoleAssign,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(ROLES, PermissionAction.UPDATE))],
):
    assignment = await RoleService(db).assign_role_to_user(
        data.user_id, data.role_id, tenant.id, user.id, data.expires_at
    )
    return success(
        UserRoleAssignmentResponse.model_validate(assignment), "Role assigned successfully", status.HTTP_201_CREATED
    )


@router.patch("/assignments/{user_id}/{role_id}", response_model=AppResponse[UserRoleAssignmentResponse])
async def update_user_role_assignment(
    user_id: str,
    role_id: str,
    data: UserRoleAssignmentUpdate,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(ROLES, PermissionAction.UPDATE))],
):
    assignment = await RoleService(db).update_user_role_assignment(
        user_id, role_id, tenant.id, data.model_dump(exclude_unset=True), user.id
    )
    return success(UserRoleAssignmentResponse.model_validate(assignment), "Role assignment updated successfully")


@router.delete("/assignments/{user_id}/{role_id}", response_model=AppResponse[UserRoleAssignmentResponse])
async def unassign_role_from_user(
    user_id: str,
    role_id: str,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(ROLES, PermissionAction.UPDATE))],
):
    assignment = await RoleService(db).unassign_role_from_user(user_id, role_id, tenant.id, user.id)
    return success(UserRoleAssignmentResponse.model_validate(assignment), "Role unassigned successfully")


@router.get("/users/{user_id}/roles", response_model=AppResponse[List[RoleResponse]])
async def list_user_roles(
    user_id: str,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(ROLES, PermissionAction.READ))],
    include_inactive: bool = False,
):
    roles = await RoleService(db).list_user_roles(user_id, tenant.id, include_inactive)
    return success([RoleResponse.model_validate(r) for r in roles])


# ============================================================================
# User overrides
# ============================================================================

@router.post("/overrides", response_model=AppResponse[UserPermissionOverrideResponse], status_code=status.HTTP_201_CREATED)
async def create_override(
    data: UserPermissionOverrideCreate,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(PERMISSIONS, PermissionAction.CREATE))],
):
    override = await PermissionService(db).create_override(
        data.user_id, data.permission_id, tenant.id, user.id,
        grant_type=data.grant_type,
        reason=data.reason,
        expires_at=data.expires_at,
    )
    return success(
        UserPermissionOverrideResponse.model_validate(override), "Override created successfully",
        status.HTTP_201_CREATED,
    )


@router.patch("/overrides/{user_id}/{permission_id}", response_model=AppResponse[UserPermissionOverrideResponse])
async def update_override(
    user_id: str,
    permission_id: str,
    data: UserPermissionOverrideUpdate,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(PERMISSIONS, PermissionAction.UPDATE))],
):
    override = await PermissionService(db).update_override(
        user_id, permission_id, tenant.id, data.model_dump(exclude_unset=True), user.id
    )
    return success(UserPermissionOverrideResponse.model_validate(override), "Override updated successfully")


@router.delete("/overrides/{user_id}/{permission_id}", response_model=AppResponse[UserPermissionOverrideResponse])
async def remove_override(
    user_id: str,
    permission_id: str,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(PERMISSIONS, PermissionAction.DELETE))],
):
    override = await PermissionService(db).remove_override(user_id, permission_id, tenant.id, user.id)
    return success(UserPermissionOverrideResponse.model_validate(override), "Override removed successfully")


# ============================================================================
# Effective permissions
# ============================================================================

@router.get("/me", response_model=AppResponse[List[EffectivePermission]])
async def get_my_permissions(
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(get_current_user)],
    module: Optional[str] = None,
):
    """Effective permissions of the current user."""
    entries = await PermissionService(db).get_effective_permissions(user.id, tenant.id, module=module)
    return success(entries)


@router.get("/users/{user_id}/effective", response_model=AppResponse[List[EffectivePermission]])
async def get_effective_permissions(
    user_id: str,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(PERMISSIONS, PermissionAction.READ))],
    include_inactive: bool = False,
    include_expired: bool = False,
    module: Optional[str] = None,
):
    entries = await PermissionService(db).get_effective_permissions(
        user_id, tenant.id, include_inactive, include_expired, module
    )
    return success(entries)
