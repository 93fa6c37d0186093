"""
FastAPI dependencies for route protection.
"""
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.core.database.engine import get_db
from community_hub.features.permissions.models import PermissionAction, PermissionModule
from community_hub.features.permissions.service import PermissionService
from community_hub.features.tenants.dependencies import get_current_tenant
from community_hub.features.tenants.models import Tenant
from community_hub.features.users.dependencies import get_current_user
from community_hub.features.users.models import User
from community_hub.utils import get_logger


log = get_logger(__name__)


async def has_permission(
    db: AsyncSession,
    user: User,
    tenant_id: str,
    module: PermissionModule | str,
    action: PermissionAction | str,
) -> bool:
    """
    Check if user may perform ``action`` on ``module`` in the tenant.

    Platform admins have every permission; everybody else needs the pair in
    their effective permission set.
    """
    if user.is_admin:
        log.debug("User %s is admin - granted %s on %s", user.id, action, module)
        return True

    allowed = await PermissionService(db).has_permission(user.id, tenant_id, module, action)
    if not allowed:
        log.debug("User %s denied %s on %s in tenant %s", user.id, action, module, tenant_id)
    return allowed


def require_permission(module: PermissionModule, action: PermissionAction):
    """
    FastAPI dependency to require a specific permission in the current tenant.

    Usage:
        @router.post("/")
        async def create_member(
            user: User = Depends(require_permission(PermissionModule.MEMBERS, PermissionAction.CREATE))
        ):
            pass

    Raises:
        HTTPException: 403 if the user doesn't have the permission
    """
    async def permission_dependency(
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
        tenant: Tenant = Depends(get_current_tenant),
    ) -> User:
        if not await has_permission(db, current_user, tenant.id, module, action):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {action.value} on {module.value}"
            )
        return current_user

    return permission_dependency
