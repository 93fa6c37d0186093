"""
Tenant-related dependency injection functions.
"""
from typing import Annotated
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.core.database.engine import get_db
from community_hub.features.tenants.models import Tenant
from community_hub.features.users.dependencies import get_current_user
from community_hub.features.users.models import User


async def get_tenant_by_id(tenant_id: str, db: AsyncSession) -> Tenant:
    """
    Get tenant by ID or raise 404.
    """
    result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
    tenant = result.scalar_one_or_none()

    if tenant is None or not tenant.is_active:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found"
        )

    return tenant


async def get_current_tenant(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    x_tenant_id: Annotated[str | None, Header()] = None,
) -> Tenant:
    """
    Resolve the tenant the request acts on.

    Defaults to the user's own tenant; admins may select any tenant through the
    X-Tenant-ID header, everybody else may only name their own.
    """
    tenant_id = x_tenant_id or user.tenant_id
    if tenant_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No tenant selected. Send the X-Tenant-ID header."
        )

    if not user.is_admin and tenant_id != user.tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this tenant"
        )

    return await get_tenant_by_id(tenant_id, db)
