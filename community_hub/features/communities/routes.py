"""
Community feature routes.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.core.database.engine import get_db
from community_hub.core.responses import AppResponse, success
from community_hub.features.communities.membership import CommunityMemberService
from community_hub.features.communities.models import CommunityMemberStatus, CommunityRole, CommunityType
from community_hub.features.communities.resolver import CommunityService
from community_hub.features.communities.schemas import (
    AddMembersRequest,
    CommunityCreate,
    CommunityFilters,
    CommunityMemberResponse,
    CommunityMemberUpdate,
    CommunityResponse,
    CommunityUpdate,
    MembershipReport,
)
from community_hub.features.permissions.dependencies import require_permission
from community_hub.features.permissions.models import PermissionAction, PermissionModule
from community_hub.features.tenants.dependencies import get_current_tenant
from community_hub.features.tenants.models import Tenant
from community_hub.features.users.models import User


router = APIRouter(tags=["communities"])

Db = Annotated[AsyncSession, Depends(get_db)]
CurrentTenant = Annotated[Tenant, Depends(get_current_tenant)]
COMMUNITIES = PermissionModule.COMMUNITIES


def _bulk_message(reports: list[MembershipReport]) -> str:
    succeeded = sum(1 for r in reports if r.status == "success")
    return f"Bulk operation completed: {succeeded} succeeded, {len(reports) - succeeded} failed"


# Community CRUD endpoints
@router.post("/", response_model=AppResponse[dict], status_code=status.HTTP_201_CREATED)
async def create_community(
    data: CommunityCreate,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(COMMUNITIES, PermissionAction.CREATE))],
):
    """Create a community, optionally with initial members."""
    community, reports = await CommunityService(db).create_community(data.model_dump(), tenant.id, user.id)
    return success(
        {
            "community": CommunityResponse.model_validate(community).model_dump(),
            "members": [r.model_dump() for r in reports],
        },
        "Community created successfully",
        status.HTTP_201_CREATED,
    )


@router.get("/", response_model=AppResponse[List[CommunityResponse]])
async def list_communities(
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(COMMUNITIES, PermissionAction.READ))],
    filters: Annotated[CommunityFilters, Depends()],
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
):
    rows, pagination = await CommunityService(db).list_communities(
        tenant.id, filters, page, limit, sort_by, sort_order
    )
    return success([CommunityResponse.model_validate(c) for c in rows], pagination=pagination)


@router.get("/members", response_model=AppResponse[List[CommunityMemberResponse]])
async def list_all_memberships(
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(COMMUNITIES, PermissionAction.READ))],
    role: Optional[CommunityRole] = None,
    status_filter: Annotated[Optional[CommunityMemberStatus], Query(alias="status")] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """Memberships across every community of the tenant."""
    rows, pagination = await CommunityMemberService(db).list_members(
        tenant.id, None, role, status_filter, search, page, limit
    )
    return success([CommunityMemberResponse.model_validate(r) for r in rows], pagination=pagination)


@router.get("/{community_id}", response_model=AppResponse[CommunityResponse])
async def get_community(
    community_id: str,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(COMMUNITIES, PermissionAction.READ))],
    type: Optional[CommunityType] = None,
):
    community = await CommunityService(db).get_community(community_id, tenant.id, type)
    return success(CommunityResponse.model_validate(community))


@router.patch("/{community_id}", response_model=AppResponse[CommunityResponse])
async def update_community(
    community_id: str,
    data: CommunityUpdate,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(COMMUNITIES, PermissionAction.UPDATE))],
):
    community = await CommunityService(db).update_community(
        community_id, tenant.id, data.model_dump(exclude_unset=True)
    )
    return success(CommunityResponse.model_validate(community), "Community updated successfully")


@router.post("/{community_id}/archive", response_model=AppResponse[CommunityResponse])
async def archive_community(
    community_id: str,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(COMMUNITIES, PermissionAction.ARCHIVE))],
):
    community = await CommunityService(db).archive_community(community_id, tenant.id)
    return success(CommunityResponse.model_validate(community), "Community archived successfully")


@router.delete("/{community_id}", response_model=AppResponse[None])
async def delete_community(
    community_id: str,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(COMMUNITIES, PermissionAction.DELETE))],
):
    await CommunityService(db).delete_community(community_id, tenant.id)
    return success(message="Community deleted successfully")


# Membership endpoints
@router.post("/{community_id}/members", response_model=AppResponse[List[MembershipReport]])
async def add_members(
    community_id: str,
    data: AddMembersRequest,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(COMMUNITIES, PermissionAction.UPDATE))],
):
    """Add members; the response reports success or failure per member."""
    reports = await CommunityMemberService(db).add_members(
        community_id,
        data.member_ids,
        tenant.id,
        role=data.role,
        status=data.status,
        notes=data.notes,
        notify_leaders=data.notify_leaders,
    )
    return success(reports, _bulk_message(reports))


@router.get("/{community_id}/members", response_model=AppResponse[List[CommunityMemberResponse]])
async def list_members(
    community_id: str,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(COMMUNITIES, PermissionAction.READ))],
    role: Optional[CommunityRole] = None,
    status_filter: Annotated[Optional[CommunityMemberStatus], Query(alias="status")] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = "joined_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
):
    service = CommunityMemberService(db)
    await service.get_community(community_id, tenant.id)
    rows, pagination = await service.list_members(
        tenant.id, community_id, role, status_filter, search, page, limit, sort_by, sort_order
    )
    return success([CommunityMemberResponse.model_validate(r) for r in rows], pagination=pagination)


@router.get("/{community_id}/members/{member_id}", response_model=AppResponse[CommunityMemberResponse])
async def get_member(
    community_id: str,
    member_id: str,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(COMMUNITIES, PermissionAction.READ))],
):
    row = await CommunityMemberService(db).get_member(community_id, member_id, tenant.id)
    return success(CommunityMemberResponse.model_validate(row))


@router.patch("/{community_id}/members/{member_id}", response_model=AppResponse[CommunityMemberResponse])
async def update_member(
    community_id: str,
    member_id: str,
    data: CommunityMemberUpdate,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(COMMUNITIES, PermissionAction.UPDATE))],
):
    row = await CommunityMemberService(db).update_member(
        community_id, member_id, tenant.id, data.model_dump(exclude_unset=True)
    )
    return success(CommunityMemberResponse.model_validate(row), "Community member updated successfully")


@router.delete("/{community_id}/members/{member_id}", response_model=AppResponse[None])
async def remove_member(
    community_id: str,
    member_id: str,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(COMMUNITIES, PermissionAction.UPDATE))],
):
    await CommunityMemberService(db).remove_member(community_id, member_id, tenant.id)
    return success(message="Community member removed successfully")
