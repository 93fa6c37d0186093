"""
Member feature routes.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.core.database.engine import get_db
from community_hub.core.responses import AppResponse, success
from community_hub.features.communities.schemas import CommunityAssignmentRequest, CommunitySyncRequest, SyncStep
from community_hub.features.communities.sync import CommunitySyncService
from community_hub.features.members.schemas import MemberCreate, MemberResponse, MemberUpdate, MemberWithSync
from community_hub.features.members.service import MemberService
from community_hub.features.permissions.dependencies import require_permission
from community_hub.features.permissions.models import PermissionAction, PermissionModule
from community_hub.features.tenants.dependencies import get_current_tenant
from community_hub.features.tenants.models import Tenant
from community_hub.features.users.models import User


router = APIRouter(tags=["members"])

Db = Annotated[AsyncSession, Depends(get_db)]
CurrentTenant = Annotated[Tenant, Depends(get_current_tenant)]
MEMBERS = PermissionModule.MEMBERS


def _with_sync(member, steps) -> MemberWithSync:
    return MemberWithSync(member=MemberResponse.model_validate(member), community_sync=steps)


@router.post("/", response_model=AppResponse[MemberWithSync], status_code=status.HTTP_201_CREATED)
async def create_member(
    data: MemberCreate,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(MEMBERS, PermissionAction.CREATE))],
):
    """Create a member and place them in their communities."""
    member, steps = await MemberService(db).create_member(data.model_dump(), tenant.id)
    return success(_with_sync(member, steps), "Member created successfully", status.HTTP_201_CREATED)


@router.get("/", response_model=AppResponse[List[MemberResponse]])
async def list_members(
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(MEMBERS, PermissionAction.READ))],
    branch_id: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    rows, pagination = await MemberService(db).list_members(tenant.id, branch_id, search, page, limit)
    return success([MemberResponse.model_validate(m) for m in rows], pagination=pagination)


@router.get("/{member_id}", response_model=AppResponse[MemberResponse])
async def get_member(
    member_id: str,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(MEMBERS, PermissionAction.READ))],
):
    member = await MemberService(db).get_member(member_id, tenant.id)
    return success(MemberResponse.model_validate(member))


@router.patch("/{member_id}", response_model=AppResponse[MemberWithSync])
async def update_member(
    member_id: str,
    data: MemberUpdate,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(MEMBERS, PermissionAction.UPDATE))],
):
    """Update a member; changed placement attributes re-sync their communities."""
    member, steps = await MemberService(db).update_member(member_id, tenant.id, data.model_dump(exclude_unset=True))
    return success(_with_sync(member, steps), "Member updated successfully")


@router.delete("/{member_id}", response_model=AppResponse[None])
async def delete_member(
    member_id: str,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(MEMBERS, PermissionAction.DELETE))],
):
    await MemberService(db).delete_member(member_id, tenant.id)
    return success(message="Member deleted successfully")


@router.post("/{member_id}/communities/sync", response_model=AppResponse[List[SyncStep]])
async def sync_member_communities(
    member_id: str,
    data: CommunitySyncRequest,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(PermissionModule.COMMUNITIES, PermissionAction.UPDATE))],
):
    """Place the member in the communities matching the given attributes."""
    attrs = data.model_dump(exclude={"branch_id"})
    steps = await CommunitySyncService(db).sync_member_communities(member_id, attrs, tenant.id, data.branch_id)
    return success(steps, "Community sync completed")


@router.post("/{member_id}/communities", response_model=AppResponse[List[SyncStep]])
async def assign_member_to_communities(
    member_id: str,
    data: CommunityAssignmentRequest,
    db: Db,
    tenant: CurrentTenant,
    user: Annotated[User, Depends(require_permission(PermissionModule.COMMUNITIES, PermissionAction.UPDATE))],
):
    """Place the member in explicitly chosen communities."""
    steps = await CommunitySyncService(db).assign_member_to_communities(member_id, data, tenant.id)
    return success(steps, "Community assignment completed")
