"""
Pydantic schemas for communities, memberships and sync reports.
"""
from datetime import date, datetime
from typing import Any, Literal
from pydantic import BaseModel, Field, ConfigDict

from community_hub.features.communities.models import (
    CommunityType,
    CommunityStatus,
    CommunityRole,
    CommunityMemberStatus,
    Month,
)
from community_hub.features.members.models import Gender


# ============================================================================
# Community Schemas
# ============================================================================

class CommunityBase(BaseModel):
    """Base community schema."""
    name: str = Field(..., min_length=1, max_length=255)
    type: CommunityType
    branch_id: str | None = Field(None, description="Branch the community belongs to")
    description: str | None = Field(None, max_length=2000)
    status: CommunityStatus = CommunityStatus.ACTIVE
    location: str | None = Field(None, max_length=255, description="CELL communities")
    country: str | None = Field(None, max_length=100, description="CELL communities")
    month: Month | None = Field(None, description="TRIBE communities")
    profession: str | None = Field(None, max_length=100, description="PROFESSION communities")
    gender: Gender | None = Field(None, description="MINISTRY communities")
    leader_id: str | None = None
    assistant_leader_id: str | None = None


class CommunityCreate(CommunityBase):
    """Schema for creating a community, optionally with an initial member list."""
    member_ids: list[str] = Field(default_factory=list, description="Members added on creation (best effort)")


class CommunityUpdate(BaseModel):
    """Schema for updating a community. Type cannot change."""
    name: str | None = Field(None, min_length=1, max_length=255)
    branch_id: str | None = None
    description: str | None = Field(None, max_length=2000)
    status: CommunityStatus | None = None
    location: str | None = Field(None, max_length=255)
    country: str | None = Field(None, max_length=100)
    month: Month | None = None
    profession: str | None = Field(None, max_length=100)
    gender: Gender | None = None
    leader_id: str | None = None
    assistant_leader_id: str | None = None


class CommunityResponse(CommunityBase):
    """Schema for community responses."""
    id: str
    tenant_id: str
    creator_id: str | None = None
    archived_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommunityFilters(BaseModel):
    """Query filters for listing communities."""
    branch_id: str | None = None
    member_id: str | None = Field(None, description="Only communities this member belongs to")
    type: CommunityType | None = None
    status: CommunityStatus | None = None
    profession: str | None = None
    gender: Gender | None = None
    month: Month | None = None
    include_archived: bool = False
    search: str | None = Field(None, description="Matches name, location, gender or month")


# ============================================================================
# Membership Schemas
# ============================================================================

class AddMembersRequest(BaseModel):
    """Schema for adding members to a community."""
    member_ids: list[str] = Field(..., min_length=1, description="Members to add")
    role: CommunityRole = CommunityRole.MEMBER
    status: CommunityMemberStatus = CommunityMemberStatus.ACTIVE
    notes: str | None = Field(None, max_length=1000)
    notify_leaders: bool = Field(default=False, description="Also notify the community's leaders")


class CommunityMemberUpdate(BaseModel):
    """Schema for updating a membership row."""
    role: CommunityRole | None = None
    status: CommunityMemberStatus | None = None
    left_at: datetime | None = Field(None, description="Marks departure without removing the row")
    notes: str | None = Field(None, max_length=1000)


class CommunityMemberResponse(BaseModel):
    """Schema for membership responses."""
    community_id: str
    member_id: str
    role: CommunityRole
    status: CommunityMemberStatus
    joined_at: datetime
    left_at: datetime | None = None
    notes: str | None = None

    model_config = ConfigDict(from_attributes=True)


class MembershipReport(BaseModel):
    """Outcome of adding one member in a bulk add."""
    member_id: str
    status: Literal["success", "failed"]
    data: CommunityMemberResponse | None = None
    reason: str | None = None


# ============================================================================
# Sync Schemas
# ============================================================================

class CommunitySyncAttributes(BaseModel):
    """Profile attributes to sync; absent attributes are left untouched."""
    location: str | None = None
    country: str | None = None
    date_of_birth: date | None = None
    profession: str | None = None
    gender: Gender | None = None


class CommunitySyncRequest(CommunitySyncAttributes):
    branch_id: str | None = Field(None, description="Defaults to the member's branch")


class CommunityAssignmentRequest(BaseModel):
    """Explicit community ids to place a member into, by kind."""
    cell_community_id: str | None = None
    tribe_community_id: str | None = None
    profession_community_id: str | None = None
    ministry_community_id: str | None = None


class SyncStep(BaseModel):
    """One entry of the sync diagnostic trail."""
    step: str
    success: bool
    message: str | None = None
    data: Any = None
