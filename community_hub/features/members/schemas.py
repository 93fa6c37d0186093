"""
Pydantic schemas for member-related requests and responses.
"""
from datetime import date, datetime
from pydantic import BaseModel, Field, EmailStr, ConfigDict

from community_hub.features.communities.schemas import SyncStep
from community_hub.features.members.models import Gender


class MemberBase(BaseModel):
    """Base member schema."""
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    branch_id: str | None = None
    user_id: str | None = None
    location: str | None = Field(None, max_length=255)
    country: str | None = Field(None, max_length=100)
    date_of_birth: date | None = None
    profession: str | None = Field(None, max_length=100)
    gender: Gender | None = None


class MemberCreate(MemberBase):
    """Schema for creating a new member."""
    pass


class MemberUpdate(BaseModel):
    """Schema for updating member information."""
    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    branch_id: str | None = None
    location: str | None = Field(None, max_length=255)
    country: str | None = Field(None, max_length=100)
    date_of_birth: date | None = None
    profession: str | None = Field(None, max_length=100)
    gender: Gender | None = None


class MemberResponse(MemberBase):
    """Schema for member responses."""
    id: str
    tenant_id: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MemberWithSync(BaseModel):
    """A written member plus the community sync trail it triggered."""
    member: MemberResponse
    community_sync: list[SyncStep] = Field(default_factory=list)
