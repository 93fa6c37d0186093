"""
Pydantic schemas for permission management.

Request and response models for the permission catalog, roles, grants,
assignments, overrides and the effective permission set.
"""
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from community_hub.features.permissions.models import (
    PermissionModule,
    PermissionAction,
    PermissionScope,
    OverrideType,
)


def _must_be_future(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    if value <= datetime.now(timezone.utc):
        raise ValueError("expires_at must be in the future")
    return value


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionBase(BaseModel):
    """Base permission schema."""
    module: PermissionModule = Field(..., description="Module the permission applies to")
    action: PermissionAction = Field(..., description="Action on the module")
    description: Optional[str] = Field(None, max_length=1000, description="Permission description")
    is_active: bool = True


class PermissionCreate(PermissionBase):
    """Schema for creating a new permission."""
    pass


class PermissionBulkCreate(BaseModel):
    permissions: List[PermissionCreate] = Field(..., min_length=1)


class PermissionUpdate(BaseModel):
    """Schema for updating a permission."""
    description: Optional[str] = Field(None, max_length=1000)
    is_active: Optional[bool] = None


class PermissionResponse(BaseModel):
    """Schema for permission response."""
    id: str
    module: str
    action: str
    description: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(BaseModel):
    """Base role schema."""
    name: str = Field(..., min_length=1, max_length=100, description="Display name")
    code: str = Field(..., min_length=1, max_length=50, description="Role code, unique per tenant")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")
    hierarchy_level: int = Field(50, ge=0, le=100, description="0 is the most privileged level")
    is_system: bool = False
    is_active: bool = True

    @field_validator('code')
    @classmethod
    def code_upper_snake(cls, v: str) -> str:
        """Normalize role codes to UPPER_SNAKE."""
        v = v.strip().upper().replace('-', '_').replace(' ', '_')
        if not v.replace('_', '').isalnum():
            raise ValueError('Role code must contain only alphanumeric characters and underscores')
        return v


class RoleCreate(RoleBase):
    """Schema for creating a new role."""
    permission_ids: List[str] = Field(default_factory=list, description="Permissions granted on creation")


class RoleUpdate(BaseModel):
    """Schema for updating a role. permission_ids, when given, is the full desired set."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    hierarchy_level: Optional[int] = Field(None, ge=0, le=100)
    is_active: Optional[bool] = None
    permission_ids: Optional[List[str]] = None


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: str
    tenant_id: str
    name: str
    code: str
    description: Optional[str] = None
    hierarchy_level: int
    is_system: bool
    is_active: bool
    is_deleted: bool
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleWithPermissions(RoleResponse):
    """Schema for role with its active permissions."""
    permissions: List[PermissionResponse] = []


# ============================================================================
# Role-Permission Schemas
# ============================================================================

class RolePermissionAssign(BaseModel):
    """Schema for granting permissions to a role."""
    permission_ids: List[str] = Field(..., min_length=1)
    branch_scope: PermissionScope = PermissionScope.ALL
    department_scope: PermissionScope = PermissionScope.ALL
    custom_conditions: Optional[Dict[str, Any]] = None
    expires_at: Optional[datetime] = None

    @field_validator('expires_at')
    @classmethod
    def expires_in_future(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _must_be_future(v)


class RolePermissionRemove(BaseModel):
    permission_ids: List[str] = Field(..., min_length=1)


class RolePermissionScopeUpdate(BaseModel):
    """Schema for changing the scope of an existing grant."""
    branch_scope: Optional[PermissionScope] = None
    department_scope: Optional[PermissionScope] = None
    custom_conditions: Optional[Dict[str, Any]] = None
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None


class RolePermissionResponse(BaseModel):
    id: str
    role_id: str
    permission_id: str
    branch_scope: PermissionScope
    department_scope: PermissionScope
    custom_conditions: Optional[Dict[str, Any]] = None
    granted_by_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# User Role Assignment Schemas
# ============================================================================

class UserRoleAssign(BaseModel):
    """Schema for assigning a role to a user."""
    user_id: str
    role_id: str
    expires_at: Optional[datetime] = Field(None, description="Must be in the future")

    @field_validator('expires_at')
    @classmethod
    def expires_in_future(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _must_be_future(v)


class UserRoleAssignmentUpdate(BaseModel):
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None


class UserRoleAssignmentResponse(BaseModel):
    id: str
    user_id: str
    role_id: str
    assigned_by_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# User Permission Override Schemas
# ============================================================================

class UserPermissionOverrideCreate(BaseModel):
    """Schema for granting or denying one permission to one user."""
    user_id: str
    permission_id: str
    grant_type: OverrideType = OverrideType.ALLOW
    reason: Optional[str] = Field(None, max_length=1000)
    expires_at: Optional[datetime] = None

    @field_validator('expires_at')
    @classmethod
    def expires_in_future(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _must_be_future(v)


class UserPermissionOverrideUpdate(BaseModel):
    grant_type: Optional[OverrideType] = None
    reason: Optional[str] = Field(None, max_length=1000)
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None


class UserPermissionOverrideResponse(BaseModel):
    id: str
    user_id: str
    permission_id: str
    grant_type: OverrideType
    granted_by_id: Optional[str] = None
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Effective Permission Schemas
# ============================================================================

class EffectivePermission(BaseModel):
    """One entry of a user's effective permission set."""
    permission_id: str
    module: str
    action: str
    source: str = Field(..., description="'role' or 'override'")
    role_id: Optional[str] = None
    role_code: Optional[str] = None
    override_id: Optional[str] = None
    branch_scope: PermissionScope = PermissionScope.ALL
    department_scope: PermissionScope = PermissionScope.ALL
    custom_conditions: Optional[Dict[str, Any]] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True


class EffectivePermissionQuery(BaseModel):
    include_inactive: bool = False
    include_expired: bool = False
    module: Optional[str] = None


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    tenant_id: Optional[str]
    details: Optional[Dict[str, Any]]
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)
