"""
Role, permission and grant models for tenant-scoped RBAC.

This module implements:
- A global permission catalog keyed by (module, action)
- Tenant roles ordered by hierarchy level
- Role-permission grants with branch/department scope and expiry
- User-role assignments with expiry
- Per-user permission overrides (ALLOW or DENY)
- An audit log of role and grant changes

Nothing here is ever hard-deleted by the services: roles are soft-deleted and
grants/assignments/overrides are deactivated, so history stays queryable.
"""
import enum
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import (
    String, ForeignKey, Text, DateTime, Boolean, Integer, JSON, UniqueConstraint, CheckConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from community_hub.core.database.base import Base, TimestampMixin, generate_ulid, utcnow


class PermissionModule(str, enum.Enum):
    MEMBERS = "MEMBERS"
    MEMBER_REGISTRATION = "MEMBER_REGISTRATION"
    MEMBER_DIRECTORY = "MEMBER_DIRECTORY"
    MEMBER_PROFILE = "MEMBER_PROFILE"
    COMMUNITIES = "COMMUNITIES"
    CELL_MANAGEMENT = "CELL_MANAGEMENT"
    MINISTRY_MANAGEMENT = "MINISTRY_MANAGEMENT"
    PROFESSION_MANAGEMENT = "PROFESSION_MANAGEMENT"
    TRIBE_MANAGEMENT = "TRIBE_MANAGEMENT"
    COMMUNITY_LEADERSHIP = "COMMUNITY_LEADERSHIP"
    DEPARTMENTS = "DEPARTMENTS"
    EVENTS = "EVENTS"
    NOTIFICATION_SYSTEM = "NOTIFICATION_SYSTEM"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    USER_MANAGEMENT = "USER_MANAGEMENT"
    ROLE_MANAGEMENT = "ROLE_MANAGEMENT"
    PERMISSION_MANAGEMENT = "PERMISSION_MANAGEMENT"
    BRANCH_MANAGEMENT = "BRANCH_MANAGEMENT"
    TENANT_MANAGEMENT = "TENANT_MANAGEMENT"
    AUDIT_LOGS = "AUDIT_LOGS"
    SETTINGS = "SETTINGS"
    REPORTING = "REPORTING"
    DASHBOARD = "DASHBOARD"


class PermissionAction(str, enum.Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    PUBLISH = "PUBLISH"
    ARCHIVE = "ARCHIVE"
    EXPORT = "EXPORT"
    IMPORT = "IMPORT"


class PermissionScope(str, enum.Enum):
    ALL = "ALL"
    SPECIFIC = "SPECIFIC"


class OverrideType(str, enum.Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"


class SystemRole(str, enum.Enum):
    """Codes of the roles seeded for every tenant, highest privilege first."""
    SUPER_ADMIN = "SUPER_ADMIN"
    TENANT_ADMIN = "TENANT_ADMIN"
    PASTOR = "PASTOR"
    DEPARTMENT_HEAD = "DEPARTMENT_HEAD"
    COUNSELOR = "COUNSELOR"
    VOLUNTEER_COORDINATOR = "VOLUNTEER_COORDINATOR"
    WORKER = "WORKER"
    MEMBER = "MEMBER"
    GUEST = "GUEST"


class Permission(Base, TimestampMixin):
    """
    Catalog entry: one action on one module.

    Examples:
    - module="MEMBERS", action="READ"
    - module="ROLE_MANAGEMENT", action="UPDATE"
    """
    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("module", "action", name="uq_permissions_module_action"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    module: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, module={self.module}, action={self.action})>"


class Role(Base, TimestampMixin):
    """
    Tenant role.

    hierarchy_level runs 0-100, lower is more privileged; only system roles
    may sit at 0.
    """
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_roles_tenant_code"),
        CheckConstraint("hierarchy_level >= 0 AND hierarchy_level <= 100", name="ck_roles_hierarchy_level"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    tenant_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    hierarchy_level: Mapped[int] = mapped_column(Integer, default=50, nullable=False)

    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Soft delete
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    updated_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, code={self.code!r}, level={self.hierarchy_level})>"


class RolePermission(Base, TimestampMixin):
    """Grant of one permission to one role."""
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_role_permission"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    role_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    permission_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("permissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    branch_scope: Mapped[PermissionScope] = mapped_column(
        SQLEnum(PermissionScope), default=PermissionScope.ALL, nullable=False
    )
    department_scope: Mapped[PermissionScope] = mapped_column(
        SQLEnum(PermissionScope), default=PermissionScope.ALL, nullable=False
    )
    # Example: {"branch_ids": ["01H..."], "department_ids": ["01H..."]}
    custom_conditions: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    granted_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<RolePermission(role_id={self.role_id}, permission_id={self.permission_id}, active={self.is_active})>"


class UserRoleAssignment(Base, TimestampMixin):
    """Role held by a user."""
    __tablename__ = "user_role_assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "role_id", name="uq_user_role_assignments_user_role"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    role_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    assigned_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<UserRoleAssignment(user_id={self.user_id}, role_id={self.role_id}, active={self.is_active})>"


class UserPermissionOverride(Base, TimestampMixin):
    """
    Permission granted to (ALLOW) or withheld from (DENY) one user directly,
    independently of the user's roles.
    """
    __tablename__ = "user_permission_overrides"
    __table_args__ = (
        UniqueConstraint("user_id", "permission_id", name="uq_user_permission_overrides_user_permission"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    permission_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("permissions.id", ondelete="CASCADE"),
        nullable=False
    )

    grant_type: Mapped[OverrideType] = mapped_column(
        SQLEnum(OverrideType), default=OverrideType.ALLOW, nullable=False
    )
    granted_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<UserPermissionOverride(user_id={self.user_id}, permission_id={self.permission_id}, "
            f"type={self.grant_type})>"
        )


class AuditLog(Base):
    """
    Audit trail of role and permission changes.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Who performed the action
    user_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # What action was performed
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    tenant_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, resource={self.resource_type}:{self.resource_id})>"
