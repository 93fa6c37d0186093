"""
Audit logging helpers.
"""
from typing import Dict, Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.features.permissions.models import AuditLog
from community_hub.utils import get_logger


log = get_logger(__name__)


async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Create an audit log entry.

    The entry is flushed, not committed, so it lands in the caller's
    transaction and disappears with it on rollback.

    Args:
        db: Database session
        user_id: User performing the action
        action: Action performed (e.g., "create", "update", "delete", "assign")
        resource_type: Type of resource (e.g., "role", "role_permission", "user_role")
        resource_id: ID of the resource
        tenant_id: Tenant context
        details: Additional details
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        tenant_id=tenant_id,
        details=details,
    )

    db.add(audit_log)
    await db.flush()

    log.info(
        "Audit: user=%s action=%s resource=%s:%s tenant=%s",
        user_id, action, resource_type, resource_id, tenant_id
    )

    return audit_log
