"""Row builders for tests; each one commits what it creates."""

from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.features.communities.models import Community, CommunityStatus, CommunityType
from community_hub.features.members.models import Member
from community_hub.features.permissions.models import Permission, Role
from community_hub.features.tenants.models import Branch, Tenant
from community_hub.features.users.models import User


async def make_branch(session: AsyncSession, tenant: Tenant, name: str) -> Branch:
    branch = Branch(tenant_id=tenant.id, name=name)
    session.add(branch)
    await session.commit()
    return branch


async def make_user(session: AsyncSession, tenant: Tenant | None, email: str, is_admin: bool = False) -> User:
    user = User(
        tenant_id=tenant.id if tenant else None,
        email=email,
        name=email.split("@")[0],
        is_admin=is_admin,
    )
    session.add(user)
    await session.commit()
    return user


async def make_member(
    session: AsyncSession,
    tenant: Tenant,
    branch: Branch | None,
    first_name: str = "Ada",
    **values,
) -> Member:
    values.setdefault("last_name", "Obi")
    member = Member(
        tenant_id=tenant.id,
        branch_id=branch.id if branch else None,
        first_name=first_name,
        **values,
    )
    session.add(member)
    await session.commit()
    return member


async def make_community(
    session: AsyncSession,
    tenant: Tenant,
    branch: Branch | None,
    name: str,
    community_type: CommunityType = CommunityType.OTHER,
    **values,
) -> Community:
    community = Community(
        tenant_id=tenant.id,
        branch_id=branch.id if branch else None,
        name=name,
        type=community_type,
        status=CommunityStatus.ACTIVE,
        **values,
    )
    session.add(community)
    await session.commit()
    return community


async def make_permission(session: AsyncSession, module: str, action: str, is_active: bool = True) -> Permission:
    permission = Permission(module=module, action=action, is_active=is_active)
    session.add(permission)
    await session.commit()
    return permission


async def make_role(session: AsyncSession, tenant: Tenant, code: str, hierarchy_level: int = 50, **values) -> Role:
    role = Role(
        tenant_id=tenant.id,
        name=code.replace("_", " ").title(),
        code=code,
        hierarchy_level=hierarchy_level,
        **values,
    )
    session.add(role)
    await session.commit()
    return role
