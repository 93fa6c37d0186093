"""
Member service.

Creating a member, or changing one of the attributes that drive community
placement, runs the community sync. Sync is best effort: its failures are
returned as steps (or logged) and never fail the member write.
"""
from typing import Any

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.core import config
from community_hub.core.database.repository import Repository
from community_hub.core.errors import BadRequestError, NotFoundError
from community_hub.core.responses import Pagination
from community_hub.features.communities.schemas import SyncStep
from community_hub.features.communities.strategies import COMMUNITY_TYPE_RULES
from community_hub.features.communities.sync import CommunitySyncService
from community_hub.features.members.models import Member
from community_hub.features.tenants.models import Branch
from community_hub.utils import get_logger


log = get_logger(__name__)

SYNC_FIELDS = tuple(dict.fromkeys(name for rule in COMMUNITY_TYPE_RULES.values() for name in rule.member_fields))


class MemberService:
    def __init__(self, session: AsyncSession, sync: CommunitySyncService | None = None):
        self.session = session
        self.members = Repository(session, Member)
        self.branches = Repository(session, Branch)
        self.sync = sync or CommunitySyncService(session)

    async def _validate_branch(self, branch_id: str | None, tenant_id: str) -> None:
        if branch_id and not await self.branches.exists(id=branch_id, tenant_id=tenant_id):
            raise BadRequestError("Branch not found or does not belong to this tenant")

    async def create_member(self, values: dict[str, Any], tenant_id: str) -> tuple[Member, list[SyncStep]]:
        await self._validate_branch(values.get("branch_id"), tenant_id)
        member = await self.members.create(tenant_id=tenant_id, **values)
        await self.session.commit()
        log.info("Created member %s in tenant %s", member.id, tenant_id)

        attrs = {name: values.get(name) for name in SYNC_FIELDS}
        steps = await self._run_sync(member, attrs, tenant_id)
        return member, steps

    async def update_member(
        self, member_id: str, tenant_id: str, patch: dict[str, Any]
    ) -> tuple[Member, list[SyncStep]]:
        """Apply ``patch``; communities are re-synced only for attributes whose value changed."""
        member = await self.get_member(member_id, tenant_id)
        if "branch_id" in patch:
            await self._validate_branch(patch["branch_id"], tenant_id)

        before = {name: getattr(member, name) for name in SYNC_FIELDS}
        member = await self.members.update(member, **patch)
        await self.session.commit()
        log.info("Updated member %s: %s", member_id, sorted(patch))

        changed = {name for name in SYNC_FIELDS if name in patch and patch[name] != before[name]}
        attrs: dict[str, Any] = {}
        for rule in COMMUNITY_TYPE_RULES.values():
            if changed.intersection(rule.member_fields):
                attrs.update({name: getattr(member, name) for name in rule.member_fields})

        steps = await self._run_sync(member, attrs, tenant_id) if attrs else []
        return member, steps

    async def _run_sync(self, member: Member, attrs: dict[str, Any], tenant_id: str) -> list[SyncStep]:
        member_id = member.id
        if not config.COMMUNITY_SYNC_ENABLED or not any(value is not None for value in attrs.values()):
            return []
        try:
            steps = await self.sync.sync_member_communities(member_id, attrs, tenant_id, member.branch_id)
        except Exception:
            await self.session.rollback()
            log.exception("Community sync failed for member %s", member_id)
            steps = []
        await self.session.refresh(member)
        return steps

    async def get_member(self, member_id: str, tenant_id: str) -> Member:
        member = await self.members.find_one(id=member_id, tenant_id=tenant_id)
        if member is None:
            raise NotFoundError(f"Member with ID {member_id} not found")
        return member

    async def list_members(
        self,
        tenant_id: str,
        branch_id: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Member], Pagination]:
        filters: dict[str, Any] = {"tenant_id": tenant_id}
        if branch_id:
            filters["branch_id"] = branch_id
        stmt = self.members.select(**filters)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(
                Member.first_name.ilike(pattern),
                Member.last_name.ilike(pattern),
                Member.email.ilike(pattern),
            ))
        stmt = stmt.order_by(Member.last_name, Member.first_name)
        return await self.members.paginate(stmt, page, limit)

    async def delete_member(self, member_id: str, tenant_id: str) -> None:
        """Soft delete; memberships stay in place."""
        member = await self.get_member(member_id, tenant_id)
        await self.members.update(member, is_deleted=True)
        await self.session.commit()
        log.info("Deleted member %s", member_id)
