"""
Community membership engine.

Owns the (community_id, member_id) rows: bulk add with a per-member report,
role/status updates, removal and reads. A member appears in a community at most
once; this is checked before insert so bulk adds can report duplicates per
member, and the composite primary key catches whatever slips through a race.
"""
from typing import Any

from sqlalchemy import Select, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.core.database.base import utcnow
from community_hub.core.database.repository import Repository
from community_hub.core.errors import NotFoundError
from community_hub.core.responses import Pagination
from community_hub.features.communities.models import (
    Community,
    CommunityMember,
    CommunityMemberStatus,
    CommunityRole,
    CommunityType,
)
from community_hub.features.communities.notifications import MembershipNotifier
from community_hub.features.communities.schemas import CommunityMemberResponse, MembershipReport
from community_hub.features.members.models import Member
from community_hub.utils import get_logger


log = get_logger(__name__)

MEMBER_SORT_FIELDS = {
    "joined_at": CommunityMember.joined_at,
    "role": CommunityMember.role,
    "status": CommunityMember.status,
    "first_name": Member.first_name,
    "last_name": Member.last_name,
}


class CommunityMemberService:
    def __init__(self, session: AsyncSession, notifier: MembershipNotifier | None = None):
        self.session = session
        self.notifier = notifier or MembershipNotifier(session)
        self.communities = Repository(session, Community)
        self.members = Repository(session, Member)
        self.memberships = Repository(
            session, CommunityMember, conflict_message="Member is already part of this community"
        )

    async def get_community(self, community_id: str, tenant_id: str) -> Community:
        community = await self.communities.find_one(id=community_id, tenant_id=tenant_id)
        if community is None:
            raise NotFoundError(f"Community with ID {community_id} not found or you do not have permission")
        return community

    async def add_members(
        self,
        community_id: str,
        member_ids: list[str],
        tenant_id: str,
        role: CommunityRole = CommunityRole.MEMBER,
        status: CommunityMemberStatus = CommunityMemberStatus.ACTIVE,
        notes: str | None = None,
        notify_leaders: bool = False,
    ) -> list[MembershipReport]:
        """
        Add members one by one and report the outcome of each.

        Raises NotFoundError when the community is missing or belongs to another
        tenant; every per-member problem becomes a failed report entry instead.
        Successful rows are committed as they are added, so a later failure
        never undoes an earlier success.
        """
        community = await self.get_community(community_id, tenant_id)
        branch_id = community.branch_id

        reports: list[MembershipReport] = []
        for member_id in member_ids:
            try:
                existing = await self.memberships.find_one(community_id=community_id, member_id=member_id)
                if existing is not None:
                    reports.append(self._failed(
                        member_id, f"Member with ID {member_id} is already part of community {community_id}"
                    ))
                    continue

                filters: dict[str, Any] = {"id": member_id, "tenant_id": tenant_id}
                if branch_id:
                    filters["branch_id"] = branch_id
                member = await self.members.find_one(**filters)
                if member is None:
                    reports.append(self._failed(member_id, "Member not found or does not belong to community branch"))
                    continue

                row = await self.memberships.create(
                    community_id=community_id,
                    member_id=member_id,
                    role=role,
                    status=status,
                    notes=notes,
                    joined_at=utcnow(),
                )
                await self.session.commit()
                reports.append(MembershipReport(
                    member_id=member_id,
                    status="success",
                    data=CommunityMemberResponse.model_validate(row),
                ))
                log.info("Added member %s to community %s as %s", member_id, community_id, role.value)
            except Exception as e:
                await self.session.rollback()
                reason = getattr(e, "message", None) or str(e)
                reports.append(self._failed(member_id, reason))
                continue

            await self.notifier.membership_created(community, member_id, notify_leaders=notify_leaders)

        return reports

    def _failed(self, member_id: str, reason: str) -> MembershipReport:
        log.warning("Could not add member %s: %s", member_id, reason)
        return MembershipReport(member_id=member_id, status="failed", reason=reason)

    async def get_member(self, community_id: str, member_id: str, tenant_id: str) -> CommunityMember:
        await self.get_community(community_id, tenant_id)
        row = await self.memberships.find_one(community_id=community_id, member_id=member_id)
        if row is None:
            raise NotFoundError(f"Member with ID {member_id} is not part of community {community_id}")
        return row

    async def update_member(
        self, community_id: str, member_id: str, tenant_id: str, patch: dict[str, Any]
    ) -> CommunityMember:
        row = await self.get_member(community_id, member_id, tenant_id)
        row = await self.memberships.update(row, **patch)
        await self.session.commit()
        log.info("Updated membership %s/%s: %s", community_id, member_id, sorted(patch))
        return row

    async def remove_member(self, community_id: str, member_id: str, tenant_id: str) -> None:
        row = await self.get_member(community_id, member_id, tenant_id)
        await self.memberships.delete(row)
        await self.session.commit()
        log.info("Removed member %s from community %s", member_id, community_id)

    async def list_members(
        self,
        tenant_id: str,
        community_id: str | None = None,
        role: CommunityRole | None = None,
        status: CommunityMemberStatus | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "joined_at",
        sort_order: str = "desc",
    ) -> tuple[list[CommunityMember], Pagination]:
        stmt: Select = (
            select(CommunityMember)
            .join(Community, Community.id == CommunityMember.community_id)
            .join(Member, Member.id == CommunityMember.member_id)
            .where(Community.tenant_id == tenant_id)
        )
        if community_id:
            stmt = stmt.where(CommunityMember.community_id == community_id)
        if role:
            stmt = stmt.where(CommunityMember.role == role)
        if status:
            stmt = stmt.where(CommunityMember.status == status)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(
                Member.first_name.ilike(pattern),
                Member.last_name.ilike(pattern),
                Member.email.ilike(pattern),
                Community.name.ilike(pattern),
            ))

        column = MEMBER_SORT_FIELDS.get(sort_by, CommunityMember.joined_at)
        stmt = stmt.order_by(column.asc() if sort_order == "asc" else column.desc())
        return await self.memberships.paginate(stmt, page, limit)

    async def active_communities_of_type(
        self,
        member_id: str,
        tenant_id: str,
        community_type: CommunityType,
        branch_id: str | None,
    ) -> list[Community]:
        """Communities of ``community_type`` in the branch where the member holds an active membership."""
        stmt = (
            select(Community)
            .join(CommunityMember, CommunityMember.community_id == Community.id)
            .where(
                CommunityMember.member_id == member_id,
                CommunityMember.status == CommunityMemberStatus.ACTIVE,
                CommunityMember.left_at.is_(None),
                Community.tenant_id == tenant_id,
                Community.type == community_type,
                Community.branch_id == branch_id if branch_id else Community.branch_id.is_(None),
            )
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
