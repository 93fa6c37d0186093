"""
Community resolver.

Find-or-create for typed communities plus community CRUD. Within a
(tenant, branch, type) scope there is at most one community per distinguishing
attribute (see strategies.py) and at most one community per name.
"""
from typing import Any

from sqlalchemy import Select, String, cast, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.core.database.base import utcnow
from community_hub.core.database.repository import Repository
from community_hub.core.errors import BadRequestError, ConflictError, NotFoundError
from community_hub.core.responses import Pagination
from community_hub.features.communities.membership import CommunityMemberService
from community_hub.features.communities.models import Community, CommunityMember, CommunityType
from community_hub.features.communities.schemas import CommunityFilters, MembershipReport
from community_hub.features.communities.strategies import TYPE_SPECIFIC_FIELDS, normalize_profession, rule_for
from community_hub.features.tenants.models import Branch
from community_hub.utils import get_logger


log = get_logger(__name__)

COMMUNITY_SORT_FIELDS = {
    "name": Community.name,
    "type": Community.type,
    "status": Community.status,
    "created_at": Community.created_at,
}


class CommunityService:
    def __init__(self, session: AsyncSession, memberships: CommunityMemberService | None = None):
        self.session = session
        self.memberships = memberships or CommunityMemberService(session)
        self.communities = Repository(session, Community, conflict_message="Community already exists")
        self.branches = Repository(session, Branch)

    async def find_by_unique_attributes(
        self,
        tenant_id: str,
        branch_id: str | None,
        community_type: CommunityType,
        attrs: dict[str, Any],
    ) -> Community | None:
        """
        Community of ``community_type`` in the branch identified by ``attrs``.

        Typed communities match on their distinguishing attributes, other types
        on ``attrs["name"]``. Returns None when nothing matches or when the
        distinguishing attribute is missing.
        """
        rule = rule_for(community_type)
        if rule is not None:
            if attrs.get(rule.fields[0]) is None:
                return None
            clauses = rule.unique_criteria(attrs, partial=True)
        else:
            if not attrs.get("name"):
                return None
            clauses = [Community.name == attrs["name"]]

        stmt = (
            self._scope(tenant_id, branch_id, community_type)
            .where(*clauses)
            .order_by(Community.created_at)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    def _scope(self, tenant_id: str, branch_id: str | None, community_type: CommunityType) -> Select:
        return self.communities.select(
            tenant_id=tenant_id,
            branch_id=branch_id,
            type=community_type,
        )

    async def _validate_branch(self, tenant_id: str, branch_id: str | None) -> None:
        if branch_id and not await self.branches.exists(id=branch_id, tenant_id=tenant_id):
            raise BadRequestError(f"Branch with ID {branch_id} not found in this tenant")

    async def _validate_name(
        self, tenant_id: str, branch_id: str | None, community_type: CommunityType, name: str,
        exclude_id: str | None = None,
    ) -> None:
        stmt = self._scope(tenant_id, branch_id, community_type).where(Community.name == name)
        if exclude_id:
            stmt = stmt.where(Community.id != exclude_id)
        if (await self.session.execute(stmt.limit(1))).scalars().first() is not None:
            raise ConflictError(f'Community with name "{name}" already exists in this branch')

    async def _validate_type_attributes(
        self, tenant_id: str, branch_id: str | None, community_type: CommunityType, values: dict[str, Any],
        exclude_id: str | None = None,
    ) -> dict[str, Any]:
        """Check the type-specific uniqueness rule; returns the normalized type-specific columns."""
        columns = {name: None for name in TYPE_SPECIFIC_FIELDS}
        rule = rule_for(community_type)
        if rule is None:
            return columns

        attrs = rule.from_community_values(values)
        required = rule.fields[0]
        if attrs[required] is None:
            raise BadRequestError(f"{required} is required for {community_type.value} communities")

        stmt = self._scope(tenant_id, branch_id, community_type).where(*rule.unique_criteria(attrs))
        if exclude_id:
            stmt = stmt.where(Community.id != exclude_id)
        if (await self.session.execute(stmt.limit(1))).scalars().first() is not None:
            raise ConflictError(
                f"A {community_type.value} community with the same unique information already exists in this branch"
            )

        columns.update(attrs)
        return columns

    async def create_community(
        self,
        values: dict[str, Any],
        tenant_id: str,
        creator_id: str | None = None,
    ) -> tuple[Community, list[MembershipReport]]:
        """
        Create a community after the name and type-attribute checks.

        An optional ``member_ids`` list is added as MEMBERs on a best-effort
        basis; the per-member reports are returned alongside the community.
        """
        values = dict(values)
        member_ids = values.pop("member_ids", None) or []
        community_type = CommunityType(values["type"])
        branch_id = values.get("branch_id")

        await self._validate_branch(tenant_id, branch_id)
        await self._validate_name(tenant_id, branch_id, community_type, values["name"])
        type_columns = await self._validate_type_attributes(tenant_id, branch_id, community_type, values)
        values.update(type_columns)

        community = await self.communities.create(tenant_id=tenant_id, creator_id=creator_id, **values)
        await self.session.commit()
        log.info("Created %s community %s (%r)", community_type.value, community.id, community.name)

        reports: list[MembershipReport] = []
        if member_ids:
            try:
                reports = await self.memberships.add_members(community.id, member_ids, tenant_id)
            except Exception:
                log.exception("Initial members could not be added to community %s", community.id)
        return community, reports

    async def update_community(self, community_id: str, tenant_id: str, patch: dict[str, Any]) -> Community:
        community = await self.get_community(community_id, tenant_id)
        merged = {
            "name": community.name,
            "branch_id": community.branch_id,
            **{name: getattr(community, name) for name in TYPE_SPECIFIC_FIELDS},
            **patch,
        }
        branch_id = merged["branch_id"]

        if "branch_id" in patch:
            await self._validate_branch(tenant_id, branch_id)
        await self._validate_name(tenant_id, branch_id, community.type, merged["name"], exclude_id=community.id)
        type_columns = await self._validate_type_attributes(
            tenant_id, branch_id, community.type, merged, exclude_id=community.id
        )

        community = await self.communities.update(community, **{**patch, **type_columns})
        await self.session.commit()
        log.info("Updated community %s: %s", community.id, sorted(patch))
        return community

    async def get_community(
        self, community_id: str, tenant_id: str, community_type: CommunityType | None = None
    ) -> Community:
        filters: dict[str, Any] = {"id": community_id, "tenant_id": tenant_id}
        if community_type is not None:
            filters["type"] = community_type
        community = await self.communities.find_one(**filters)
        if community is None:
            raise NotFoundError(f"Community with ID {community_id} not found or you do not have permission")
        return community

    async def list_communities(
        self,
        tenant_id: str,
        filters: CommunityFilters | None = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> tuple[list[Community], Pagination]:
        filters = filters or CommunityFilters()
        stmt = select(Community).where(Community.tenant_id == tenant_id)

        for name in ("branch_id", "type", "status", "gender", "month"):
            value = getattr(filters, name)
            if value is not None:
                stmt = stmt.where(getattr(Community, name) == value)
        if filters.profession:
            stmt = stmt.where(Community.profession == normalize_profession(filters.profession))
        if filters.member_id:
            stmt = stmt.where(
                Community.id.in_(
                    select(CommunityMember.community_id).where(CommunityMember.member_id == filters.member_id)
                )
            )
        if not filters.include_archived:
            stmt = stmt.where(Community.archived_at.is_(None))
        if filters.search:
            pattern = f"%{filters.search}%"
            stmt = stmt.where(or_(
                Community.name.ilike(pattern),
                Community.location.ilike(pattern),
                cast(Community.gender, String).ilike(pattern),
                cast(Community.month, String).ilike(pattern),
            ))

        column = COMMUNITY_SORT_FIELDS.get(sort_by, Community.created_at)
        stmt = stmt.order_by(column.asc() if sort_order == "asc" else column.desc())
        return await self.communities.paginate(stmt, page, limit)

    async def archive_community(self, community_id: str, tenant_id: str) -> Community:
        """Soft archive; memberships are left as they are."""
        community = await self.get_community(community_id, tenant_id)
        community = await self.communities.update(community, archived_at=utcnow())
        await self.session.commit()
        log.info("Archived community %s", community_id)
        return community

    async def delete_community(self, community_id: str, tenant_id: str) -> None:
        """Hard delete. Memberships are not cascaded and dangle until the next sync."""
        community = await self.get_community(community_id, tenant_id)
        try:
            await self.communities.delete(community)
        except ConflictError as exc:
            # Backends enforcing foreign keys refuse while membership rows remain
            raise ConflictError(
                f"Community with ID {community_id} still has members; remove them or archive it instead"
            ) from exc
        await self.session.commit()
        log.info("Deleted community %s", community_id)
