"""
Community sync orchestrator.

Keeps a member's typed-community memberships in line with their profile. For
every community kind whose attribute is present, the member is placed in the
matching community of their branch (created on first need) and then removed
from the other communities of that kind. Nothing here is transactional across
steps: each step commits on its own and reports a SyncStep, and no exception
escapes a kind's processing.
"""
from typing import Any, Mapping

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.core import config
from community_hub.core.database.repository import Repository
from community_hub.features.communities.models import Community, CommunityStatus
from community_hub.features.communities.resolver import CommunityService
from community_hub.features.communities.schemas import SyncStep
from community_hub.features.communities.strategies import COMMUNITY_TYPE_RULES, CommunityTypeRule
from community_hub.features.members.models import Member
from community_hub.utils import get_logger


log = get_logger(__name__)


def _as_dict(values: BaseModel | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(values, BaseModel):
        values = values.model_dump()
    return {key: value for key, value in values.items() if value is not None}


class CommunitySyncService:
    def __init__(
        self,
        session: AsyncSession,
        communities: CommunityService | None = None,
        notify_leaders: bool | None = None,
    ):
        self.session = session
        self.communities = communities or CommunityService(session)
        self.memberships = self.communities.memberships
        self.members = Repository(session, Member)
        self.notify_leaders = config.NOTIFY_LEADERS_ON_SYNC if notify_leaders is None else notify_leaders

    async def sync_member_communities(
        self,
        member_id: str,
        attrs: BaseModel | Mapping[str, Any],
        tenant_id: str,
        branch_id: str | None = None,
    ) -> list[SyncStep]:
        """
        Place the member in the communities matching ``attrs``.

        Only kinds whose trigger attribute is present in ``attrs`` are touched.
        ``branch_id`` defaults to the member's branch; communities are never
        matched or created across branches.
        """
        values = _as_dict(attrs)
        member = await self.members.find_one(id=member_id, tenant_id=tenant_id)
        if member is None:
            return [SyncStep(step="member_lookup", success=False, message=f"No member found with id {member_id}")]

        member_branch_id = member.branch_id
        member_values = {
            name: getattr(member, name)
            for rule in COMMUNITY_TYPE_RULES.values()
            for name in rule.member_fields
        }
        if branch_id is None:
            branch_id = member_branch_id

        steps: list[SyncStep] = []
        for rule in COMMUNITY_TYPE_RULES.values():
            if values.get(rule.trigger) is None:
                continue
            kind_values = {name: values.get(name, member_values[name]) for name in rule.member_fields}
            try:
                await self._sync_kind(rule, member_id, member_branch_id, kind_values, tenant_id, branch_id, steps)
            except Exception:
                await self.session.rollback()
                log.exception("Unexpected error syncing %s community for member %s", rule.kind, member_id)
                steps.append(SyncStep(
                    step=f"{rule.kind}_update",
                    success=False,
                    message=f"Unexpected error during {rule.kind} update",
                ))
        return steps

    async def _sync_kind(
        self,
        rule: CommunityTypeRule,
        member_id: str,
        member_branch_id: str | None,
        values: Mapping[str, Any],
        tenant_id: str,
        branch_id: str | None,
        steps: list[SyncStep],
    ) -> None:
        attrs = rule.attributes(values)
        if attrs is None:
            log.warning("Skipping %s sync for member %s: unusable %s", rule.kind, member_id, rule.trigger)
            return

        community = await self.communities.find_by_unique_attributes(
            tenant_id, branch_id, rule.community_type, attrs
        )
        if community is None:
            if branch_id != member_branch_id:
                steps.append(self._branch_failure(rule))
                return
            community = await self._create_for(rule, attrs, tenant_id, branch_id, steps)
            if community is None:
                return

        await self._join(rule, member_id, member_branch_id, community, tenant_id, steps, self.notify_leaders)

    async def _create_for(
        self,
        rule: CommunityTypeRule,
        attrs: dict[str, Any],
        tenant_id: str,
        branch_id: str | None,
        steps: list[SyncStep],
    ) -> Community | None:
        step = f"create_{rule.kind}_community"
        try:
            community, _ = await self.communities.create_community(
                {
                    "name": rule.build_name(attrs),
                    "type": rule.community_type,
                    "status": CommunityStatus.ACTIVE,
                    "branch_id": branch_id,
                    **attrs,
                },
                tenant_id,
            )
        except Exception as e:
            await self.session.rollback()
            reason = getattr(e, "message", None) or str(e)
            log.warning("Could not create %s community %s: %s", rule.kind, attrs, reason)
            steps.append(SyncStep(step=step, success=False, message=reason))
            return None
        steps.append(SyncStep(step=step, success=True, data={"community_id": community.id, "name": community.name}))
        return community

    def _branch_failure(self, rule: CommunityTypeRule) -> SyncStep:
        return SyncStep(
            step="branch_validation",
            success=False,
            message=f"{rule.kind.capitalize()} community does not belong to the member's branch",
        )

    async def _join(
        self,
        rule: CommunityTypeRule,
        member_id: str,
        member_branch_id: str | None,
        community: Community,
        tenant_id: str,
        steps: list[SyncStep],
        notify_leaders: bool,
    ) -> None:
        """Add the member to ``community`` and leave the other communities of its kind."""
        kind = rule.kind
        community_id = community.id
        if community.branch_id != member_branch_id:
            steps.append(self._branch_failure(rule))
            return

        current = await self.memberships.active_communities_of_type(
            member_id, tenant_id, rule.community_type, member_branch_id
        )
        old_ids = [c.id for c in current if c.id != community_id]
        already = len(old_ids) != len(current) or await self.memberships.memberships.exists(
            community_id=community_id, member_id=member_id
        )
        if already:
            steps.append(SyncStep(
                step="membership_check",
                success=False,
                message=f"Member already belongs to this {kind} community",
            ))
            return

        canonical = rule.canonical_patch(community)
        reports = await self.memberships.add_members(
            community_id, [member_id], tenant_id, notify_leaders=notify_leaders
        )
        report = reports[0]
        if report.status != "success":
            steps.append(SyncStep(
                step=f"add_{kind}_membership",
                success=False,
                message=f"Failed to add member to {kind} community: {report.reason}",
            ))
            return
        steps.append(SyncStep(step=f"add_{kind}_membership", success=True, data={"community_id": community_id}))

        if canonical:
            try:
                member = await self.members.find_one(id=member_id, tenant_id=tenant_id)
                await self.members.update(member, **canonical)
                await self.session.commit()
            except Exception as e:
                await self.session.rollback()
                log.warning("Could not normalize member %s from %s community: %s", member_id, kind, e)
                steps.append(SyncStep(
                    step=f"normalize_{kind}_attributes",
                    success=False,
                    message=f"Failed to copy {kind} community attributes onto the member",
                ))

        if not old_ids:
            return
        failed = []
        for old_id in old_ids:
            try:
                await self.memberships.remove_member(old_id, member_id, tenant_id)
            except Exception as e:
                await self.session.rollback()
                log.warning("Could not remove member %s from %s community %s: %s", member_id, kind, old_id, e)
                failed.append(old_id)

        if failed:
            steps.extend(
                SyncStep(
                    step=f"remove_old_{kind}_memberships",
                    success=False,
                    message=f"Failed to remove old {kind} membership",
                    data={"community_id": old_id},
                )
                for old_id in failed
            )
        else:
            steps.append(SyncStep(
                step=f"remove_old_{kind}_memberships",
                success=True,
                data={"community_ids": old_ids},
            ))

    async def assign_member_to_communities(
        self,
        member_id: str,
        community_ids: BaseModel | Mapping[str, Any],
        tenant_id: str,
    ) -> list[SyncStep]:
        """
        Place the member in explicitly chosen communities.

        ``community_ids`` carries ``{kind}_community_id`` keys; each community
        must exist with the matching type, then follows the same join pipeline
        as attribute sync.
        """
        values = _as_dict(community_ids)
        member = await self.members.find_one(id=member_id, tenant_id=tenant_id)
        if member is None:
            return [SyncStep(step="member_lookup", success=False, message=f"No member found with id {member_id}")]
        member_branch_id = member.branch_id

        steps: list[SyncStep] = []
        for rule in COMMUNITY_TYPE_RULES.values():
            community_id = values.get(f"{rule.kind}_community_id")
            if not community_id:
                continue
            try:
                community = await self.communities.communities.find_one(
                    id=community_id, tenant_id=tenant_id, type=rule.community_type
                )
                if community is None:
                    steps.append(SyncStep(
                        step=f"{rule.kind}_lookup",
                        success=False,
                        message=f"{rule.kind.capitalize()} community not found",
                    ))
                    continue
                await self._join(rule, member_id, member_branch_id, community, tenant_id, steps, False)
            except Exception:
                await self.session.rollback()
                log.exception("Unexpected error assigning %s community to member %s", rule.kind, member_id)
                steps.append(SyncStep(
                    step=f"{rule.kind}_update",
                    success=False,
                    message=f"Unexpected error during {rule.kind} update",
                ))
        return steps
