"""
Membership notifications.

The membership engine calls MembershipNotifier.membership_created after every
successful add. Delivery is best effort: every failure is logged here and never
reaches the caller. Subclass and override ``deliver`` to plug in a mail or push
transport.
"""
from dataclasses import dataclass

from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.features.communities.models import Community, CommunityMember, CommunityRole
from community_hub.features.members.models import Member
from community_hub.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class MembershipEvent:
    """A notification to one recipient about a new membership."""
    kind: str  # "welcome" to the new member, "new_member" to leaders
    recipient_id: str
    member_id: str
    community_id: str
    community_name: str


class MembershipNotifier:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def membership_created(self, community: Community, member_id: str, notify_leaders: bool = False) -> None:
        # A rolled back batch entry leaves the community expired
        try:
            if inspect(community).expired_attributes:
                await self.session.refresh(community)
        except Exception:
            log.exception("Could not reload community for membership of %s", member_id)
            return

        events = [
            MembershipEvent("welcome", member_id, member_id, community.id, community.name),
        ]
        try:
            if notify_leaders:
                for leader_id in await self.leader_ids(community):
                    if leader_id != member_id:
                        events.append(
                            MembershipEvent("new_member", leader_id, member_id, community.id, community.name)
                        )
        except Exception:
            log.exception("Could not resolve leaders of community %s", community.id)

        for event in events:
            try:
                await self.deliver(event)
            except Exception:
                log.exception("Failed to deliver %s notification to %s", event.kind, event.recipient_id)

    async def leader_ids(self, community: Community) -> list[str]:
        """LEADER / ASSISTANT_LEADER members plus the designated leaders, deduplicated in order."""
        result = await self.session.execute(
            select(CommunityMember.member_id)
            .where(
                CommunityMember.community_id == community.id,
                CommunityMember.role.in_([CommunityRole.LEADER, CommunityRole.ASSISTANT_LEADER]),
            )
            .order_by(CommunityMember.joined_at)
        )
        candidates = list(result.scalars().all())
        candidates += [community.leader_id, community.assistant_leader_id]

        seen = []
        for candidate in candidates:
            if candidate and candidate not in seen:
                seen.append(candidate)
        return seen

    async def deliver(self, event: MembershipEvent) -> None:
        member = await self.session.get(Member, event.recipient_id)
        if member is None or not member.email:
            log.debug("No address for %s, skipping %s notification", event.recipient_id, event.kind)
            return
        log.info(
            "Notify %s (%s): %s in community %r",
            member.email, event.kind, event.member_id, event.community_name
        )
