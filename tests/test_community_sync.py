"""Tests for attribute-driven community placement."""

from datetime import date

import pytest
from sqlalchemy import select

from community_hub.features.communities.models import Community, CommunityMember, CommunityType, Month
from community_hub.features.communities.schemas import CommunityAssignmentRequest, CommunitySyncAttributes
from community_hub.features.communities.sync import CommunitySyncService
from community_hub.features.members.models import Gender
from tests.factories import make_branch, make_community, make_member


async def _communities_of(session, member_id: str, community_type: CommunityType) -> list[Community]:
    result = await session.execute(
        select(Community)
        .join(CommunityMember, CommunityMember.community_id == Community.id)
        .where(CommunityMember.member_id == member_id, Community.type == community_type)
    )
    return list(result.scalars().all())


def _steps(steps) -> list[tuple[str, bool]]:
    return [(s.step, s.success) for s in steps]


@pytest.mark.asyncio
async def test_first_sync_creates_and_joins_profession_community(session, tenant, branch) -> None:
    member = await make_member(session, tenant, branch, profession="software engineer")
    sync = CommunitySyncService(session, notify_leaders=False)

    steps = await sync.sync_member_communities(member.id, {"profession": "software engineer"}, tenant.id)

    assert _steps(steps) == [
        ("create_profession_community", True),
        ("add_profession_membership", True),
    ]
    assert steps[0].data["name"] == "Software Engineer profession community"
    communities = await _communities_of(session, member.id, CommunityType.PROFESSION)
    assert [c.profession for c in communities] == ["SOFTWARE_ENGINEER"]
    assert communities[0].branch_id == branch.id

    await session.refresh(member)
    assert member.profession == "SOFTWARE_ENGINEER"


@pytest.mark.asyncio
async def test_repeated_sync_is_idempotent(session, tenant, branch) -> None:
    member = await make_member(session, tenant, branch)
    sync = CommunitySyncService(session, notify_leaders=False)
    attrs = CommunitySyncAttributes(profession="Software Engineer")

    await sync.sync_member_communities(member.id, attrs, tenant.id)
    steps = await sync.sync_member_communities(member.id, attrs, tenant.id)

    assert _steps(steps) == [("membership_check", False)]
    assert steps[0].message == "Member already belongs to this profession community"
    assert len(await _communities_of(session, member.id, CommunityType.PROFESSION)) == 1
    result = await session.execute(select(Community).where(Community.type == CommunityType.PROFESSION))
    assert len(result.scalars().all()) == 1


@pytest.mark.asyncio
async def test_location_change_moves_member_between_cells(session, tenant, branch) -> None:
    member = await make_member(session, tenant, branch)
    sync = CommunitySyncService(session, notify_leaders=False)

    await sync.sync_member_communities(member.id, {"location": "Lagos", "country": "Nigeria"}, tenant.id)
    lagos = (await _communities_of(session, member.id, CommunityType.CELL))[0]
    steps = await sync.sync_member_communities(member.id, {"location": "Accra", "country": "Ghana"}, tenant.id)

    assert _steps(steps) == [
        ("create_cell_community", True),
        ("add_cell_membership", True),
        ("remove_old_cell_memberships", True),
    ]
    assert steps[2].data == {"community_ids": [lagos.id]}
    cells = await _communities_of(session, member.id, CommunityType.CELL)
    assert [(c.location, c.country) for c in cells] == [("Accra", "Ghana")]
    assert cells[0].name == "Accra cell community"


@pytest.mark.asyncio
async def test_existing_community_is_reused_and_canonical_values_copied(session, tenant, branch) -> None:
    cell = await make_community(
        session, tenant, branch, "Lagos cell", CommunityType.CELL, location="Lagos", country="Nigeria"
    )
    member = await make_member(session, tenant, branch)
    sync = CommunitySyncService(session, notify_leaders=False)

    steps = await sync.sync_member_communities(member.id, {"location": "lagos"}, tenant.id)

    assert _steps(steps) == [("add_cell_membership", True)]
    assert steps[0].data == {"community_id": cell.id}
    await session.refresh(member)
    assert (member.location, member.country) == ("Lagos", "Nigeria")


@pytest.mark.asyncio
async def test_all_kinds_are_synced_together(session, tenant, branch) -> None:
    member = await make_member(session, tenant, branch)
    sync = CommunitySyncService(session, notify_leaders=False)

    steps = await sync.sync_member_communities(
        member.id,
        {"date_of_birth": date(1992, 3, 9), "gender": Gender.FEMALE, "location": "Ikeja"},
        tenant.id,
    )

    assert [s.step for s in steps if s.step.startswith("create_")] == [
        "create_cell_community",
        "create_tribe_community",
        "create_ministry_community",
    ]
    assert all(s.success for s in steps)
    tribes = await _communities_of(session, member.id, CommunityType.TRIBE)
    assert tribes[0].month == Month.MARCH
    assert tribes[0].name == "March tribe community"
    ministries = await _communities_of(session, member.id, CommunityType.MINISTRY)
    assert ministries[0].name == "Women's Ministry Community"


@pytest.mark.asyncio
async def test_no_community_is_created_in_a_foreign_branch(session, tenant, branch) -> None:
    member = await make_member(session, tenant, branch)
    other = await make_branch(session, tenant, "Accra")
    sync = CommunitySyncService(session, notify_leaders=False)

    steps = await sync.sync_member_communities(member.id, {"profession": "Nurse"}, tenant.id, branch_id=other.id)

    assert _steps(steps) == [("branch_validation", False)]
    assert steps[0].message == "Profession community does not belong to the member's branch"
    result = await session.execute(select(Community))
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_member_is_not_joined_to_a_foreign_branch_community(session, tenant, branch) -> None:
    member = await make_member(session, tenant, branch)
    other = await make_branch(session, tenant, "Accra")
    await make_community(session, tenant, other, "Nurses", CommunityType.PROFESSION, profession="NURSE")
    sync = CommunitySyncService(session, notify_leaders=False)

    steps = await sync.sync_member_communities(member.id, {"profession": "nurse"}, tenant.id, branch_id=other.id)

    assert _steps(steps) == [("branch_validation", False)]
    assert await _communities_of(session, member.id, CommunityType.PROFESSION) == []


@pytest.mark.asyncio
async def test_unknown_member_yields_lookup_failure(session, tenant) -> None:
    steps = await CommunitySyncService(session).sync_member_communities("missing", {"profession": "x"}, tenant.id)

    assert _steps(steps) == [("member_lookup", False)]


@pytest.mark.asyncio
async def test_absent_attributes_are_left_alone(session, tenant, branch) -> None:
    member = await make_member(session, tenant, branch)

    steps = await CommunitySyncService(session).sync_member_communities(member.id, {}, tenant.id)

    assert steps == []


@pytest.mark.asyncio
async def test_explicit_assignment_checks_type_and_replaces_old(session, tenant, branch) -> None:
    member = await make_member(session, tenant, branch)
    sync = CommunitySyncService(session, notify_leaders=False)
    await sync.sync_member_communities(member.id, {"location": "Lagos"}, tenant.id)
    old = (await _communities_of(session, member.id, CommunityType.CELL))[0]
    ikeja = await make_community(session, tenant, branch, "Ikeja cell", CommunityType.CELL, location="Ikeja")
    choir = await make_community(session, tenant, branch, "Choir")

    steps = await sync.assign_member_to_communities(
        member.id,
        CommunityAssignmentRequest(cell_community_id=ikeja.id, tribe_community_id=choir.id),
        tenant.id,
    )

    assert _steps(steps) == [
        ("add_cell_membership", True),
        ("remove_old_cell_memberships", True),
        ("tribe_lookup", False),
    ]
    assert steps[1].data == {"community_ids": [old.id]}
    assert steps[2].message == "Tribe community not found"
    assert [c.id for c in await _communities_of(session, member.id, CommunityType.CELL)] == [ikeja.id]
