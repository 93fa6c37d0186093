"""Tests for community find-or-create rules and community CRUD."""

import pytest

from community_hub.core.errors import BadRequestError, ConflictError, NotFoundError
from community_hub.features.communities.models import CommunityType, Month
from community_hub.features.communities.resolver import CommunityService
from community_hub.features.communities.schemas import CommunityFilters
from community_hub.features.members.models import Gender
from tests.factories import make_branch, make_community, make_member


def _cell(name: str, location: str, country: str | None = None, **values) -> dict:
    return {"name": name, "type": CommunityType.CELL, "location": location, "country": country, **values}


@pytest.mark.asyncio
async def test_cell_lookup_is_case_insensitive_and_partial(session, tenant, branch) -> None:
    service = CommunityService(session)
    created, _ = await service.create_community(_cell("Lagos", "Lagos", "Nigeria", branch_id=branch.id), tenant.id)

    found = await service.find_by_unique_attributes(
        tenant.id, branch.id, CommunityType.CELL, {"location": "LAGOS"}
    )
    missing = await service.find_by_unique_attributes(
        tenant.id, branch.id, CommunityType.CELL, {"location": "lagos", "country": "Ghana"}
    )
    other_branch = await service.find_by_unique_attributes(
        tenant.id, None, CommunityType.CELL, {"location": "Lagos"}
    )

    assert found is not None and found.id == created.id
    assert missing is None
    assert other_branch is None


@pytest.mark.asyncio
async def test_missing_distinguishing_attribute_finds_nothing(session, tenant, branch) -> None:
    service = CommunityService(session)
    await service.create_community(_cell("Lagos", "Lagos", branch_id=branch.id), tenant.id)

    assert await service.find_by_unique_attributes(tenant.id, branch.id, CommunityType.CELL, {}) is None


@pytest.mark.asyncio
async def test_untyped_communities_match_by_name(session, tenant, branch) -> None:
    service = CommunityService(session)
    community = await make_community(session, tenant, branch, "Choir")

    found = await service.find_by_unique_attributes(tenant.id, branch.id, CommunityType.OTHER, {"name": "Choir"})

    assert found.id == community.id


@pytest.mark.asyncio
async def test_same_name_in_branch_conflicts(session, tenant, branch) -> None:
    service = CommunityService(session)
    await service.create_community({"name": "Choir", "type": CommunityType.OTHER, "branch_id": branch.id}, tenant.id)

    with pytest.raises(ConflictError) as exc:
        await service.create_community(
            {"name": "Choir", "type": CommunityType.OTHER, "branch_id": branch.id}, tenant.id
        )
    assert exc.value.message == 'Community with name "Choir" already exists in this branch'

    other = await make_branch(session, tenant, "Abuja")
    community, _ = await service.create_community(
        {"name": "Choir", "type": CommunityType.OTHER, "branch_id": other.id}, tenant.id
    )
    assert community.branch_id == other.id


@pytest.mark.asyncio
async def test_duplicate_type_attributes_conflict(session, tenant, branch) -> None:
    service = CommunityService(session)
    await service.create_community(
        {"name": "Engineers", "type": CommunityType.PROFESSION, "profession": "software engineer", "branch_id": branch.id},
        tenant.id,
    )

    with pytest.raises(ConflictError) as exc:
        await service.create_community(
            {"name": "Coders", "type": CommunityType.PROFESSION, "profession": "SOFTWARE_ENGINEER", "branch_id": branch.id},
            tenant.id,
        )
    assert "PROFESSION community with the same unique information" in exc.value.message


@pytest.mark.asyncio
async def test_typed_community_requires_its_attribute(session, tenant, branch) -> None:
    service = CommunityService(session)

    with pytest.raises(BadRequestError) as exc:
        await service.create_community({"name": "Tribe", "type": CommunityType.TRIBE, "branch_id": branch.id}, tenant.id)
    assert exc.value.message == "month is required for TRIBE communities"


@pytest.mark.asyncio
async def test_unknown_branch_is_rejected(session, tenant) -> None:
    with pytest.raises(BadRequestError):
        await CommunityService(session).create_community(
            {"name": "Choir", "type": CommunityType.OTHER, "branch_id": "nope"}, tenant.id
        )


@pytest.mark.asyncio
async def test_create_with_initial_members(session, tenant, branch) -> None:
    member = await make_member(session, tenant, branch)
    service = CommunityService(session)

    community, reports = await service.create_community(
        {"name": "Men", "type": CommunityType.MINISTRY, "gender": Gender.MALE, "branch_id": branch.id,
         "member_ids": [member.id, "missing"]},
        tenant.id,
        creator_id=None,
    )

    assert community.gender == Gender.MALE
    assert community.location is None
    assert [r.status for r in reports] == ["success", "failed"]


@pytest.mark.asyncio
async def test_update_keeps_uniqueness(session, tenant, branch) -> None:
    service = CommunityService(session)
    january, _ = await service.create_community(
        {"name": "January", "type": CommunityType.TRIBE, "month": Month.JANUARY, "branch_id": branch.id}, tenant.id
    )
    await service.create_community(
        {"name": "February", "type": CommunityType.TRIBE, "month": Month.FEBRUARY, "branch_id": branch.id}, tenant.id
    )

    with pytest.raises(ConflictError):
        await service.update_community(january.id, tenant.id, {"month": Month.FEBRUARY})

    updated = await service.update_community(january.id, tenant.id, {"description": "Born in winter"})
    assert updated.description == "Born in winter"
    assert updated.month == Month.JANUARY


@pytest.mark.asyncio
async def test_list_filters_and_archive(session, tenant, branch) -> None:
    service = CommunityService(session)
    engineers, _ = await service.create_community(
        {"name": "Engineers", "type": CommunityType.PROFESSION, "profession": "Software Engineer", "branch_id": branch.id},
        tenant.id,
    )
    await service.create_community(_cell("Ikeja", "Ikeja", branch_id=branch.id), tenant.id)

    rows, _ = await service.list_communities(tenant.id, CommunityFilters(profession="software engineer"))
    assert [c.id for c in rows] == [engineers.id]

    rows, pagination = await service.list_communities(tenant.id, CommunityFilters(search="ikeja"))
    assert [c.name for c in rows] == ["Ikeja"]
    assert pagination.total == 1

    await service.archive_community(engineers.id, tenant.id)
    rows, _ = await service.list_communities(tenant.id, CommunityFilters(type=CommunityType.PROFESSION))
    assert rows == []
    rows, _ = await service.list_communities(
        tenant.id, CommunityFilters(type=CommunityType.PROFESSION, include_archived=True)
    )
    assert [c.id for c in rows] == [engineers.id]


@pytest.mark.asyncio
async def test_get_community_is_tenant_scoped(session, tenant, branch) -> None:
    community = await make_community(session, tenant, branch, "Choir")
    service = CommunityService(session)

    with pytest.raises(NotFoundError):
        await service.get_community(community.id, "another-tenant")
    with pytest.raises(NotFoundError):
        await service.get_community(community.id, tenant.id, CommunityType.CELL)

    await service.delete_community(community.id, tenant.id)
    with pytest.raises(NotFoundError):
        await service.get_community(community.id, tenant.id)
