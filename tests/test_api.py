"""HTTP tests for the member, community and permission routes."""

from collections.abc import AsyncIterator

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.core import config
from community_hub.core.database.engine import get_db
from community_hub.features.permissions.models import UserRoleAssignment
from community_hub.features.permissions.service import PermissionService
from community_hub.main import app
from tests.factories import make_community, make_member, make_permission, make_role, make_user


def _auth(user, tenant_id: str | None = None) -> dict[str, str]:
    token = jwt.encode({"sub": user.id}, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
    headers = {"Authorization": f"Bearer {token}"}
    if tenant_id:
        headers["X-Tenant-ID"] = tenant_id
    return headers


@pytest_asyncio.fixture
async def client(session_maker) -> AsyncIterator[AsyncClient]:
    async def _override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_maker() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_db] = _override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def admin(session, tenant):
    return await make_user(session, tenant, "admin@gracechapel.org", is_admin=True)


@pytest.mark.asyncio
async def test_health(client) -> None:
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_create_member_returns_sync_report(client, admin, tenant, branch) -> None:
    response = await client.post(
        "/members/",
        json={"first_name": "Ada", "last_name": "Obi", "branch_id": branch.id, "profession": "software engineer"},
        headers=_auth(admin),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["code"] == 201
    assert body["data"]["member"]["profession"] == "SOFTWARE_ENGINEER"
    assert [s["step"] for s in body["data"]["community_sync"]] == [
        "create_profession_community",
        "add_profession_membership",
    ]


@pytest.mark.asyncio
async def test_missing_permission_is_rejected_with_envelope(client, session, tenant, user) -> None:
    response = await client.get("/members/", headers=_auth(user))

    assert response.status_code == 403
    assert response.json() == {
        "success": False,
        "code": 403,
        "message": "Permission denied: READ on MEMBERS",
        "data": None,
        "pagination": None,
    }


@pytest.mark.asyncio
async def test_role_grant_opens_the_route(client, session, tenant, branch, user) -> None:
    read = await make_permission(session, "MEMBERS", "READ")
    role = await make_role(session, tenant, "USHER")
    await PermissionService(session).grant_permissions(role.id, [read.id], None)
    session.add(UserRoleAssignment(user_id=user.id, role_id=role.id))
    await session.commit()
    await make_member(session, tenant, branch, "Ada")
    await make_member(session, tenant, branch, "Ben")

    response = await client.get("/members/", params={"limit": 1}, headers=_auth(user))

    assert response.status_code == 200
    body = response.json()
    assert len(body["data"]) == 1
    assert body["pagination"] == {"total": 2, "page": 1, "limit": 1, "pages": 2}

    response = await client.get("/permissions/me", headers=_auth(user))
    assert [(e["module"], e["action"], e["role_code"]) for e in response.json()["data"]] == [
        ("MEMBERS", "READ", "USHER"),
    ]


@pytest.mark.asyncio
async def test_other_tenant_header_is_forbidden(client, session, tenant, user) -> None:
    response = await client.get("/permissions/me", headers=_auth(user, "another-tenant"))

    assert response.status_code == 403
    assert response.json()["message"] == "You are not a member of this tenant"


@pytest.mark.asyncio
async def test_validation_errors_are_a_field_map(client, admin) -> None:
    response = await client.post("/members/", json={"last_name": "Obi"}, headers=_auth(admin))

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "first_name" in body["data"]


@pytest.mark.asyncio
async def test_service_errors_are_rendered(client, admin) -> None:
    response = await client.get("/communities/missing", headers=_auth(admin))

    assert response.status_code == 404
    assert response.json()["message"] == "Community with ID missing not found or you do not have permission"


@pytest.mark.asyncio
async def test_bulk_add_reports_partial_failure(client, session, admin, tenant, branch) -> None:
    community = await make_community(session, tenant, branch, "Youth")
    member = await make_member(session, tenant, branch)

    response = await client.post(
        f"/communities/{community.id}/members",
        json={"member_ids": [member.id, "missing"]},
        headers=_auth(admin),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Bulk operation completed: 1 succeeded, 1 failed"
    assert [r["status"] for r in body["data"]] == ["success", "failed"]


@pytest.mark.asyncio
async def test_reserved_role_code_is_forbidden(client, admin) -> None:
    response = await client.post(
        "/permissions/roles",
        json={"name": "Root", "code": "super_admin"},
        headers=_auth(admin),
    )

    assert response.status_code == 403
    assert response.json()["message"] == "SUPER_ADMIN role cannot be created"
