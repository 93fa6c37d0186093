"""Pytest configuration shared across community hub tests."""

import os

# Deterministic settings before the package reads its environment
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["NOTIFY_LEADERS_ON_SYNC"] = "0"

from collections.abc import AsyncIterator  # noqa: E402

import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from community_hub.core.database.base import Base  # noqa: E402
from community_hub.core.database.engine import load_models  # noqa: E402
from community_hub.features.tenants.models import Branch, Tenant  # noqa: E402
from community_hub.features.users.models import User  # noqa: E402
from tests.factories import make_branch, make_user  # noqa: E402


@pytest_asyncio.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    load_models()
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_maker: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def tenant(session: AsyncSession) -> Tenant:
    tenant = Tenant(name="Grace Chapel")
    session.add(tenant)
    await session.commit()
    return tenant


@pytest_asyncio.fixture
async def branch(session: AsyncSession, tenant: Tenant) -> Branch:
    return await make_branch(session, tenant, "Lagos Central")


@pytest_asyncio.fixture
async def user(session: AsyncSession, tenant: Tenant) -> User:
    return await make_user(session, tenant, "staff@example.com")
