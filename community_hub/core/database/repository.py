"""
Generic data-access layer shared by every feature service.

Repository wraps one model on one AsyncSession and exposes the small set of
operations services need: create / find_one / find_many / paginate / update /
update_many / delete / delete_many / count. Filters are passed either as
SQLAlchemy criteria or as keyword equality filters:

    repo = Repository(db, Community)
    cell = await repo.find_one(tenant_id=tenant_id, type=CommunityType.CELL, branch_id=branch_id)

Keyword filter values follow three rules:
- None      -> column IS NULL
- list/set  -> column IN (...)
- otherwise -> column == value

Models carrying an ``is_deleted`` column are filtered to non-deleted rows unless
``include_deleted=True`` is passed.
"""
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator, Iterable
from typing import Any, Generic, TypeVar

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from community_hub.core.database.base import Base
from community_hub.core.errors import ConflictError
from community_hub.core.responses import Pagination
from community_hub.utils import get_logger


log = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Group several writes into one unit of work.

    Commits when the block exits normally; rolls back and re-raises otherwise.

    Usage:
        async with transaction(db):
            role = await roles.create(...)
            await grants.create(...)
    """
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise


class Repository(Generic[ModelT]):
    """Persistence gateway for a single model."""

    def __init__(self, session: AsyncSession, model: type[ModelT], conflict_message: str | None = None):
        self.session = session
        self.model = model
        self.conflict_message = conflict_message or f"{model.__name__} already exists"

    # ------------------------------------------------------------------
    # Query building
    # ------------------------------------------------------------------

    def criteria(self, criteria: Iterable[Any] = (), include_deleted: bool = False, **filters: Any) -> list[Any]:
        clauses = list(criteria)
        for key, value in filters.items():
            column = getattr(self.model, key)
            if value is None:
                clauses.append(column.is_(None))
            elif isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(column.in_(list(value)))
            else:
                clauses.append(column == value)
        if not include_deleted and hasattr(self.model, "is_deleted"):
            clauses.append(self.model.is_deleted.is_(False))
        return clauses

    def select(self, *criteria: Any, include_deleted: bool = False, **filters: Any) -> Select:
        return select(self.model).where(*self.criteria(criteria, include_deleted, **filters))

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            log.warning("Integrity error on %s: %s", self.model.__name__, exc.orig)
            raise ConflictError(self.conflict_message) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_one(self, *criteria: Any, include_deleted: bool = False, **filters: Any) -> ModelT | None:
        stmt = self.select(*criteria, include_deleted=include_deleted, **filters).limit(1)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def find_many(
        self,
        *criteria: Any,
        order_by: Iterable[Any] = (),
        include_deleted: bool = False,
        **filters: Any,
    ) -> list[ModelT]:
        stmt = self.select(*criteria, include_deleted=include_deleted, **filters).order_by(*order_by)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count(self, *criteria: Any, include_deleted: bool = False, **filters: Any) -> int:
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(*self.criteria(criteria, include_deleted, **filters))
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def exists(self, *criteria: Any, **filters: Any) -> bool:
        return await self.count(*criteria, **filters) > 0

    async def paginate(self, stmt: Select, page: int = 1, limit: int = 20) -> tuple[list[ModelT], Pagination]:
        """Run ``stmt`` for one page and return the rows with pagination metadata."""
        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        total = (await self.session.execute(count_stmt)).scalar_one()

        result = await self.session.execute(stmt.offset((page - 1) * limit).limit(limit))
        return list(result.scalars().all()), Pagination.build(total, page, limit)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, **values: Any) -> ModelT:
        instance = self.model(**values)
        self.session.add(instance)
        await self._flush()
        await self.session.refresh(instance)
        return instance

    async def update(self, instance: ModelT, **patch: Any) -> ModelT:
        for key, value in patch.items():
            setattr(instance, key, value)
        await self._flush()
        await self.session.refresh(instance)
        return instance

    async def update_many(self, *criteria: Any, values: dict[str, Any], include_deleted: bool = False, **filters: Any) -> int:
        stmt = (
            update(self.model)
            .where(*self.criteria(criteria, include_deleted, **filters))
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        try:
            result = await self.session.execute(stmt)
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConflictError(self.conflict_message) from exc
        return result.rowcount

    async def delete(self, instance: ModelT) -> None:
        await self.session.delete(instance)
        await self._flush()

    async def delete_many(self, *criteria: Any, include_deleted: bool = True, **filters: Any) -> int:
        stmt = (
            delete(self.model)
            .where(*self.criteria(criteria, include_deleted, **filters))
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        return result.rowcount
