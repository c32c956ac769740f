"""
Generic async repository over a mapped model with an `id` primary key.

Repositories only build and run statements against the session they are
given; committing, rolling back and business rules belong to the services.

    class SessionRepository(BaseRepository[LoginSession]):
        async def find_open(self, session, player_id):
            return await self.find_one_where(
                session,
                LoginSession.player_id == player_id,
                LoginSession.logout_time.is_(None),
            )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")

_UPSERT_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


class BaseRepository(Generic[T]):
    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    def _trace(self, operation: str, **fields: Any) -> None:
        name = self.model_class.__name__
        self.log.debug(f"{name}.{operation}", extra={"model": name, **fields})

    def _by_id(self, id_value: Any) -> Select[Any]:
        return select(self.model_class).where(self.model_class.id == id_value)  # type: ignore[attr-defined]

    # ========================================================================
    # Reads
    # ========================================================================

    async def get(self, session: AsyncSession, id_value: Any) -> Optional[T]:
        instance = (await session.execute(self._by_id(id_value))).scalar_one_or_none()
        self._trace("get", id=id_value, found=instance is not None)
        return instance

    async def get_for_update(self, session: AsyncSession, id_value: Any) -> Optional[T]:
        """
        Same as `get` but takes a row lock held until the transaction ends.
        SQLite has no row locks and ignores the clause.
        """
        stmt = self._by_id(id_value).with_for_update()
        instance = (await session.execute(stmt)).scalar_one_or_none()
        self._trace("get_for_update", id=id_value, found=instance is not None)
        return instance

    async def get_many(self, session: AsyncSession, id_values: Sequence[Any]) -> List[T]:
        """Unknown IDs are left out of the result."""
        if not id_values:
            return []

        stmt = select(self.model_class).where(self.model_class.id.in_(list(id_values)))  # type: ignore[attr-defined]
        instances = list((await session.execute(stmt)).scalars().all())
        self._trace("get_many", requested=len(id_values), found=len(instances))
        return instances

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
    ) -> Optional[T]:
        stmt = select(self.model_class).where(*conditions)
        if for_update:
            stmt = stmt.with_for_update()

        instance = (await session.execute(stmt)).scalars().first()
        self._trace("find_one_where", found=instance is not None, locked=for_update)
        return instance

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        order_by: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[T]:
        stmt = select(self.model_class).where(*conditions)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        instances = list((await session.execute(stmt)).scalars().all())
        self._trace("find_many_where", found=len(instances), limit=limit, offset=offset)
        return instances

    async def count(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self.model_class).where(*conditions)
        total = (await session.execute(stmt)).scalar_one()
        self._trace("count", count=total)
        return total

    async def exists(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> bool:
        return await self.count(session, *conditions) > 0

    # ========================================================================
    # Writes
    # ========================================================================

    def add(self, session: AsyncSession, instance: T) -> T:
        session.add(instance)
        self._trace("add")
        return instance

    def insert_stmt(self, session: AsyncSession, model: Optional[Type[Any]] = None) -> Any:
        """
        INSERT construct for the session's dialect, so callers can attach
        `on_conflict_do_nothing()`.

        Raises:
            NotImplementedError: Dialect has no ON CONFLICT support here
        """
        dialect = session.bind.dialect.name
        factory = _UPSERT_INSERTS.get(dialect)
        if factory is None:
            raise NotImplementedError(f"ON CONFLICT inserts are not supported on '{dialect}'")
        return factory(model or self.model_class)
