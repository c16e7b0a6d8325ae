"""Explicitly constructed persistence handle.

The store owns one async SQLAlchemy engine for its lifetime. Callers open it
once, pass it to the synchroniser, derivation engine and orchestrator, and
close it on shutdown::

    async with Store(settings.database_url) as store:
        await store.create_all()
        ...

Every operation is bounded by ``timeout_seconds``. Driver errors and
timeouts surface as :class:`~signal_desk.core.errors.StoreError`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Iterable, Mapping, Sequence, TypeVar

from sqlalchemy import Column, ColumnElement, Table, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from signal_desk.core.errors import ConfigurationError, StoreError
from signal_desk.db.base import Base

# Import models so that SQLAlchemy is aware of all tables before create_all runs.
import signal_desk.models  # noqa: F401  # pylint: disable=unused-import

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLite builds before 3.32 cap bound parameters at 999 per statement.
_MAX_BIND_PARAMS = {"sqlite": 900, "postgresql": 30000}


class Store:
    """Async store handle with an explicit open/close lifecycle."""

    def __init__(self, url: str, *, timeout_seconds: float = 10.0, echo: bool = False) -> None:
        self._url = url
        self._timeout = timeout_seconds
        self._echo = echo
        self._engine: AsyncEngine | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise StoreError("Store is not open")
        return self._engine

    async def open(self) -> "Store":
        if self._engine is None:
            self._engine = create_async_engine(self._url, future=True, echo=self._echo)
            logger.info("Opened store for %s", self._engine.url.render_as_string(hide_password=True))
        return self

    async def close(self) -> None:
        if self._engine is not None:
            engine, self._engine = self._engine, None
            await engine.dispose()

    async def __aenter__(self) -> "Store":
        return await self.open()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def create_all(self) -> None:
        """Create all tables defined on the declarative metadata."""

        async def _create() -> None:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        await self._guard("create_all", _create())

    async def find(
        self,
        model: type[Base],
        *,
        filters: Mapping[str, Any] | None = None,
        conditions: Sequence[ColumnElement[bool]] = (),
        order_by: str | Sequence[str] | None = None,
        descending: bool = False,
        limit: int | None = None,
        columns: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Filtered find with sort, limit and field projection.

        ``filters`` are equality matches by column name; ``conditions`` are
        extra SQLAlchemy expressions (ranges and the like).
        """

        table = _table(model)
        selected = [_column(table, name) for name in columns] if columns else list(table.c)
        stmt = select(*selected)
        for name, value in (filters or {}).items():
            stmt = stmt.where(_column(table, name) == value)
        for condition in conditions:
            stmt = stmt.where(condition)
        if order_by is not None:
            names = [order_by] if isinstance(order_by, str) else list(order_by)
            for name in names:
                column = _column(table, name)
                stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async def _find() -> list[dict[str, Any]]:
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                return [dict(row) for row in result.mappings().all()]

        return await self._guard(f"find on {table.name}", _find())

    async def find_latest(
        self,
        model: type[Base],
        *,
        filters: Mapping[str, Any],
        order_by: str,
        columns: Sequence[str] | None = None,
    ) -> dict[str, Any] | None:
        rows = await self.find(model, filters=filters, order_by=order_by, descending=True, limit=1, columns=columns)
        return rows[0] if rows else None

    async def upsert(
        self,
        model: type[Base],
        rows: Iterable[Mapping[str, Any]],
        conflict_columns: Sequence[str],
        *,
        update: bool = True,
    ) -> int:
        """Insert ``rows``; on a ``conflict_columns`` clash update the other columns or skip.

        Returns the number of rows the database reports as written.
        """

        table = _table(model)
        records = [dict(row) for row in rows]
        if not records:
            return 0
        if not conflict_columns:
            raise ConfigurationError(f"Upsert into {table.name} requires conflict columns")
        for name in conflict_columns:
            _column(table, name)

        keys = list(records[0].keys())
        for record in records[1:]:
            keys.extend(key for key in record if key not in keys)
        for key in keys:
            _column(table, key)
        records = [{key: record.get(key) for key in keys} for record in records]
        update_columns = [key for key in keys if key not in conflict_columns]

        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            insert_factory = pg_insert
        elif dialect == "sqlite":
            insert_factory = sqlite_insert
        else:
            raise ConfigurationError(f"Upsert is not supported for the {dialect!r} dialect")
        chunk_size = max(1, _MAX_BIND_PARAMS[dialect] // max(1, len(keys)))

        async def _upsert() -> int:
            written = 0
            async with self.engine.begin() as conn:
                for start in range(0, len(records), chunk_size):
                    stmt = insert_factory(table).values(records[start : start + chunk_size])
                    if update and update_columns:
                        stmt = stmt.on_conflict_do_update(
                            index_elements=list(conflict_columns),
                            set_={name: stmt.excluded[name] for name in update_columns},
                        )
                    else:
                        stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
                    result = await conn.execute(stmt)
                    written += max(result.rowcount or 0, 0)
            return written

        written = await self._guard(f"upsert into {table.name}", _upsert())
        logger.debug("Upserted %s/%s rows into %s", written, len(records), table.name)
        return written

    async def select_distinct(
        self,
        model: type[Base],
        column: str,
        *,
        filters: Mapping[str, Any] | None = None,
    ) -> list[Any]:
        table = _table(model)
        target = _column(table, column)
        stmt = select(target).distinct().order_by(target.asc())
        for name, value in (filters or {}).items():
            stmt = stmt.where(_column(table, name) == value)

        async def _distinct() -> list[Any]:
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                return list(result.scalars().all())

        return await self._guard(f"distinct on {table.name}.{column}", _distinct())

    async def count(self, model: type[Base], *, filters: Mapping[str, Any] | None = None) -> int:
        table = _table(model)
        stmt = select(func.count()).select_from(table)
        for name, value in (filters or {}).items():
            stmt = stmt.where(_column(table, name) == value)

        async def _count() -> int:
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                return int(result.scalar_one())

        return await self._guard(f"count on {table.name}", _count())

    async def _guard(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise StoreError(f"{operation} timed out after {self._timeout}s") from exc
        except SQLAlchemyError as exc:
            logger.error("Store operation %s failed: %s", operation, exc)
            raise StoreError(f"{operation} failed: {exc}") from exc


def _table(model: type[Base]) -> Table:
    return model.__table__  # type: ignore[return-value]


def _column(table: Table, name: str) -> Column[Any]:
    try:
        return table.c[name]
    except KeyError as exc:
        raise ConfigurationError(f"Unknown column {name!r} on {table.name}") from exc


__all__ = ["Store"]
