from __future__ import annotations

import asyncio
from typing import Any, Mapping, Sequence

from sqlalchemy import JSON, column, insert, literal_column, select, table, update
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from edu_console.core.errors import StoreError
from edu_console.store.base import Row

SCHEMA_SQLSTATES = {"42703", "42P01"}

_engines_by_loop: dict[tuple[int, str], AsyncEngine] = {}


def _loop_cache_key(url: str) -> tuple[int, str]:
    # Async DB drivers (asyncpg) are tied to the event loop. Caching a single
    # engine across multiple loops (e.g. pytest-asyncio) causes runtime errors.
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.get_event_loop()
    return id(loop), url


def get_engine(url: str) -> AsyncEngine:
    key = _loop_cache_key(url)
    engine = _engines_by_loop.get(key)
    if engine is None:
        engine = create_async_engine(url, pool_pre_ping=True)
        _engines_by_loop[key] = engine
    return engine


def _sqlstate(err: DBAPIError) -> str | None:
    orig = getattr(err, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def classify_db_error(err: SQLAlchemyError | OSError) -> StoreError:
    if isinstance(err, OSError):
        return StoreError("transport", f"Database unreachable: {err}")
    if not isinstance(err, DBAPIError):
        return StoreError("transport", str(err))

    code = _sqlstate(err)
    message = str(getattr(err, "orig", None) or err)
    if code in SCHEMA_SQLSTATES:
        return StoreError("schema", message, code=code)
    if code and code.startswith("08"):
        return StoreError("transport", message, code=code)
    if code is None and isinstance(err, (OperationalError, InterfaceError)):
        return StoreError("transport", message)
    return StoreError("validation", message, code=code)


def _column_for(name: str, value: Any):
    if isinstance(value, (dict, list)):
        return column(name, JSON)
    return column(name)


def _where(match: Mapping[str, Any] | None) -> list[Any]:
    clauses = []
    for k, v in (match or {}).items():
        clauses.append(column(k).is_(None) if v is None else column(k) == v)
    return clauses


class SqlStore:
    """Direct Postgres access for tenants whose directory entry is a SQLAlchemy URL."""

    def __init__(self, *, url: str):
        self._url = url

    @property
    def engine(self) -> AsyncEngine:
        return get_engine(self._url)

    async def select(
        self,
        table: str,
        *,
        columns: Sequence[str] = ("*",),
        match: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        cols = [literal_column("*")] if list(columns) == ["*"] else [column(c) for c in columns]
        stmt = select(*cols).select_from(_table(table)).where(*_where(match))
        if order_by:
            stmt = stmt.order_by(column(order_by).desc() if descending else column(order_by).asc())
        if limit is not None:
            stmt = stmt.limit(int(limit))
        try:
            async with self.engine.connect() as conn:
                res = await conn.execute(stmt)
                return [dict(r) for r in res.mappings().all()]
        except (SQLAlchemyError, OSError) as e:
            raise classify_db_error(e) from e

    async def insert(self, table: str, record: Mapping[str, Any]) -> Row:
        t = _table(table, *[_column_for(k, v) for k, v in record.items()])
        stmt = insert(t).values(**dict(record)).returning(literal_column("*"))
        try:
            async with self.engine.begin() as conn:
                res = await conn.execute(stmt)
                row = res.mappings().first()
        except (SQLAlchemyError, OSError) as e:
            raise classify_db_error(e) from e
        return dict(row) if row is not None else dict(record)

    async def update(self, table: str, values: Mapping[str, Any], *, match: Mapping[str, Any]) -> int:
        if not match:
            raise StoreError("validation", "update requires a match filter")
        t = _table(table, *[_column_for(k, v) for k, v in values.items()])
        stmt = update(t).where(*_where(match)).values(**dict(values))
        try:
            async with self.engine.begin() as conn:
                res = await conn.execute(stmt)
                return int(res.rowcount or 0)
        except (SQLAlchemyError, OSError) as e:
            raise classify_db_error(e) from e

    async def aclose(self) -> None:
        key = _loop_cache_key(self._url)
        engine = _engines_by_loop.pop(key, None)
        if engine is not None:
            await engine.dispose()


def _table(name: str, *cols: Any):
    return table(name, *cols)
