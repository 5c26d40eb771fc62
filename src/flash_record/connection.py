from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, AsyncIterator, Mapping, Sequence

from sqlalchemy import text

from .sql import (
    build_aggregate,
    build_delete,
    build_insert,
    build_select,
    build_update,
)
from .transaction import Atomic

if TYPE_CHECKING:
    from contextvars import Token

    from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
    from sqlalchemy.sql import Executable

    from .expressions import Clause
    from .query_spec import QuerySpec

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class Connection:
    """
    The SQL execution surface used by models, builders and relations.

    Each operation runs in its own short transaction unless an
    :class:`~flash_record.transaction.Atomic` block has pinned a connection
    for the current task, in which case the pinned connection is reused.

    Example:
        >>> conn = Connection("default", create_async_engine("sqlite+aiosqlite://"))
        >>> rows = await conn.execute(QuerySpec("authors"))
    """

    def __init__(self, name: str, engine: AsyncEngine):
        self.name = name
        self.engine = engine
        self._active: ContextVar[AsyncConnection | None] = ContextVar(
            f"flash_record_connection_{name}_{id(self)}", default=None
        )

    def __repr__(self) -> str:
        return f"<Connection {self.name!r} {self.engine.url.render_as_string()}>"

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    # --- Transaction plumbing ---

    def active_connection(self) -> AsyncConnection | None:
        return self._active.get()

    def pin(self, conn: AsyncConnection) -> Token[AsyncConnection | None]:
        return self._active.set(conn)

    def unpin(self, token: Token[AsyncConnection | None]) -> None:
        self._active.reset(token)

    def transaction(self) -> Atomic:
        """Open a transaction block on this connection."""
        return Atomic(self)

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[AsyncConnection]:
        pinned = self._active.get()
        if pinned is not None:
            yield pinned
            return
        async with self.engine.begin() as conn:
            yield conn

    async def _run(self, stmt: Executable) -> Any:
        logger.debug(f"[{self.name}] {stmt}")
        async with self._connect() as conn:
            result = await conn.execute(stmt)
            if result.returns_rows:
                return [dict(row._mapping) for row in result]
            return result.rowcount

    # --- Reads ---

    async def execute(self, spec: QuerySpec) -> list[Row]:
        """Run a SELECT for ``spec`` and return plain row mappings."""
        return await self._run(build_select(spec))

    async def execute_aggregate(
        self,
        spec: QuerySpec,
        fn: str = "count",
        column: str | None = None,
        group_by: str | None = None,
    ) -> list[Row]:
        """
        Aggregate the rows matched by ``spec``.

        Returns rows carrying ``aggregate_value`` and, when grouped,
        ``group_key``.
        """
        return await self._run(build_aggregate(spec, fn, column, group_by))

    # --- Writes ---

    async def execute_insert(
        self,
        table: str,
        values: Mapping[str, Any],
        primary_key: str | None = None,
    ) -> Any:
        """
        Insert one row and return its generated key, if the store reports one.

        A key already present in ``values`` is returned as is.
        """
        if primary_key is not None and values.get(primary_key) is not None:
            await self._run(build_insert(table, values))
            return values[primary_key]

        use_returning = primary_key is not None and self.engine.dialect.insert_returning
        stmt = build_insert(
            table, values, returning=primary_key if use_returning else None
        )
        logger.debug(f"[{self.name}] {stmt}")
        async with self._connect() as conn:
            result = await conn.execute(stmt)
            if use_returning:
                return result.scalar()
            return getattr(result, "lastrowid", None) or None

    async def execute_insert_many(
        self, table: str, rows: Sequence[Mapping[str, Any]]
    ) -> int:
        """Insert several rows sharing the same columns."""
        if not rows:
            return 0
        stmt = build_insert(table, rows[0].keys())
        logger.debug(f"[{self.name}] {stmt} ({len(rows)} rows)")
        async with self._connect() as conn:
            await conn.execute(stmt, [dict(row) for row in rows])
        return len(rows)

    async def execute_update(
        self,
        table: str,
        predicate: Sequence[Clause],
        values: Mapping[str, Any],
    ) -> int:
        """Update the rows matching ``predicate`` and return the affected count."""
        if not values:
            return 0
        return await self._run(build_update(table, predicate, values))

    async def execute_delete(self, table: str, predicate: Sequence[Clause]) -> int:
        """Delete the rows matching ``predicate`` and return the affected count."""
        return await self._run(build_delete(table, predicate))

    async def execute_truncate(self, table: str) -> None:
        """Remove every row of ``table``."""
        if self.dialect_name == "sqlite":
            # SQLite has no TRUNCATE; an unqualified DELETE is its equivalent.
            await self._run(build_delete(table, ()))
            return
        quoted = self.engine.dialect.identifier_preparer.quote(table)
        await self._run(text(f"TRUNCATE TABLE {quoted}"))

    async def dispose(self) -> None:
        await self.engine.dispose()
