from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .config import RecordSettings
from .connection import Connection
from .exceptions import ConnectionUnavailableError

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """
    Enable SQLite foreign key enforcement for every DBAPI connection.
    """

    @event.listens_for(engine.sync_engine.pool, "connect")  # pragma: no cover
    def _set_sqlite_pragma(dbapi_connection, _):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_engine(
    database_url: str,
    *,
    echo: bool = False,
    sqlite_foreign_keys: bool = True,
    **engine_kwargs: Any,
) -> AsyncEngine:
    """
    Create an asynchronous SQLAlchemy engine for ``database_url``.

    Args:
        database_url: The connection URL (e.g., 'sqlite+aiosqlite:///db.sqlite3').
        echo: If True, SQLAlchemy will log all emitted SQL.
        sqlite_foreign_keys: Turn on foreign key enforcement for SQLite.
        **engine_kwargs: Additional keyword arguments passed to `create_async_engine`.
    """
    # Normalize PostgreSQL async driver
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    is_sqlite = database_url.startswith("sqlite")

    options: dict[str, Any] = {
        "echo": echo,
        **engine_kwargs,
    }

    if is_sqlite:
        # SQLite does not support pooling options
        options.pop("pool_size", None)
        options.pop("max_overflow", None)
        options.pop("pool_pre_ping", None)
        options.setdefault("connect_args", {"check_same_thread": False})
    else:
        options.setdefault("pool_pre_ping", True)

    engine = create_async_engine(database_url, **options)

    if is_sqlite and sqlite_foreign_keys:
        _enable_sqlite_foreign_keys(engine)

    return engine


class ConnectionRegistry:
    """
    Named connections shared by every model of a process.

    Connections are created explicitly with :meth:`add` (or :func:`init_db`)
    and torn down with :meth:`close_all` (or :func:`close_db`).

    Example:
        >>> registry = ConnectionRegistry()
        >>> registry.add("default", "sqlite+aiosqlite:///:memory:")
        >>> conn = registry.get()
        >>> await registry.close_all()
    """

    def __init__(self, default: str = "default"):
        self._connections: dict[str, Connection] = {}
        self._default = default

    def __contains__(self, name: object) -> bool:
        return name in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    @property
    def default(self) -> str:
        return self._default

    def add(self, name: str, database_url: str, **engine_kwargs: Any) -> Connection:
        """Create an engine for ``database_url`` and register it under ``name``."""
        return self.register(name, create_engine(database_url, **engine_kwargs))

    def register(self, name: str, engine: AsyncEngine) -> Connection:
        """
        Register an existing engine under ``name``.

        Re-registering a name replaces the previous connection; the caller
        remains responsible for disposing the replaced engine.
        """
        if name in self._connections:
            logger.warning(f"Connection '{name}' is being replaced")
        connection = Connection(name, engine)
        self._connections[name] = connection
        return connection

    def get(self, name: str | None = None) -> Connection:
        """
        Return the connection registered under ``name`` (default if omitted).

        Raises:
            ConnectionUnavailableError: If no such connection is configured.
        """
        key = name or self._default
        try:
            return self._connections[key]
        except KeyError:
            msg = f"Connection '{key}' is not configured. Call init_db() first."
            raise ConnectionUnavailableError(msg) from None

    def set_default(self, name: str) -> None:
        if name not in self._connections:
            msg = f"Cannot set default connection: '{name}' is not configured"
            raise ConnectionUnavailableError(msg)
        self._default = name

    async def close(self, name: str) -> None:
        connection = self._connections.pop(name, None)
        if connection is not None:
            await connection.dispose()

    async def close_all(self) -> None:
        """Dispose of every engine and forget all connections."""
        connections, self._connections = self._connections, {}
        for connection in connections.values():
            await connection.dispose()


connections = ConnectionRegistry()


def init_db(
    database_url: str | None = None,
    *,
    name: str | None = None,
    echo: bool | None = None,
    settings: RecordSettings | None = None,
    **engine_kwargs: Any,
) -> Connection:
    """
    Initialize a named connection in the process-wide registry.

    Missing arguments are read from :class:`~flash_record.config.RecordSettings`.

    Raises:
        ConnectionUnavailableError: If no database URL is given or configured.

    Example:
        >>> init_db("sqlite+aiosqlite:///db.sqlite3")
    """
    settings = settings or RecordSettings()
    url = database_url or settings.DATABASE_URL
    if not url:
        msg = "No database URL given and DATABASE_URL is not set"
        raise ConnectionUnavailableError(msg)

    options: dict[str, Any] = {**settings.engine_options(), **engine_kwargs}
    connection = connections.add(
        name or settings.DEFAULT_CONNECTION,
        url,
        echo=settings.DATABASE_ECHO if echo is None else echo,
        sqlite_foreign_keys=settings.SQLITE_FOREIGN_KEYS,
        **options,
    )
    if connection.name == settings.DEFAULT_CONNECTION:
        connections.set_default(connection.name)
    return connection


async def close_db() -> None:
    """
    Dispose of every registered engine.

    Example:
        >>> await close_db()
    """
    await connections.close_all()
