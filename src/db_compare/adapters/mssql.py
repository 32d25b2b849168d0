"""Async SQL Server connection provider.

Provides ``ProfileConnectionProvider``, an implementation of the
``ConnectionProvider`` protocol backed by SQLAlchemy's async engine with
the ``aioodbc`` driver, and ``AsyncSqlSession``, the ``Session`` it hands
out.

One pooled engine is kept per (connection id, database) while it has open
sessions; a session is one checked-out ``AsyncConnection``.  When the last
session on an engine closes, the engine is disposed, so comparing many
databases never leaves idle server connections behind.

Usage:
    from db_compare.adapters.mssql import ProfileConnectionProvider

    provider = ProfileConnectionProvider(config.profiles)
    session = await provider.open_session("prod", "Sales")
    rows = await session.query("SELECT name FROM sys.tables")
    await session.close()
    await provider.dispose()
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

from sqlalchemy import text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from db_compare.adapters.base import scoped_session
from db_compare.config.models import ConnectionProfile
from db_compare.errors import DatabaseConnectionError

logger = logging.getLogger(__name__)

ASYNC_DRIVER_SCHEME = "mssql+aioodbc"

DATABASES_QUERY = """
    SELECT name
    FROM sys.databases
    WHERE state = 0
    ORDER BY name
"""


def normalize_url(database_url: str) -> str:
    """Normalize a SQL Server URL to the async ``mssql+aioodbc`` scheme.

    Accepts ``mssql://``, ``sqlserver://``, ``mssql+pyodbc://`` or an
    already-async URL.

    Example:
        >>> normalize_url("mssql://sa:pw@localhost:1433/master")
        'mssql+aioodbc://sa:pw@localhost:1433/master'
    """
    for prefix in ("sqlserver://", "mssql+pyodbc://", "mssql://"):
        if database_url.startswith(prefix):
            return f"{ASYNC_DRIVER_SCHEME}://" + database_url[len(prefix):]
    return database_url


def resolve_url(profile: ConnectionProfile) -> str:
    """Resolve profile URL with password substitution and async scheme.

    Args:
        profile: Connection profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return normalize_url(url)


def create_async_engine_pooled(database_url: str | URL, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine with connection pooling.

    Default pool settings are sized for a comparison run, which issues its
    catalog queries sequentially on one connection per database:

    - ``pool_size=1``: One connection per database side.
    - ``max_overflow=2``: Room for a detail lookup during a run.
    - ``pool_pre_ping=True``: Validate connections before checkout.
    - ``pool_recycle=300``: Recycle connections every 5 minutes.

    Args:
        database_url: SQL Server URL with ``mssql+aioodbc://`` scheme.
        **kwargs: Additional keyword arguments forwarded to
            ``create_async_engine``.

    Returns:
        Configured ``AsyncEngine``.
    """
    defaults: dict[str, Any] = {
        "pool_size": 1,
        "max_overflow": 2,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "echo": False,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}

    return create_async_engine(database_url, **merged)


class AsyncSqlSession:
    """``Session`` over one checked-out SQLAlchemy ``AsyncConnection``."""

    def __init__(
        self,
        connection: AsyncConnection,
        database: str,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._conn: AsyncConnection | None = connection
        self.database = database
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._conn is None

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a read-only query and return rows as dicts."""
        if self._conn is None:
            raise RuntimeError(f"Session for '{self.database}' is closed")

        result = await self._conn.execute(text(sql), params or {})
        col_names = list(result.keys())
        rows = result.fetchall()
        return [dict(zip(col_names, row)) for row in rows]

    async def close(self) -> None:
        """Return the connection to the pool."""
        if self._conn is not None:
            conn, self._conn = self._conn, None
            try:
                await conn.close()
            finally:
                if self._on_close is not None:
                    await self._on_close()


class ProfileConnectionProvider:
    """``ConnectionProvider`` resolving connection ids to db.toml profiles.

    Args:
        profiles: Mapping of connection id to profile.
        **engine_kwargs: Additional keyword arguments forwarded to
            ``create_async_engine_pooled`` for every engine.

    Example:
        provider = ProfileConnectionProvider(load_compare_config().profiles)
        databases = await provider.list_databases("prod")
    """

    def __init__(
        self,
        profiles: dict[str, ConnectionProfile],
        **engine_kwargs: Any,
    ) -> None:
        self._profiles = dict(profiles)
        self._engine_kwargs = engine_kwargs
        self._engines: dict[tuple[str, str], AsyncEngine] = {}
        self._open_sessions: dict[tuple[str, str], int] = {}

    @property
    def connection_ids(self) -> list[str]:
        return list(self._profiles)

    def _profile(self, connection_id: str) -> ConnectionProfile:
        try:
            return self._profiles[connection_id]
        except KeyError:
            available = ", ".join(self._profiles) or "none"
            raise DatabaseConnectionError(
                f"Connection '{connection_id}' not found. Available: {available}"
            ) from None

    def _server_url(self, connection_id: str) -> URL:
        profile = self._profile(connection_id)
        try:
            return make_url(resolve_url(profile))
        except Exception as e:
            raise DatabaseConnectionError(
                f"Invalid URL for connection '{connection_id}': {e}"
            ) from e

    def _engine_for(self, connection_id: str, database: str) -> AsyncEngine:
        key = (connection_id, database)
        if key not in self._engines:
            url = self._server_url(connection_id).set(database=database)
            self._engines[key] = create_async_engine_pooled(url, **self._engine_kwargs)
        return self._engines[key]

    async def open_session(self, connection_id: str, database: str) -> AsyncSqlSession:
        """Open a session scoped to *database*.

        Raises:
            DatabaseConnectionError: Unknown connection id, bad URL, or the
                database cannot be reached.
        """
        try:
            engine = self._engine_for(connection_id, database)
            conn = await engine.connect()
        except DatabaseConnectionError:
            raise
        except Exception as e:
            raise DatabaseConnectionError(
                f"Failed to connect to database '{database}' on '{connection_id}': {e}"
            ) from e

        key = (connection_id, database)
        self._open_sessions[key] = self._open_sessions.get(key, 0) + 1
        logger.debug(f"[Connection] Opened session {connection_id}/{database}")
        return AsyncSqlSession(conn, database, on_close=lambda: self._release(key))

    async def _release(self, key: tuple[str, str]) -> None:
        remaining = self._open_sessions.get(key, 0) - 1
        if remaining > 0:
            self._open_sessions[key] = remaining
            return

        self._open_sessions.pop(key, None)
        engine = self._engines.pop(key, None)
        if engine is not None:
            logger.debug(f"[Connection] Disposing idle engine {key[0]}/{key[1]}")
            await engine.dispose()

    async def list_databases(self, connection_id: str) -> list[str]:
        """List online databases, or the profile's own database.

        Profiles with ``connection_type = "database"`` expose only the
        database named in their URL.
        """
        profile = self._profile(connection_id)
        url = self._server_url(connection_id)

        if profile.connection_type == "database":
            return [url.database] if url.database else []

        async with scoped_session(self, connection_id, url.database or "master") as session:
            try:
                rows = await session.query(DATABASES_QUERY)
            except Exception as e:
                raise DatabaseConnectionError(
                    f"Failed to list databases on '{connection_id}': {e}"
                ) from e
        return [row["name"] for row in rows]

    async def dispose(self) -> None:
        """Dispose every engine and its connection pool."""
        engines, self._engines = self._engines, {}
        self._open_sessions.clear()
        for engine in engines.values():
            await engine.dispose()
