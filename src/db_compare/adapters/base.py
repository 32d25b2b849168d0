"""Connection provider and session protocol definitions.

Defines the ``Session`` and ``ConnectionProvider`` Protocols the comparison
core depends on.  Connection management itself (pooling, credentials) is
the provider's business; the core only opens a session for one database,
runs read-only catalog queries on it, and closes it.

All I/O methods are ``async def``.

Usage:
    from db_compare.adapters.base import ConnectionProvider, scoped_session

    async def count_tables(provider: ConnectionProvider) -> int:
        async with scoped_session(provider, "prod", "Sales") as session:
            rows = await session.query("SELECT COUNT(*) AS n FROM sys.tables")
            return rows[0]["n"]
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Protocol


class Session(Protocol):
    """An open, database-scoped session."""

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a read-only query and return its rows.

        Args:
            sql: SQL text.  Named parameters use ``:name`` placeholders.
            params: Optional dict of parameter values.

        Returns:
            List of dicts, one per row, keyed by column alias.  Empty list if
            the query returns no rows.

        Raises:
            Exception: Driver-level errors (permission denied, dropped
                connection) propagate unchanged.
        """
        ...

    async def close(self) -> None:
        """Release the session.  Safe to call more than once."""
        ...


class ConnectionProvider(Protocol):
    """Resolves connection ids to database sessions."""

    async def open_session(self, connection_id: str, database: str) -> Session:
        """Open a session scoped to *database* on connection *connection_id*.

        Raises:
            DatabaseConnectionError: If the connection id is unknown or the
                database cannot be reached.
        """
        ...

    async def list_databases(self, connection_id: str) -> list[str]:
        """List the databases available on *connection_id*.

        Raises:
            DatabaseConnectionError: If the connection cannot be opened.
        """
        ...


@asynccontextmanager
async def scoped_session(
    provider: ConnectionProvider,
    connection_id: str,
    database: str,
) -> AsyncIterator[Session]:
    """Open a session and close it on every exit path."""
    session = await provider.open_session(connection_id, database)
    try:
        yield session
    finally:
        await session.close()
