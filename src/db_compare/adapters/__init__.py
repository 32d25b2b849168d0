"""Connection adapters package.

Provides the ``Session`` / ``ConnectionProvider`` Protocols, the
``scoped_session`` helper, and the SQLAlchemy-backed SQL Server provider.

Usage:
    from db_compare.adapters import ConnectionProvider, ProfileConnectionProvider
"""

from db_compare.adapters.base import ConnectionProvider, Session, scoped_session
from db_compare.adapters.mssql import (
    AsyncSqlSession,
    ProfileConnectionProvider,
    resolve_url,
)

__all__ = [
    "ConnectionProvider",
    "Session",
    "scoped_session",
    "AsyncSqlSession",
    "ProfileConnectionProvider",
    "resolve_url",
]
