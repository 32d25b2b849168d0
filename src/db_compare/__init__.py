"""db-compare: Async SQL Server schema comparison.

Extracts schema snapshots from two databases, builds canonical definitions
for tables, views, routines and triggers, and reports the differences as a
flat list of changes with before/after detail.

Usage:
    from db_compare import ComparisonSession, create_session
    from db_compare import diff_snapshots, normalize_definition
    from db_compare import load_compare_config, ConnectionProfile
"""

__version__ = "0.1.0"

# Adapters
from db_compare.adapters.base import ConnectionProvider, Session
from db_compare.adapters.mssql import ProfileConnectionProvider, resolve_url

# Cancellation and errors
from db_compare.cancellation import CancellationToken
from db_compare.errors import (
    ComparisonCancelledError,
    CompareError,
    DatabaseConnectionError,
    DefinitionFetchError,
    ExtractionError,
)

# Config
from db_compare.config.loader import load_compare_config
from db_compare.config.models import CompareConfig, CompareSettings, ConnectionProfile

# Service
from db_compare.comparison import ComparisonSession
from db_compare.factory import create_session, get_provider

# Schema
from db_compare.schema.comparator import diff_snapshots
from db_compare.schema.definitions import normalize_definition
from db_compare.schema.models import Change, ChangeDetail, ComparisonResult, SchemaSnapshot

__all__ = [
    # Adapters
    "ConnectionProvider",
    "Session",
    "ProfileConnectionProvider",
    "resolve_url",
    # Cancellation and errors
    "CancellationToken",
    "CompareError",
    "DatabaseConnectionError",
    "ExtractionError",
    "DefinitionFetchError",
    "ComparisonCancelledError",
    # Config
    "load_compare_config",
    "CompareConfig",
    "CompareSettings",
    "ConnectionProfile",
    # Service
    "ComparisonSession",
    "create_session",
    "get_provider",
    # Schema
    "diff_snapshots",
    "normalize_definition",
    "Change",
    "ChangeDetail",
    "ComparisonResult",
    "SchemaSnapshot",
]
