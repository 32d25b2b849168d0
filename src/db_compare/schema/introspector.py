"""SQL Server schema introspection via INFORMATION_SCHEMA and sys catalogs.

This module queries a live database to extract a ``SchemaSnapshot``:
- Tables and columns (types, nullability, lengths, defaults, identity)
- Views, stored procedures, functions, DML triggers
- Indexes (type, uniqueness, key and included columns)
- Constraints (primary key, foreign key, unique, check)

Catalog queries return one row per column for indexes and constraints;
rows are grouped by (schema, table, name) before descriptors are built, so
composite keys never split and row order never implies grouping.

Usage:
    async with SchemaIntrospector(provider, "prod", "Sales") as introspector:
        snapshot = await introspector.introspect()
        text = await introspector.fetch_definition(ObjectKind.VIEW, "dbo", "vOrders")
"""

import logging
from typing import Any

from db_compare.adapters.base import ConnectionProvider, Session
from db_compare.cancellation import CancellationToken, check_cancelled
from db_compare.config.models import EXCLUDED_SCHEMAS_DEFAULT
from db_compare.errors import DefinitionFetchError, ExtractionError
from db_compare.schema.models import (
    FETCHED_KINDS,
    ColumnDescriptor,
    ConstraintDescriptor,
    ConstraintKind,
    FunctionDescriptor,
    IndexColumn,
    IndexDescriptor,
    ObjectKind,
    ProcedureDescriptor,
    SchemaSnapshot,
    TableDescriptor,
    TriggerDescriptor,
    ViewDescriptor,
)

logger = logging.getLogger(__name__)


TABLES_QUERY = """
    SELECT
        s.name AS schema_name,
        t.name AS name
    FROM sys.tables t
    JOIN sys.schemas s ON s.schema_id = t.schema_id
    WHERE t.is_ms_shipped = 0
    ORDER BY s.name, t.name
"""

COLUMNS_QUERY = """
    SELECT
        c.TABLE_SCHEMA AS schema_name,
        c.TABLE_NAME AS table_name,
        c.COLUMN_NAME AS column_name,
        c.DATA_TYPE AS data_type,
        c.IS_NULLABLE AS is_nullable,
        c.CHARACTER_MAXIMUM_LENGTH AS max_length,
        c.NUMERIC_PRECISION AS numeric_precision,
        COALESCE(c.NUMERIC_SCALE, c.DATETIME_PRECISION) AS numeric_scale,
        c.COLUMN_DEFAULT AS default_value,
        c.ORDINAL_POSITION AS ordinal_position,
        CASE WHEN pk.COLUMN_NAME IS NOT NULL THEN 1 ELSE 0 END AS is_primary_key,
        COALESCE(sc.is_identity, 0) AS is_identity,
        COALESCE(sc.is_computed, 0) AS is_computed
    FROM INFORMATION_SCHEMA.COLUMNS c
    JOIN INFORMATION_SCHEMA.TABLES t
        ON t.TABLE_SCHEMA = c.TABLE_SCHEMA
        AND t.TABLE_NAME = c.TABLE_NAME
        AND t.TABLE_TYPE = 'BASE TABLE'
    LEFT JOIN (
        SELECT ku.TABLE_SCHEMA, ku.TABLE_NAME, ku.COLUMN_NAME
        FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
        JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE ku
            ON tc.CONSTRAINT_NAME = ku.CONSTRAINT_NAME
            AND tc.TABLE_SCHEMA = ku.TABLE_SCHEMA
        WHERE tc.CONSTRAINT_TYPE = 'PRIMARY KEY'
    ) pk
        ON c.TABLE_SCHEMA = pk.TABLE_SCHEMA
        AND c.TABLE_NAME = pk.TABLE_NAME
        AND c.COLUMN_NAME = pk.COLUMN_NAME
    LEFT JOIN sys.columns sc
        ON sc.object_id = OBJECT_ID(QUOTENAME(c.TABLE_SCHEMA) + '.' + QUOTENAME(c.TABLE_NAME))
        AND sc.name = c.COLUMN_NAME
    ORDER BY c.TABLE_SCHEMA, c.TABLE_NAME, c.ORDINAL_POSITION
"""

VIEWS_QUERY = """
    SELECT
        s.name AS schema_name,
        v.name AS name
    FROM sys.views v
    JOIN sys.schemas s ON s.schema_id = v.schema_id
    WHERE v.is_ms_shipped = 0
    ORDER BY s.name, v.name
"""

PROCEDURES_QUERY = """
    SELECT
        s.name AS schema_name,
        p.name AS name
    FROM sys.procedures p
    JOIN sys.schemas s ON s.schema_id = p.schema_id
    WHERE p.is_ms_shipped = 0
    ORDER BY s.name, p.name
"""

FUNCTIONS_QUERY = """
    SELECT
        s.name AS schema_name,
        o.name AS name
    FROM sys.objects o
    JOIN sys.schemas s ON s.schema_id = o.schema_id
    WHERE o.type IN ('FN', 'IF', 'TF', 'FS', 'FT')
      AND o.is_ms_shipped = 0
    ORDER BY s.name, o.name
"""

TRIGGERS_QUERY = """
    SELECT
        s.name AS schema_name,
        t.name AS table_name,
        tr.name AS name
    FROM sys.triggers tr
    JOIN sys.tables t ON t.object_id = tr.parent_id
    JOIN sys.schemas s ON s.schema_id = t.schema_id
    WHERE tr.parent_class = 1
      AND tr.is_ms_shipped = 0
    ORDER BY s.name, t.name, tr.name
"""

INDEXES_QUERY = """
    SELECT
        s.name AS schema_name,
        t.name AS table_name,
        i.name AS index_name,
        i.type_desc AS index_type,
        i.is_unique,
        i.is_primary_key,
        i.is_unique_constraint,
        c.name AS column_name,
        ic.key_ordinal,
        ic.index_column_id,
        ic.is_descending_key,
        ic.is_included_column
    FROM sys.indexes i
    JOIN sys.tables t ON t.object_id = i.object_id
    JOIN sys.schemas s ON s.schema_id = t.schema_id
    JOIN sys.index_columns ic ON ic.object_id = i.object_id AND ic.index_id = i.index_id
    JOIN sys.columns c ON c.object_id = ic.object_id AND c.column_id = ic.column_id
    WHERE i.type > 0
      AND t.is_ms_shipped = 0
    ORDER BY s.name, t.name, i.name, ic.key_ordinal, ic.index_column_id
"""

KEY_CONSTRAINTS_QUERY = """
    SELECT
        s.name AS schema_name,
        t.name AS table_name,
        kc.name AS constraint_name,
        kc.type AS constraint_type,
        kc.is_system_named,
        c.name AS column_name,
        ic.key_ordinal,
        ic.is_descending_key
    FROM sys.key_constraints kc
    JOIN sys.tables t ON t.object_id = kc.parent_object_id
    JOIN sys.schemas s ON s.schema_id = t.schema_id
    JOIN sys.index_columns ic
        ON ic.object_id = kc.parent_object_id
        AND ic.index_id = kc.unique_index_id
    JOIN sys.columns c ON c.object_id = ic.object_id AND c.column_id = ic.column_id
    WHERE t.is_ms_shipped = 0
    ORDER BY s.name, t.name, kc.name, ic.key_ordinal
"""

FOREIGN_KEYS_QUERY = """
    SELECT
        s.name AS schema_name,
        t.name AS table_name,
        fk.name AS constraint_name,
        c.name AS column_name,
        fkc.constraint_column_id,
        rs.name AS referenced_schema,
        rt.name AS referenced_table,
        rc.name AS referenced_column,
        fk.delete_referential_action_desc AS on_delete,
        fk.update_referential_action_desc AS on_update,
        fk.is_system_named
    FROM sys.foreign_keys fk
    JOIN sys.tables t ON t.object_id = fk.parent_object_id
    JOIN sys.schemas s ON s.schema_id = t.schema_id
    JOIN sys.foreign_key_columns fkc ON fkc.constraint_object_id = fk.object_id
    JOIN sys.columns c
        ON c.object_id = fkc.parent_object_id
        AND c.column_id = fkc.parent_column_id
    JOIN sys.tables rt ON rt.object_id = fkc.referenced_object_id
    JOIN sys.schemas rs ON rs.schema_id = rt.schema_id
    JOIN sys.columns rc
        ON rc.object_id = fkc.referenced_object_id
        AND rc.column_id = fkc.referenced_column_id
    WHERE t.is_ms_shipped = 0
    ORDER BY s.name, t.name, fk.name, fkc.constraint_column_id
"""

CHECK_CONSTRAINTS_QUERY = """
    SELECT
        s.name AS schema_name,
        t.name AS table_name,
        cc.name AS constraint_name,
        cc.definition AS check_expression,
        cc.is_system_named,
        COL_NAME(cc.parent_object_id, cc.parent_column_id) AS column_name
    FROM sys.check_constraints cc
    JOIN sys.tables t ON t.object_id = cc.parent_object_id
    JOIN sys.schemas s ON s.schema_id = t.schema_id
    WHERE t.is_ms_shipped = 0
    ORDER BY s.name, t.name, cc.name
"""

DEFINITION_QUERY = """
    SELECT OBJECT_DEFINITION(OBJECT_ID(:object_name)) AS definition
"""


def quote_name(schema_name: str, name: str) -> str:
    """Bracket-quote a two-part name the way QUOTENAME does.

    Example:
        >>> quote_name("dbo", "Order]Lines")
        '[dbo].[Order]]Lines]'
    """
    return "[{}].[{}]".format(schema_name.replace("]", "]]"), name.replace("]", "]]"))


class SchemaIntrospector:
    """Introspects a SQL Server database schema.

    Opens one session through the connection provider on ``__aenter__`` and
    releases it on ``__aexit__``, whether or not extraction succeeded.

    Usage:
        async with SchemaIntrospector(provider, "prod", "Sales") as introspector:
            snapshot = await introspector.introspect(token)
    """

    def __init__(
        self,
        provider: ConnectionProvider,
        connection_id: str,
        database: str,
        excluded_schemas: list[str] | tuple[str, ...] | None = None,
    ) -> None:
        """Initialize with a provider and the database to read.

        Args:
            provider: Connection provider used to open the session
            connection_id: Connection id understood by the provider
            database: Database name
            excluded_schemas: Schemas to skip (default:
                ``EXCLUDED_SCHEMAS_DEFAULT``). Compared case-insensitively.
        """
        self._provider = provider
        self._connection_id = connection_id
        self._database = database
        if excluded_schemas is None:
            excluded_schemas = EXCLUDED_SCHEMAS_DEFAULT
        self._excluded_schemas = {s.lower() for s in excluded_schemas}
        self._session: Session | None = None

    @property
    def database(self) -> str:
        return self._database

    async def __aenter__(self) -> "SchemaIntrospector":
        """Async context manager entry - opens session."""
        self._session = await self._provider.open_session(
            self._connection_id, self._database
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - closes session."""
        if self._session is not None:
            session, self._session = self._session, None
            await session.close()

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    async def introspect(self, token: CancellationToken | None = None) -> SchemaSnapshot:
        """Introspect the full database schema.

        Queries run sequentially on this introspector's session; the token
        is checked before each one.

        Returns:
            SchemaSnapshot with every table, column, view, routine, trigger,
            index and constraint outside the excluded schemas.

        Raises:
            ExtractionError: If any catalog query fails.
            ComparisonCancelledError: If *token* is cancelled.
        """
        self._require_session()
        logger.info(f"[Introspector] Reading schema of {self._connection_id}/{self._database}")

        snapshot = SchemaSnapshot(database=self._database)

        check_cancelled(token)
        snapshot.tables = await self._get_tables()
        check_cancelled(token)
        snapshot.columns = await self._get_columns()
        check_cancelled(token)
        snapshot.views = await self._get_views()
        check_cancelled(token)
        snapshot.procedures = await self._get_procedures()
        check_cancelled(token)
        snapshot.functions = await self._get_functions()
        check_cancelled(token)
        snapshot.triggers = await self._get_triggers()
        check_cancelled(token)
        snapshot.indexes = await self._get_indexes()
        check_cancelled(token)
        snapshot.constraints = await self._get_constraints(token)

        logger.info(
            f"[Introspector] {self._database}: {len(snapshot.tables)} tables, "
            f"{len(snapshot.views)} views, {len(snapshot.procedures)} procedures, "
            f"{len(snapshot.functions)} functions"
        )
        return snapshot

    async def fetch_definition(
        self, kind: ObjectKind, schema_name: str, name: str
    ) -> str | None:
        """Fetch the stored module text of a view, routine or trigger.

        Returns:
            Definition text, or ``None`` when the object has none (missing,
            or encrypted).

        Raises:
            DefinitionFetchError: If the query fails.
        """
        self._require_session()
        if kind not in FETCHED_KINDS:
            raise ValueError(f"{kind.value} has no stored definition")

        object_name = quote_name(schema_name, name)
        try:
            rows = await self._session.query(DEFINITION_QUERY, {"object_name": object_name})
        except Exception as e:
            raise DefinitionFetchError(kind.value, f"{schema_name}.{name}", e) from e

        if not rows:
            return None
        return rows[0].get("definition")

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    def _require_session(self) -> None:
        if self._session is None:
            raise RuntimeError("Introspector not connected. Use async with statement.")

    def _included(self, schema_name: str) -> bool:
        return schema_name.lower() not in self._excluded_schemas

    async def _query(self, step: str, sql: str) -> list[dict]:
        logger.debug(f"[Introspector] {self._database}: reading {step}")
        try:
            rows = await self._session.query(sql)
        except Exception as e:
            raise ExtractionError(self._database, step, e) from e
        return [row for row in rows if self._included(row["schema_name"])]

    async def _get_tables(self) -> list[TableDescriptor]:
        rows = await self._query("tables", TABLES_QUERY)
        return [TableDescriptor(schema_name=r["schema_name"], name=r["name"]) for r in rows]

    async def _get_columns(self) -> list[ColumnDescriptor]:
        rows = await self._query("columns", COLUMNS_QUERY)
        return [
            ColumnDescriptor(
                schema_name=r["schema_name"],
                table=r["table_name"],
                name=r["column_name"],
                data_type=r["data_type"],
                nullable=(r["is_nullable"] == "YES"),
                max_length=r["max_length"],
                precision=r["numeric_precision"],
                scale=r["numeric_scale"],
                default_value=r["default_value"],
                is_identity=bool(r["is_identity"]),
                is_computed=bool(r["is_computed"]),
                is_primary_key=bool(r["is_primary_key"]),
                ordinal_position=r["ordinal_position"] or 0,
            )
            for r in rows
        ]

    async def _get_views(self) -> list[ViewDescriptor]:
        rows = await self._query("views", VIEWS_QUERY)
        return [ViewDescriptor(schema_name=r["schema_name"], name=r["name"]) for r in rows]

    async def _get_procedures(self) -> list[ProcedureDescriptor]:
        rows = await self._query("procedures", PROCEDURES_QUERY)
        return [ProcedureDescriptor(schema_name=r["schema_name"], name=r["name"]) for r in rows]

    async def _get_functions(self) -> list[FunctionDescriptor]:
        rows = await self._query("functions", FUNCTIONS_QUERY)
        return [FunctionDescriptor(schema_name=r["schema_name"], name=r["name"]) for r in rows]

    async def _get_triggers(self) -> list[TriggerDescriptor]:
        rows = await self._query("triggers", TRIGGERS_QUERY)
        return [
            TriggerDescriptor(schema_name=r["schema_name"], table=r["table_name"], name=r["name"])
            for r in rows
        ]

    async def _get_indexes(self) -> list[IndexDescriptor]:
        """Get indexes, grouping one row per index column."""
        rows = await self._query("indexes", INDEXES_QUERY)

        indexes: dict[tuple[str, str, str], IndexDescriptor] = {}
        positions: dict[tuple[str, str, str], dict[str, tuple[Any, ...]]] = {}

        for r in rows:
            key = (r["schema_name"], r["table_name"], r["index_name"])
            if key not in indexes:
                indexes[key] = IndexDescriptor(
                    schema_name=r["schema_name"],
                    table=r["table_name"],
                    name=r["index_name"],
                    index_type=r["index_type"],
                    is_unique=bool(r["is_unique"]),
                    is_primary_key=bool(r["is_primary_key"]),
                    is_unique_constraint=bool(r["is_unique_constraint"]),
                )
                positions[key] = {}

            included = bool(r["is_included_column"])
            column = IndexColumn(
                name=r["column_name"],
                key_ordinal=0 if included else (r["key_ordinal"] or 0),
                is_descending=bool(r["is_descending_key"]),
                is_included=included,
            )
            # Key columns sort by key ordinal, included columns after them by column id
            sort_key = (1, r["index_column_id"]) if included else (0, column.key_ordinal)
            positions[key].setdefault(column.name, (sort_key, column))

        for key, index in indexes.items():
            ordered = sorted(positions[key].values(), key=lambda item: item[0])
            index.columns = [column for _, column in ordered]

        return list(indexes.values())

    async def _get_constraints(
        self, token: CancellationToken | None = None
    ) -> list[ConstraintDescriptor]:
        """Get PK/UQ, FK and CHECK constraints, grouped by constraint name."""
        constraints: dict[tuple[str, str, str], ConstraintDescriptor] = {}

        key_rows = await self._query("key constraints", KEY_CONSTRAINTS_QUERY)
        key_columns: dict[tuple[str, str, str], list[tuple[int, str, bool]]] = {}
        for r in key_rows:
            key = (r["schema_name"], r["table_name"], r["constraint_name"])
            if key not in constraints:
                kind = (
                    ConstraintKind.PRIMARY_KEY
                    if r["constraint_type"].strip() == "PK"
                    else ConstraintKind.UNIQUE
                )
                constraints[key] = ConstraintDescriptor(
                    schema_name=r["schema_name"],
                    table=r["table_name"],
                    name=r["constraint_name"],
                    kind=kind,
                    is_system_named=bool(r["is_system_named"]),
                )
                key_columns[key] = []
            entry = (r["key_ordinal"] or 0, r["column_name"], bool(r["is_descending_key"]))
            if entry not in key_columns[key]:
                key_columns[key].append(entry)

        for key, entries in key_columns.items():
            entries.sort(key=lambda e: e[0])
            constraints[key].columns = [name for _, name, _ in entries]
            constraints[key].descending_columns = [name for _, name, desc in entries if desc]

        check_cancelled(token)
        fk_rows = await self._query("foreign keys", FOREIGN_KEYS_QUERY)
        fk_pairs: dict[tuple[str, str, str], dict[int, tuple[str, str]]] = {}
        for r in fk_rows:
            key = (r["schema_name"], r["table_name"], r["constraint_name"])
            if key not in constraints:
                constraints[key] = ConstraintDescriptor(
                    schema_name=r["schema_name"],
                    table=r["table_name"],
                    name=r["constraint_name"],
                    kind=ConstraintKind.FOREIGN_KEY,
                    referenced_schema=r["referenced_schema"],
                    referenced_table=r["referenced_table"],
                    on_delete=r["on_delete"],
                    on_update=r["on_update"],
                    is_system_named=bool(r["is_system_named"]),
                )
                fk_pairs[key] = {}
            fk_pairs[key][r["constraint_column_id"]] = (r["column_name"], r["referenced_column"])

        for key, pairs in fk_pairs.items():
            ordered = [pairs[position] for position in sorted(pairs)]
            constraints[key].columns = [column for column, _ in ordered]
            constraints[key].referenced_columns = [ref for _, ref in ordered]

        check_cancelled(token)
        check_rows = await self._query("check constraints", CHECK_CONSTRAINTS_QUERY)
        for r in check_rows:
            key = (r["schema_name"], r["table_name"], r["constraint_name"])
            if key in constraints:
                continue
            constraints[key] = ConstraintDescriptor(
                schema_name=r["schema_name"],
                table=r["table_name"],
                name=r["constraint_name"],
                kind=ConstraintKind.CHECK,
                columns=[r["column_name"]] if r["column_name"] else [],
                check_expression=r["check_expression"],
                is_system_named=bool(r["is_system_named"]),
            )

        return list(constraints.values())


async def extract_snapshot(
    provider: ConnectionProvider,
    connection_id: str,
    database: str,
    token: CancellationToken | None = None,
    excluded_schemas: list[str] | tuple[str, ...] | None = None,
) -> SchemaSnapshot:
    """Extract a snapshot with a session scoped to this call.

    The session is released before this function returns or raises.

    Raises:
        DatabaseConnectionError: If the session cannot be opened.
        ExtractionError: If a catalog query fails.
    """
    async with SchemaIntrospector(
        provider, connection_id, database, excluded_schemas=excluded_schemas
    ) as introspector:
        return await introspector.introspect(token)
