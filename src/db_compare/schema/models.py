"""Pydantic models for schema snapshots and comparison results.

This module contains schema-domain models:
- Descriptors: TableDescriptor, ColumnDescriptor, ViewDescriptor,
  ProcedureDescriptor, FunctionDescriptor, TriggerDescriptor,
  IndexDescriptor, ConstraintDescriptor
- Snapshot: SchemaSnapshot (one per database side)
- Definitions: CanonicalDefinition
- Results: Change, ChangeDetail, ComparisonResult

Configuration models (ConnectionProfile, CompareConfig) live in
db_compare.config.models.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field


# ============================================================================
# Enumerations
# ============================================================================


class ObjectKind(str, Enum):
    """Kinds of schema objects, in the order changes are reported."""

    TABLE = "table"
    COLUMN = "column"
    VIEW = "view"
    PROCEDURE = "procedure"
    FUNCTION = "function"
    TRIGGER = "trigger"
    INDEX = "index"
    CONSTRAINT = "constraint"

    @property
    def label(self) -> str:
        """Capitalized display name (``"Procedure"``)."""
        return self.value.capitalize()


KIND_ORDER: tuple[ObjectKind, ...] = tuple(ObjectKind)

# Kinds compared by definition text in addition to presence
CONTENT_KINDS: frozenset[ObjectKind] = frozenset(
    {
        ObjectKind.TABLE,
        ObjectKind.VIEW,
        ObjectKind.PROCEDURE,
        ObjectKind.FUNCTION,
        ObjectKind.TRIGGER,
    }
)

# Content kinds whose definition is stored text rather than synthesized
FETCHED_KINDS: frozenset[ObjectKind] = CONTENT_KINDS - {ObjectKind.TABLE}


class ChangeType(str, Enum):
    ADD = "add"
    CHANGE = "change"
    DELETE = "delete"


class Side(str, Enum):
    SOURCE = "source"
    TARGET = "target"


class ConstraintKind(str, Enum):
    PRIMARY_KEY = "PRIMARY KEY"
    FOREIGN_KEY = "FOREIGN KEY"
    UNIQUE = "UNIQUE"
    CHECK = "CHECK"


# ============================================================================
# Descriptors
# ============================================================================


class TableDescriptor(BaseModel):
    """A base table."""

    schema_name: str
    name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


class ColumnDescriptor(BaseModel):
    """A table column as reported by INFORMATION_SCHEMA.COLUMNS.

    ``max_length`` is in characters for character types and ``-1`` for
    ``(MAX)`` types.

    Example:
        >>> col = ColumnDescriptor(schema_name="dbo", table="Users", name="Id", data_type="int")
        >>> col.qualified_name
        'dbo.Users.Id'
    """

    schema_name: str
    table: str
    name: str
    data_type: str
    nullable: bool = True
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None
    default_value: str | None = None
    is_identity: bool = False
    is_computed: bool = False
    is_primary_key: bool = False
    ordinal_position: int = 0

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table}.{self.name}"

    @property
    def table_qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table}"


class ViewDescriptor(BaseModel):
    schema_name: str
    name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


class ProcedureDescriptor(BaseModel):
    schema_name: str
    name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


class FunctionDescriptor(BaseModel):
    schema_name: str
    name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


class TriggerDescriptor(BaseModel):
    """A DML trigger attached to a table."""

    schema_name: str
    table: str
    name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table}.{self.name}"

    @property
    def object_name(self) -> str:
        """Schema-scoped name used to look up the trigger's module text."""
        return f"{self.schema_name}.{self.name}"


class IndexColumn(BaseModel):
    """One column of an index (key or included)."""

    name: str
    key_ordinal: int = 0
    is_descending: bool = False
    is_included: bool = False


class IndexDescriptor(BaseModel):
    """An index, assembled from one catalog row per index column."""

    schema_name: str
    table: str
    name: str
    index_type: str = "NONCLUSTERED"
    is_unique: bool = False
    is_primary_key: bool = False
    is_unique_constraint: bool = False
    columns: list[IndexColumn] = Field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table}.{self.name}"

    @property
    def table_qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table}"

    @property
    def is_constraint_index(self) -> bool:
        """True when the index backs a PRIMARY KEY or UNIQUE constraint."""
        return self.is_primary_key or self.is_unique_constraint

    @property
    def key_columns(self) -> list[IndexColumn]:
        return sorted(
            (c for c in self.columns if not c.is_included),
            key=lambda c: c.key_ordinal,
        )

    @property
    def included_columns(self) -> list[IndexColumn]:
        return [c for c in self.columns if c.is_included]


class ConstraintDescriptor(BaseModel):
    """A table constraint, assembled from one catalog row per column.

    ``columns`` and ``referenced_columns`` are parallel lists for foreign
    keys, in constraint-column order.
    """

    schema_name: str
    table: str
    name: str
    kind: ConstraintKind
    columns: list[str] = Field(default_factory=list)
    descending_columns: list[str] = Field(default_factory=list)
    referenced_schema: str | None = None
    referenced_table: str | None = None
    referenced_columns: list[str] = Field(default_factory=list)
    on_delete: str | None = None
    on_update: str | None = None
    check_expression: str | None = None
    # Name generated by SQL Server (PK__Users__3214EC07...)
    is_system_named: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table}.{self.name}"

    @property
    def table_qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table}"


# ============================================================================
# Snapshot
# ============================================================================


_KIND_FIELDS: dict[ObjectKind, str] = {
    ObjectKind.TABLE: "tables",
    ObjectKind.COLUMN: "columns",
    ObjectKind.VIEW: "views",
    ObjectKind.PROCEDURE: "procedures",
    ObjectKind.FUNCTION: "functions",
    ObjectKind.TRIGGER: "triggers",
    ObjectKind.INDEX: "indexes",
    ObjectKind.CONSTRAINT: "constraints",
}


class SchemaSnapshot(BaseModel):
    """All descriptors extracted from one database at one point in time.

    Descriptor lists keep the order in which introspection returned them;
    ``keyed()`` exposes the same order as a dict by qualified name.

    Example:
        >>> snap = SchemaSnapshot(database="app", tables=[TableDescriptor(schema_name="dbo", name="Users")])
        >>> list(snap.keyed(ObjectKind.TABLE))
        ['dbo.Users']
    """

    database: str = ""
    tables: list[TableDescriptor] = Field(default_factory=list)
    columns: list[ColumnDescriptor] = Field(default_factory=list)
    views: list[ViewDescriptor] = Field(default_factory=list)
    procedures: list[ProcedureDescriptor] = Field(default_factory=list)
    functions: list[FunctionDescriptor] = Field(default_factory=list)
    triggers: list[TriggerDescriptor] = Field(default_factory=list)
    indexes: list[IndexDescriptor] = Field(default_factory=list)
    constraints: list[ConstraintDescriptor] = Field(default_factory=list)

    def descriptors(self, kind: ObjectKind) -> list[Any]:
        """Descriptors of *kind* in encounter order."""
        return getattr(self, _KIND_FIELDS[kind])

    def keyed(self, kind: ObjectKind) -> dict[str, Any]:
        """Descriptors of *kind* keyed by qualified name (first wins)."""
        result: dict[str, Any] = {}
        for descriptor in self.descriptors(kind):
            result.setdefault(descriptor.qualified_name, descriptor)
        return result

    def columns_for(self, table_qualified_name: str) -> list[ColumnDescriptor]:
        return [c for c in self.columns if c.table_qualified_name == table_qualified_name]

    def indexes_for(self, table_qualified_name: str) -> list[IndexDescriptor]:
        return [i for i in self.indexes if i.table_qualified_name == table_qualified_name]

    def constraints_for(self, table_qualified_name: str) -> list[ConstraintDescriptor]:
        return [c for c in self.constraints if c.table_qualified_name == table_qualified_name]

    def object_count(self) -> int:
        return sum(len(self.descriptors(kind)) for kind in KIND_ORDER)


# ============================================================================
# Canonical definitions
# ============================================================================


class CanonicalDefinition(BaseModel):
    """Deterministic text of one object's structure.

    ``text`` is kept as produced (verbatim module text, or the rendered
    table definition); comparisons go through ``normalize_definition()``.
    """

    kind: ObjectKind
    qualified_name: str
    text: str
    found: bool = True


# ============================================================================
# Comparison results
# ============================================================================


class Change(BaseModel):
    """One difference between source and target.

    Example:
        >>> change = Change(object_type="view", object_name="dbo.v", change_type="delete")
        >>> change.change_type
        <ChangeType.DELETE: 'delete'>
    """

    object_type: ObjectKind
    object_name: str
    change_type: ChangeType
    description: str = ""
    details: str | None = None


class ChangeDetail(BaseModel):
    """Before/after definition text for one change."""

    before: str
    after: str


class ComparisonEndpoint(BaseModel):
    connection_id: str
    database: str

    def __str__(self) -> str:
        return f"{self.connection_id}/{self.database}"


class ComparisonResult(BaseModel):
    """Result of ``ComparisonSession.start_comparison()``.

    ``skipped`` lists objects present on both sides whose definitions could
    not be fetched on at least one side, so they were not content-compared.
    """

    success: bool
    changes: list[Change] = Field(default_factory=list)
    error: str | None = None
    cancelled: bool = False
    skipped: list[str] = Field(default_factory=list)
    source: ComparisonEndpoint | None = None
    target: ComparisonEndpoint | None = None

    @computed_field
    @property
    def change_count(self) -> int:
        return len(self.changes)

    def format_report(self) -> str:
        """Format result as a plain-text report."""
        if not self.success:
            return f"Comparison failed: {self.error}"

        if not self.changes:
            lines = ["Schemas are identical"]
        else:
            lines = [f"{len(self.changes)} change(s) found:"]
            for change in self.changes:
                lines.append(
                    f"  [{change.change_type.value}] {change.object_type.value} "
                    f"{change.object_name}: {change.description}"
                )

        if self.skipped:
            lines.append(
                f"\n  Not compared (definition unavailable): {', '.join(self.skipped)}"
            )

        return "\n".join(lines)
