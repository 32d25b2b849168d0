"""Canonical definitions: structured table model, serializer, normalization.

Views, procedures, functions and triggers have a stored definition string,
fetched verbatim.  Tables do not, so their definition is reconstructed from
column, constraint and index descriptors:

1. ``build_table_definition()`` assembles a structured ``TableDefinition``
   in a fixed, deterministic order (columns, primary key, foreign keys,
   unique constraints, check constraints, then non-constraint indexes).
2. ``render_table_definition()`` serializes it to DDL-like text.
3. ``normalize_definition()`` folds case and whitespace so that two
   definitions compare equal iff their normalized text is identical.

Usage:
    from db_compare.schema.definitions import build_definition, definitions_equal

    definition = await build_definition(ObjectKind.TABLE, table, snapshot)
    if not definitions_equal(source_def.text, target_def.text):
        ...
"""

import re
from typing import Protocol

from pydantic import BaseModel, Field

from db_compare.schema.models import (
    FETCHED_KINDS,
    CanonicalDefinition,
    ColumnDescriptor,
    ConstraintDescriptor,
    ConstraintKind,
    IndexDescriptor,
    ObjectKind,
    SchemaSnapshot,
    TableDescriptor,
)


CHARACTER_TYPES = frozenset({"char", "varchar", "nchar", "nvarchar", "binary", "varbinary"})
DECIMAL_TYPES = frozenset({"decimal", "numeric"})
TIME_TYPES = frozenset({"time", "datetime2", "datetimeoffset"})


class DefinitionFetcher(Protocol):
    """Source of stored module text for one database side."""

    async def fetch_definition(
        self, kind: ObjectKind, schema_name: str, name: str
    ) -> str | None:
        """Return the definition text, ``None`` if absent.

        Raises:
            DefinitionFetchError: If the text cannot be retrieved.
        """
        ...


# ============================================================================
# Structured table model
# ============================================================================


class ColumnDefinition(BaseModel):
    name: str
    type_text: str
    nullable: bool


class KeyColumnDefinition(BaseModel):
    name: str
    descending: bool = False


class KeyConstraintDefinition(BaseModel):
    """PRIMARY KEY or UNIQUE constraint.

    ``name`` is ``None`` for a constraint whose name SQL Server generated.
    """

    name: str | None
    kind: ConstraintKind
    columns: list[KeyColumnDefinition] = Field(default_factory=list)


class ForeignKeyDefinition(BaseModel):
    name: str | None
    columns: list[str] = Field(default_factory=list)
    referenced_schema: str | None = None
    referenced_table: str | None = None
    referenced_columns: list[str] = Field(default_factory=list)
    on_delete: str | None = None
    on_update: str | None = None


class CheckConstraintDefinition(BaseModel):
    name: str | None
    expression: str = ""


class IndexDefinition(BaseModel):
    name: str
    index_type: str
    is_unique: bool = False
    key_columns: list[KeyColumnDefinition] = Field(default_factory=list)
    included_columns: list[str] = Field(default_factory=list)


class TableDefinition(BaseModel):
    """Structured, ordered representation of one table."""

    schema_name: str
    name: str
    columns: list[ColumnDefinition] = Field(default_factory=list)
    primary_key: KeyConstraintDefinition | None = None
    foreign_keys: list[ForeignKeyDefinition] = Field(default_factory=list)
    unique_constraints: list[KeyConstraintDefinition] = Field(default_factory=list)
    check_constraints: list[CheckConstraintDefinition] = Field(default_factory=list)
    indexes: list[IndexDefinition] = Field(default_factory=list)


# ============================================================================
# Builders
# ============================================================================


def format_data_type(column: ColumnDescriptor) -> str:
    """Format a column type with its length, precision or scale.

    Example:
        >>> col = ColumnDescriptor(schema_name="dbo", table="T", name="c",
        ...                        data_type="nvarchar", max_length=-1)
        >>> format_data_type(col)
        'nvarchar(MAX)'
    """
    data_type = column.data_type.lower()

    if data_type in CHARACTER_TYPES and column.max_length is not None:
        if column.max_length == -1:
            return f"{data_type}(MAX)"
        return f"{data_type}({column.max_length})"
    if data_type in DECIMAL_TYPES and column.precision is not None:
        return f"{data_type}({column.precision},{column.scale or 0})"
    if data_type in TIME_TYPES and column.scale is not None:
        return f"{data_type}({column.scale})"
    return data_type


def _table_level_name(constraint: ConstraintDescriptor) -> str | None:
    return None if constraint.is_system_named else constraint.name


def _constraint_order(constraint: ConstraintDescriptor) -> tuple:
    # Generated names differ between databases; order those by content
    if constraint.is_system_named:
        return (
            1,
            "",
            constraint.columns,
            constraint.referenced_schema or "",
            constraint.referenced_table or "",
            constraint.referenced_columns,
            constraint.check_expression or "",
        )
    return (0, constraint.name, [], "", "", [], "")


def _key_constraint(
    constraint: ConstraintDescriptor, name: str | None
) -> KeyConstraintDefinition:
    descending = set(constraint.descending_columns)
    return KeyConstraintDefinition(
        name=name,
        kind=constraint.kind,
        columns=[
            KeyColumnDefinition(name=column, descending=column in descending)
            for column in constraint.columns
        ],
    )


def _foreign_key(constraint: ConstraintDescriptor, name: str | None) -> ForeignKeyDefinition:
    return ForeignKeyDefinition(
        name=name,
        columns=list(constraint.columns),
        referenced_schema=constraint.referenced_schema,
        referenced_table=constraint.referenced_table,
        referenced_columns=list(constraint.referenced_columns),
        on_delete=constraint.on_delete,
        on_update=constraint.on_update,
    )


def _index(index: IndexDescriptor) -> IndexDefinition:
    return IndexDefinition(
        name=index.name,
        index_type=index.index_type,
        is_unique=index.is_unique,
        key_columns=[
            KeyColumnDefinition(name=c.name, descending=c.is_descending)
            for c in index.key_columns
        ],
        included_columns=[c.name for c in index.included_columns],
    )


def build_table_definition(table: TableDescriptor, snapshot: SchemaSnapshot) -> TableDefinition:
    """Assemble the structured definition of *table* from *snapshot*.

    Ordering depends only on descriptor content, never on the order the
    catalog queries returned rows in.  Constraints with generated names are
    listed unnamed, so tables built from the same DDL compare equal.
    """
    qualified_name = table.qualified_name

    columns = sorted(
        snapshot.columns_for(qualified_name),
        key=lambda c: (c.ordinal_position, c.name),
    )
    constraints = sorted(snapshot.constraints_for(qualified_name), key=_constraint_order)
    indexes = sorted(
        (i for i in snapshot.indexes_for(qualified_name) if not i.is_constraint_index),
        key=lambda i: i.name,
    )

    primary_keys = [c for c in constraints if c.kind is ConstraintKind.PRIMARY_KEY]
    primary_key = primary_keys[0] if primary_keys else None

    return TableDefinition(
        schema_name=table.schema_name,
        name=table.name,
        columns=[
            ColumnDefinition(name=c.name, type_text=format_data_type(c), nullable=c.nullable)
            for c in columns
        ],
        primary_key=(
            _key_constraint(primary_key, _table_level_name(primary_key))
            if primary_key is not None
            else None
        ),
        foreign_keys=[
            _foreign_key(c, _table_level_name(c))
            for c in constraints
            if c.kind is ConstraintKind.FOREIGN_KEY
        ],
        unique_constraints=[
            _key_constraint(c, _table_level_name(c))
            for c in constraints
            if c.kind is ConstraintKind.UNIQUE
        ],
        check_constraints=[
            CheckConstraintDefinition(
                name=_table_level_name(c), expression=c.check_expression or ""
            )
            for c in constraints
            if c.kind is ConstraintKind.CHECK
        ],
        indexes=[_index(i) for i in indexes],
    )


# ============================================================================
# Serializer
# ============================================================================


def _q(name: str) -> str:
    return "[" + name.replace("]", "]]") + "]"


def _qualified(schema_name: str | None, name: str | None) -> str:
    if schema_name:
        return f"{_q(schema_name)}.{_q(name or '')}"
    return _q(name or "")


def _key_list(columns: list[KeyColumnDefinition]) -> str:
    return ", ".join(f"{_q(c.name)} {'DESC' if c.descending else 'ASC'}" for c in columns)


def _name_list(columns: list[str]) -> str:
    return ", ".join(_q(c) for c in columns)


def _constraint_prefix(name: str | None) -> str:
    return f"CONSTRAINT {_q(name)} " if name else ""


def _referential_action(clause: str, action: str | None) -> str:
    if not action or action.upper() == "NO_ACTION":
        return ""
    return f" {clause} {action.replace('_', ' ')}"


def _key_constraint_body(constraint: KeyConstraintDefinition) -> str:
    return (
        f"{_constraint_prefix(constraint.name)}{constraint.kind.value} "
        f"({_key_list(constraint.columns)})"
    )


def _foreign_key_body(fk: ForeignKeyDefinition) -> str:
    return (
        f"{_constraint_prefix(fk.name)}FOREIGN KEY ({_name_list(fk.columns)}) "
        f"REFERENCES {_qualified(fk.referenced_schema, fk.referenced_table)} "
        f"({_name_list(fk.referenced_columns)})"
        f"{_referential_action('ON DELETE', fk.on_delete)}"
        f"{_referential_action('ON UPDATE', fk.on_update)}"
    )


def _check_body(check: CheckConstraintDefinition) -> str:
    return f"{_constraint_prefix(check.name)}CHECK {check.expression}"


def _index_statement(index: IndexDefinition, schema_name: str, table: str) -> str:
    unique = "UNIQUE " if index.is_unique else ""
    statement = (
        f"CREATE {unique}{index.index_type} INDEX {_q(index.name)} "
        f"ON {_qualified(schema_name, table)} ({_key_list(index.key_columns)})"
    )
    if index.included_columns:
        statement += f" INCLUDE ({_name_list(index.included_columns)})"
    return statement + ";"


def render_table_definition(table: TableDefinition) -> str:
    """Serialize a ``TableDefinition`` to canonical text."""
    body: list[str] = [
        f"{_q(c.name)} {c.type_text} {'NULL' if c.nullable else 'NOT NULL'}"
        for c in table.columns
    ]
    if table.primary_key is not None:
        body.append(_key_constraint_body(table.primary_key))
    body.extend(_foreign_key_body(fk) for fk in table.foreign_keys)
    body.extend(_key_constraint_body(uq) for uq in table.unique_constraints)
    body.extend(_check_body(ck) for ck in table.check_constraints)

    lines = [f"CREATE TABLE {_qualified(table.schema_name, table.name)} ("]
    lines.append(",\n".join(f"    {line}" for line in body))
    lines.append(");")

    if table.indexes:
        lines.append("")
        lines.append("-- Indexes")
        lines.extend(
            _index_statement(index, table.schema_name, table.name) for index in table.indexes
        )

    return "\n".join(lines)


def render_index(index: IndexDescriptor) -> str:
    """Render one index descriptor as a CREATE INDEX statement."""
    return _index_statement(_index(index), index.schema_name, index.table)


def render_constraint(constraint: ConstraintDescriptor) -> str:
    """Render one constraint descriptor as an ALTER TABLE statement."""
    if constraint.kind is ConstraintKind.FOREIGN_KEY:
        body = _foreign_key_body(_foreign_key(constraint, constraint.name))
    elif constraint.kind is ConstraintKind.CHECK:
        body = _check_body(
            CheckConstraintDefinition(name=constraint.name, expression=constraint.check_expression or "")
        )
    else:
        body = _key_constraint_body(_key_constraint(constraint, constraint.name))
    return f"ALTER TABLE {_qualified(constraint.schema_name, constraint.table)} ADD {body};"


# ============================================================================
# Canonical definitions
# ============================================================================


def not_found_text(kind: ObjectKind, qualified_name: str) -> str:
    """Placeholder text for an object with no retrievable definition."""
    return f"{kind.value} {qualified_name} not found"


def build_table_canonical(table: TableDescriptor, snapshot: SchemaSnapshot) -> CanonicalDefinition:
    return CanonicalDefinition(
        kind=ObjectKind.TABLE,
        qualified_name=table.qualified_name,
        text=render_table_definition(build_table_definition(table, snapshot)),
    )


async def build_definition(
    kind: ObjectKind,
    descriptor,
    snapshot: SchemaSnapshot,
    fetcher: DefinitionFetcher | None = None,
) -> CanonicalDefinition:
    """Build the canonical definition of one object.

    Tables are synthesized from *snapshot*.  Views, procedures, functions
    and triggers are fetched verbatim through *fetcher*; when the stored
    text is absent a ``"<kind> <name> not found"`` placeholder is returned
    instead of raising.

    Raises:
        DefinitionFetchError: Propagated from *fetcher* when the lookup
            itself fails.
        ValueError: For kinds without a definition, or a fetched kind with
            no fetcher.
    """
    if kind is ObjectKind.TABLE:
        return build_table_canonical(descriptor, snapshot)

    if kind not in FETCHED_KINDS:
        raise ValueError(f"{kind.value} objects have no canonical definition")
    if fetcher is None:
        raise ValueError(f"A definition fetcher is required for {kind.value} objects")

    text = await fetcher.fetch_definition(kind, descriptor.schema_name, descriptor.name)
    if text is None or not text.strip():
        return CanonicalDefinition(
            kind=kind,
            qualified_name=descriptor.qualified_name,
            text=not_found_text(kind, descriptor.qualified_name),
            found=False,
        )
    return CanonicalDefinition(kind=kind, qualified_name=descriptor.qualified_name, text=text)


# ============================================================================
# Normalization
# ============================================================================


_WHITESPACE_RE = re.compile(r"\s+")
_PUNCTUATION_SPACING_RE = re.compile(r" ?([(),;]) ?")


def normalize_definition(text: str) -> str:
    """Normalize definition text for comparison.

    Lowercases, normalizes line breaks, collapses whitespace runs to one
    space, and removes spaces adjacent to ``(``, ``)``, ``,`` and ``;``.

    Example:
        >>> normalize_definition("CREATE VIEW  v\\r\\nAS SELECT ( a , b )")
        'create view v as select(a,b)'
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n").lower()
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return _PUNCTUATION_SPACING_RE.sub(r"\1", text)


def definitions_equal(left: str, right: str) -> bool:
    """True iff both texts normalize to the same string."""
    return normalize_definition(left) == normalize_definition(right)
