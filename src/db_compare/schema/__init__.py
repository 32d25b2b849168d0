"""Schema extraction, canonical definitions, caching and diffing.

Provides live database introspection (``SchemaIntrospector``), canonical
definition building (``build_definition``, ``normalize_definition``), the
per-run ``DefinitionCache``, and the diff engine (``diff_snapshots``).

Usage:
    from db_compare.schema import SchemaIntrospector, diff_snapshots
    from db_compare.schema import DefinitionCache, normalize_definition
"""

from db_compare.schema.cache import DefinitionCache
from db_compare.schema.comparator import diff_snapshots, skipped_comparisons
from db_compare.schema.definitions import (
    TableDefinition,
    build_definition,
    build_table_definition,
    definitions_equal,
    format_data_type,
    normalize_definition,
    render_table_definition,
)
from db_compare.schema.introspector import SchemaIntrospector, extract_snapshot
from db_compare.schema.models import (
    CanonicalDefinition,
    Change,
    ChangeDetail,
    ChangeType,
    ColumnDescriptor,
    ComparisonResult,
    ConstraintDescriptor,
    ConstraintKind,
    IndexDescriptor,
    ObjectKind,
    SchemaSnapshot,
    Side,
    TableDescriptor,
)

__all__ = [
    "SchemaIntrospector",
    "extract_snapshot",
    "DefinitionCache",
    "diff_snapshots",
    "skipped_comparisons",
    "TableDefinition",
    "build_definition",
    "build_table_definition",
    "render_table_definition",
    "format_data_type",
    "normalize_definition",
    "definitions_equal",
    "CanonicalDefinition",
    "Change",
    "ChangeDetail",
    "ChangeType",
    "ColumnDescriptor",
    "ComparisonResult",
    "ConstraintDescriptor",
    "ConstraintKind",
    "IndexDescriptor",
    "ObjectKind",
    "SchemaSnapshot",
    "Side",
    "TableDescriptor",
]
