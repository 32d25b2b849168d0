"""Schema diff engine.

Compares two snapshots kind by kind and returns a flat list of ``Change``
records. Pure logic over snapshots and cached definitions: no I/O, no
database connections, never reads row data.

Per kind, in ``KIND_ORDER``:

1. Presence diff: names only in source are ``delete``, names only in target
   are ``add``.
2. Content diff (tables, views, procedures, functions, triggers): names on
   both sides whose normalized definitions differ are ``change``.  Skipped
   when either side's definition is not cached.
3. Column diff: columns on both sides are compared field by field.

Usage:
    from db_compare.schema.comparator import diff_snapshots

    changes = diff_snapshots(source_snapshot, target_snapshot, cache)
    for change in changes:
        print(change.change_type.value, change.object_name)
"""

from collections.abc import Callable
from typing import Any

from db_compare.cancellation import CancellationToken, check_cancelled
from db_compare.schema.cache import DefinitionCache
from db_compare.schema.definitions import definitions_equal, format_data_type
from db_compare.schema.models import (
    CONTENT_KINDS,
    KIND_ORDER,
    Change,
    ChangeType,
    ColumnDescriptor,
    ObjectKind,
    SchemaSnapshot,
    Side,
)


# ============================================================================
# Descriptions
# ============================================================================


def _presence_description(kind: ObjectKind, descriptor: Any, change_type: ChangeType) -> str:
    if kind is ObjectKind.TABLE:
        if change_type is ChangeType.DELETE:
            return "Table exists in source but not in target database"
        return "Table exists in target but not in source database"
    if kind is ObjectKind.COLUMN:
        verb = "deleted from" if change_type is ChangeType.DELETE else "added to"
        return f"Column {verb} table {descriptor.table}"
    if kind in (ObjectKind.INDEX, ObjectKind.CONSTRAINT):
        verb = "deleted from" if change_type is ChangeType.DELETE else "added to"
        return f"{kind.label} {verb} table {descriptor.table}"
    if change_type is ChangeType.DELETE:
        return f"{kind.label} exists in source but not in target"
    return f"{kind.label} exists in target but not in source"


def _presence_details(kind: ObjectKind, descriptor: Any, change_type: ChangeType) -> str | None:
    if kind is ObjectKind.COLUMN:
        details = f"Type: {format_data_type(descriptor)}"
        if change_type is ChangeType.ADD:
            details += f"\nNullable: {_fmt(descriptor.nullable)}"
        return details
    if kind is ObjectKind.INDEX:
        return f"Type: {descriptor.index_type}\nUnique: {'Yes' if descriptor.is_unique else 'No'}"
    if kind is ObjectKind.CONSTRAINT:
        return f"Type: {descriptor.kind.value}"
    return None


def _fmt(value: Any) -> str:
    if value is None:
        return "N/A"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ============================================================================
# Per-kind passes
# ============================================================================


def _presence_changes(
    kind: ObjectKind,
    source: dict[str, Any],
    target: dict[str, Any],
) -> list[Change]:
    changes: list[Change] = []

    for name, descriptor in source.items():
        if name not in target:
            changes.append(
                Change(
                    object_type=kind,
                    object_name=name,
                    change_type=ChangeType.DELETE,
                    description=_presence_description(kind, descriptor, ChangeType.DELETE),
                    details=_presence_details(kind, descriptor, ChangeType.DELETE),
                )
            )

    for name, descriptor in target.items():
        if name not in source:
            changes.append(
                Change(
                    object_type=kind,
                    object_name=name,
                    change_type=ChangeType.ADD,
                    description=_presence_description(kind, descriptor, ChangeType.ADD),
                    details=_presence_details(kind, descriptor, ChangeType.ADD),
                )
            )

    return changes


def _content_changes(
    kind: ObjectKind,
    source: dict[str, Any],
    target: dict[str, Any],
    cache: DefinitionCache,
) -> list[Change]:
    changes: list[Change] = []
    for name in source:
        if name not in target:
            continue
        before = cache.lookup(Side.SOURCE, kind, name)
        after = cache.lookup(Side.TARGET, kind, name)
        if before is None or after is None:
            continue
        if not definitions_equal(before.text, after.text):
            changes.append(
                Change(
                    object_type=kind,
                    object_name=name,
                    change_type=ChangeType.CHANGE,
                    description=f"{kind.label} definition has changed",
                )
            )
    return changes


# (label, accessor) pairs compared for columns present on both sides
COLUMN_FIELDS: tuple[tuple[str, Callable[[ColumnDescriptor], Any]], ...] = (
    ("Data type", lambda c: c.data_type),
    ("Nullable", lambda c: c.nullable),
    ("Max length", lambda c: c.max_length),
    ("Default value", lambda c: c.default_value),
)


def column_differences(before: ColumnDescriptor, after: ColumnDescriptor) -> list[str]:
    """Describe each differing column field as ``"<Field> changed: old → new"``.

    Example:
        >>> a = ColumnDescriptor(schema_name="dbo", table="T", name="c", data_type="int")
        >>> b = a.model_copy(update={"nullable": False})
        >>> column_differences(a, b)
        ['Nullable changed: true → false']
    """
    differences = []
    for label, accessor in COLUMN_FIELDS:
        old, new = accessor(before), accessor(after)
        if old != new:
            differences.append(f"{label} changed: {_fmt(old)} → {_fmt(new)}")
    return differences


def _column_changes(source: dict[str, Any], target: dict[str, Any]) -> list[Change]:
    changes: list[Change] = []
    for name, before in source.items():
        after = target.get(name)
        if after is None:
            continue
        differences = column_differences(before, after)
        if differences:
            changes.append(
                Change(
                    object_type=ObjectKind.COLUMN,
                    object_name=name,
                    change_type=ChangeType.CHANGE,
                    description="Column definition changed",
                    details="\n".join(differences),
                )
            )
    return changes


# ============================================================================
# Public API
# ============================================================================


def diff_snapshots(
    source: SchemaSnapshot,
    target: SchemaSnapshot,
    cache: DefinitionCache | None = None,
    token: CancellationToken | None = None,
) -> list[Change]:
    """Diff two snapshots.

    Args:
        source: Snapshot of the source database
        target: Snapshot of the target database
        cache: Populated definition cache.  When ``None``, a cache holding
            only table definitions is built from the snapshots, so views and
            routines are compared by presence only.
        token: Checked before each kind is processed

    Returns:
        Changes grouped by kind in ``KIND_ORDER``; within a kind, deletes
        (source order), then adds (target order), then changes (source
        order).

    Raises:
        ComparisonCancelledError: If *token* is cancelled.
    """
    if cache is None:
        cache = DefinitionCache()
        cache.populate_tables(source, Side.SOURCE)
        cache.populate_tables(target, Side.TARGET)

    changes: list[Change] = []
    for kind in KIND_ORDER:
        check_cancelled(token)
        source_keyed = source.keyed(kind)
        target_keyed = target.keyed(kind)

        changes.extend(_presence_changes(kind, source_keyed, target_keyed))
        if kind in CONTENT_KINDS:
            changes.extend(_content_changes(kind, source_keyed, target_keyed, cache))
        elif kind is ObjectKind.COLUMN:
            changes.extend(_column_changes(source_keyed, target_keyed))

    return changes


def skipped_comparisons(
    source: SchemaSnapshot,
    target: SchemaSnapshot,
    cache: DefinitionCache,
) -> list[str]:
    """Objects on both sides that could not be content-compared.

    Returns:
        ``"<kind> <qualified name>"`` entries, in ``KIND_ORDER`` then source
        order.
    """
    skipped = []
    for kind in KIND_ORDER:
        if kind not in CONTENT_KINDS:
            continue
        target_keyed = target.keyed(kind)
        for name in source.keyed(kind):
            if name not in target_keyed:
                continue
            if (
                cache.lookup(Side.SOURCE, kind, name) is None
                or cache.lookup(Side.TARGET, kind, name) is None
            ):
                skipped.append(f"{kind.value} {name}")
    return skipped
