"""Tests for SchemaIntrospector against an in-memory catalog.

Verifies descriptor construction from catalog rows, grouping of index and
constraint rows (composite keys never split, row order never implies
grouping), schema exclusion, definition fetching, and session release on
success, failure and cancellation.
"""

import asyncio

import pytest

from db_compare.cancellation import CancellationToken
from db_compare.errors import (
    ComparisonCancelledError,
    DatabaseConnectionError,
    DefinitionFetchError,
    ExtractionError,
)
from db_compare.schema.introspector import (
    CHECK_CONSTRAINTS_QUERY,
    COLUMNS_QUERY,
    FOREIGN_KEYS_QUERY,
    INDEXES_QUERY,
    KEY_CONSTRAINTS_QUERY,
    TABLES_QUERY,
    VIEWS_QUERY,
    SchemaIntrospector,
    extract_snapshot,
    quote_name,
)
from db_compare.schema.models import ConstraintKind, ObjectKind

from fake_db import (
    FakeCatalog,
    FakeProvider,
    check_row,
    column_row,
    foreign_key_row,
    index_row,
    key_constraint_row,
    object_row,
    table_row,
    users_catalog,
)


def _extract(catalog: FakeCatalog, **kwargs) -> tuple:
    provider = FakeProvider({("prod", "Sales"): catalog})
    snapshot = asyncio.run(extract_snapshot(provider, "prod", "Sales", **kwargs))
    return snapshot, provider


# ============================================================================
# Test: Basic extraction
# ============================================================================


class TestIntrospect:
    """Verify snapshot contents for the sample schema."""

    def test_tables_views_procedures(self) -> None:
        snapshot, _ = _extract(users_catalog())

        assert snapshot.database == "Sales"
        assert list(snapshot.keyed(ObjectKind.TABLE)) == ["dbo.Users"]
        assert list(snapshot.keyed(ObjectKind.VIEW)) == ["dbo.vActiveUsers"]
        assert list(snapshot.keyed(ObjectKind.PROCEDURE)) == ["dbo.GetUser"]
        assert snapshot.functions == []
        assert snapshot.triggers == []

    def test_columns(self) -> None:
        snapshot, _ = _extract(users_catalog())

        id_col, name_col = snapshot.columns_for("dbo.Users")
        assert id_col.name == "Id"
        assert id_col.nullable is False
        assert id_col.is_primary_key is True
        assert id_col.is_identity is True
        assert name_col.data_type == "nvarchar"
        assert name_col.max_length == 50
        assert name_col.nullable is True
        assert name_col.ordinal_position == 2

    def test_session_released_after_success(self) -> None:
        _, provider = _extract(users_catalog())

        assert len(provider.sessions) == 1
        assert provider.open_sessions == []

    def test_excluded_schemas_dropped(self) -> None:
        catalog = users_catalog()
        catalog.add(TABLES_QUERY, table_row("staging", "Import"))
        catalog.add(VIEWS_QUERY, object_row("Staging", "vImport"))

        snapshot, _ = _extract(catalog, excluded_schemas=["sys", "staging"])

        assert list(snapshot.keyed(ObjectKind.TABLE)) == ["dbo.Users"]
        assert list(snapshot.keyed(ObjectKind.VIEW)) == ["dbo.vActiveUsers"]

    def test_requires_context_manager(self) -> None:
        introspector = SchemaIntrospector(FakeProvider({}), "prod", "Sales")

        with pytest.raises(RuntimeError, match="Use async with"):
            asyncio.run(introspector.introspect())


# ============================================================================
# Test: Row grouping
# ============================================================================


class TestIndexGrouping:
    """Verify index rows are grouped by (schema, table, index)."""

    def test_interleaved_rows_grouped(self) -> None:
        catalog = FakeCatalog().add(
            INDEXES_QUERY,
            index_row("dbo", "Orders", "IX_B", "Total", key_ordinal=1),
            index_row("dbo", "Orders", "IX_A", "OrderDate", key_ordinal=2, descending=True),
            index_row("dbo", "Orders", "IX_A", "Notes", included=True, column_id=5),
            index_row("dbo", "Orders", "IX_A", "CustomerId", key_ordinal=1),
        )

        snapshot, _ = _extract(catalog)
        indexes = snapshot.keyed(ObjectKind.INDEX)

        assert list(indexes) == ["dbo.Orders.IX_B", "dbo.Orders.IX_A"]
        ix_a = indexes["dbo.Orders.IX_A"]
        assert [c.name for c in ix_a.key_columns] == ["CustomerId", "OrderDate"]
        assert ix_a.key_columns[1].is_descending is True
        assert [c.name for c in ix_a.included_columns] == ["Notes"]

    def test_primary_key_index_flagged(self) -> None:
        snapshot, _ = _extract(users_catalog())

        pk_index = snapshot.keyed(ObjectKind.INDEX)["dbo.Users.PK_Users"]
        assert pk_index.is_primary_key is True
        assert pk_index.is_constraint_index is True
        assert pk_index.index_type == "CLUSTERED"

    def test_same_index_name_on_two_tables_kept_apart(self) -> None:
        catalog = FakeCatalog().add(
            INDEXES_QUERY,
            index_row("dbo", "A", "IX_Name", "Name"),
            index_row("dbo", "B", "IX_Name", "Name"),
        )

        snapshot, _ = _extract(catalog)

        assert list(snapshot.keyed(ObjectKind.INDEX)) == ["dbo.A.IX_Name", "dbo.B.IX_Name"]


class TestConstraintGrouping:
    """Verify constraint rows are grouped by (schema, table, constraint)."""

    def test_composite_primary_key_in_key_order(self) -> None:
        catalog = FakeCatalog().add(
            KEY_CONSTRAINTS_QUERY,
            key_constraint_row("dbo", "OrderLines", "PK_OrderLines", "Line", key_ordinal=2, descending=True),
            key_constraint_row("dbo", "OrderLines", "PK_OrderLines", "OrderId", key_ordinal=1),
        )

        snapshot, _ = _extract(catalog)

        (pk,) = snapshot.constraints
        assert pk.kind is ConstraintKind.PRIMARY_KEY
        assert pk.columns == ["OrderId", "Line"]
        assert pk.descending_columns == ["Line"]

    def test_unique_constraint_kind(self) -> None:
        catalog = FakeCatalog().add(
            KEY_CONSTRAINTS_QUERY,
            key_constraint_row("dbo", "Users", "UQ_Users_Email", "Email", constraint_type="UQ"),
        )

        snapshot, _ = _extract(catalog)

        assert snapshot.constraints[0].kind is ConstraintKind.UNIQUE

    def test_composite_foreign_key_is_one_descriptor(self) -> None:
        """Two FK rows become one constraint with parallel column lists."""
        catalog = FakeCatalog().add(
            FOREIGN_KEYS_QUERY,
            foreign_key_row("dbo", "Shipments", "FK_Ship_Line", "LineId", "OrderLines", "Line",
                            position=2, on_delete="CASCADE"),
            foreign_key_row("dbo", "Shipments", "FK_Ship_Line", "OrderId", "OrderLines", "Id",
                            position=1, on_delete="CASCADE"),
        )

        snapshot, _ = _extract(catalog)

        assert len(snapshot.constraints) == 1
        fk = snapshot.constraints[0]
        assert fk.kind is ConstraintKind.FOREIGN_KEY
        assert fk.columns == ["OrderId", "LineId"]
        assert fk.referenced_columns == ["Id", "Line"]
        assert fk.referenced_schema == "dbo"
        assert fk.referenced_table == "OrderLines"
        assert fk.on_delete == "CASCADE"

    def test_check_constraint(self) -> None:
        catalog = FakeCatalog().add(
            CHECK_CONSTRAINTS_QUERY,
            check_row("dbo", "Orders", "CK_Orders_Total", "([Total]>=(0))", column="Total"),
        )

        snapshot, _ = _extract(catalog)

        (ck,) = snapshot.constraints
        assert ck.kind is ConstraintKind.CHECK
        assert ck.check_expression == "([Total]>=(0))"
        assert ck.columns == ["Total"]

    def test_generated_names_flagged(self) -> None:
        catalog = (
            FakeCatalog()
            .add(KEY_CONSTRAINTS_QUERY,
                 key_constraint_row("dbo", "Users", "PK__Users__3214EC07", "Id", system_named=True))
            .add(FOREIGN_KEYS_QUERY,
                 foreign_key_row("dbo", "Orders", "FK_Orders_Users", "UserId", "Users", "Id"))
            .add(CHECK_CONSTRAINTS_QUERY,
                 check_row("dbo", "Orders", "CK__Orders__Total__2B3F6F97", "([Total]>=(0))",
                           system_named=True))
        )

        snapshot, _ = _extract(catalog)

        flags = {c.name: c.is_system_named for c in snapshot.constraints}
        assert flags == {
            "PK__Users__3214EC07": True,
            "FK_Orders_Users": False,
            "CK__Orders__Total__2B3F6F97": True,
        }

    def test_all_constraint_kinds_associated_with_table(self) -> None:
        catalog = users_catalog()
        catalog.add(
            KEY_CONSTRAINTS_QUERY,
            key_constraint_row("dbo", "Users", "UQ_Users_Name", "Name", constraint_type="UQ"),
        )
        catalog.add(CHECK_CONSTRAINTS_QUERY, check_row("dbo", "Users", "CK_Name", "(len([Name])>(0))"))

        snapshot, _ = _extract(catalog)

        names = [c.name for c in snapshot.constraints_for("dbo.Users")]
        assert names == ["PK_Users", "UQ_Users_Name", "CK_Name"]


# ============================================================================
# Test: Failure handling
# ============================================================================


class TestExtractionFailures:
    """Verify errors surface and the session is always released."""

    def test_query_failure_raises_extraction_error(self) -> None:
        catalog = users_catalog()
        catalog.failures[COLUMNS_QUERY] = RuntimeError("permission denied")

        provider = FakeProvider({("prod", "Sales"): catalog})
        with pytest.raises(ExtractionError, match="Failed to read columns from database 'Sales'") as exc:
            asyncio.run(extract_snapshot(provider, "prod", "Sales"))

        assert exc.value.step == "columns"
        assert provider.open_sessions == []

    def test_connection_failure_propagates(self) -> None:
        provider = FakeProvider({})

        with pytest.raises(DatabaseConnectionError):
            asyncio.run(extract_snapshot(provider, "prod", "Missing"))

        assert provider.sessions == []

    def test_cancelled_token_stops_extraction(self) -> None:
        provider = FakeProvider({("prod", "Sales"): users_catalog()})
        token = CancellationToken()
        token.cancel()

        with pytest.raises(ComparisonCancelledError):
            asyncio.run(extract_snapshot(provider, "prod", "Sales", token=token))

        assert provider.sessions[0].queries == []
        assert provider.open_sessions == []


# ============================================================================
# Test: Definition fetching
# ============================================================================


class TestFetchDefinition:
    """Verify OBJECT_DEFINITION lookups."""

    @pytest.mark.asyncio
    async def test_fetch_existing(self) -> None:
        provider = FakeProvider({("prod", "Sales"): users_catalog()})

        async with SchemaIntrospector(provider, "prod", "Sales") as introspector:
            text = await introspector.fetch_definition(ObjectKind.VIEW, "dbo", "vActiveUsers")

        assert text.startswith("CREATE VIEW dbo.vActiveUsers")

    @pytest.mark.asyncio
    async def test_fetch_missing_returns_none(self) -> None:
        provider = FakeProvider({("prod", "Sales"): users_catalog()})

        async with SchemaIntrospector(provider, "prod", "Sales") as introspector:
            text = await introspector.fetch_definition(ObjectKind.FUNCTION, "dbo", "fnMissing")

        assert text is None

    @pytest.mark.asyncio
    async def test_fetch_failure_raises(self) -> None:
        catalog = users_catalog().fail_fetch("dbo", "GetUser")
        provider = FakeProvider({("prod", "Sales"): catalog})

        async with SchemaIntrospector(provider, "prod", "Sales") as introspector:
            with pytest.raises(DefinitionFetchError, match="procedure dbo.GetUser"):
                await introspector.fetch_definition(ObjectKind.PROCEDURE, "dbo", "GetUser")

    @pytest.mark.asyncio
    async def test_tables_have_no_stored_definition(self) -> None:
        provider = FakeProvider({("prod", "Sales"): users_catalog()})

        async with SchemaIntrospector(provider, "prod", "Sales") as introspector:
            with pytest.raises(ValueError):
                await introspector.fetch_definition(ObjectKind.TABLE, "dbo", "Users")

    def test_quote_name_escapes_brackets(self) -> None:
        assert quote_name("dbo", "Order]Lines") == "[dbo].[Order]]Lines]"


class TestColumnRows:
    def test_is_nullable_mapping(self) -> None:
        catalog = FakeCatalog().add(
            COLUMNS_QUERY,
            column_row("dbo", "T", "a", "int", nullable=False),
            column_row("dbo", "T", "b", "int"),
        )

        snapshot, _ = _extract(catalog)

        assert [c.nullable for c in snapshot.columns] == [False, True]
