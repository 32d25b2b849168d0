"""Tests for canonical definition building and normalization.

Verifies type formatting, table rendering order, determinism with respect
to catalog row order, composite foreign key integrity, fetched definitions
with not-found placeholders, and normalization equivalence.
"""

from unittest.mock import AsyncMock

import pytest

from db_compare.errors import DefinitionFetchError
from db_compare.schema.definitions import (
    build_definition,
    build_table_definition,
    definitions_equal,
    format_data_type,
    normalize_definition,
    render_constraint,
    render_index,
    render_table_definition,
)
from db_compare.schema.models import (
    ColumnDescriptor,
    ConstraintDescriptor,
    ConstraintKind,
    IndexColumn,
    IndexDescriptor,
    ObjectKind,
    ProcedureDescriptor,
    SchemaSnapshot,
    TableDescriptor,
    TriggerDescriptor,
)


def _col(name: str, data_type: str, ordinal: int = 1, **kwargs) -> ColumnDescriptor:
    return ColumnDescriptor(
        schema_name="dbo", table="Orders", name=name, data_type=data_type,
        ordinal_position=ordinal, **kwargs,
    )


def _orders_snapshot(reverse: bool = False) -> SchemaSnapshot:
    """dbo.Orders with PK, composite FK, UQ, CHECK and two indexes."""
    columns = [
        _col("Id", "int", 1, nullable=False),
        _col("OrderId", "int", 2, nullable=False),
        _col("LineId", "int", 3, nullable=False),
        _col("Code", "varchar", 4, max_length=20),
        _col("Total", "decimal", 5, precision=18, scale=2),
        _col("Notes", "nvarchar", 6, max_length=-1),
    ]
    constraints = [
        ConstraintDescriptor(
            schema_name="dbo", table="Orders", name="PK_Orders",
            kind=ConstraintKind.PRIMARY_KEY, columns=["Id"],
        ),
        ConstraintDescriptor(
            schema_name="dbo", table="Orders", name="FK_Orders_Lines",
            kind=ConstraintKind.FOREIGN_KEY, columns=["OrderId", "LineId"],
            referenced_schema="dbo", referenced_table="OrderLines",
            referenced_columns=["Id", "Line"], on_delete="CASCADE", on_update="NO_ACTION",
        ),
        ConstraintDescriptor(
            schema_name="dbo", table="Orders", name="UQ_Orders_Code",
            kind=ConstraintKind.UNIQUE, columns=["Code"],
        ),
        ConstraintDescriptor(
            schema_name="dbo", table="Orders", name="CK_Orders_Total",
            kind=ConstraintKind.CHECK, check_expression="([Total]>=(0))",
        ),
    ]
    indexes = [
        IndexDescriptor(
            schema_name="dbo", table="Orders", name="PK_Orders", index_type="CLUSTERED",
            is_unique=True, is_primary_key=True, columns=[IndexColumn(name="Id", key_ordinal=1)],
        ),
        IndexDescriptor(
            schema_name="dbo", table="Orders", name="IX_Orders_Total",
            columns=[
                IndexColumn(name="Total", key_ordinal=1, is_descending=True),
                IndexColumn(name="Notes", is_included=True),
            ],
        ),
        IndexDescriptor(
            schema_name="dbo", table="Orders", name="IX_Orders_Code", is_unique=True,
            columns=[IndexColumn(name="Code", key_ordinal=1)],
        ),
    ]
    if reverse:
        columns.reverse()
        constraints.reverse()
        indexes.reverse()
    return SchemaSnapshot(
        database="Sales",
        tables=[TableDescriptor(schema_name="dbo", name="Orders")],
        columns=columns,
        constraints=constraints,
        indexes=indexes,
    )


ORDERS = TableDescriptor(schema_name="dbo", name="Orders")


# ============================================================================
# Test: Type formatting
# ============================================================================


class TestFormatDataType:
    """Verify length, precision and scale formatting per type family."""

    @pytest.mark.parametrize(
        ("data_type", "kwargs", "expected"),
        [
            ("nvarchar", {"max_length": 50}, "nvarchar(50)"),
            ("varchar", {"max_length": -1}, "varchar(MAX)"),
            ("varbinary", {"max_length": -1}, "varbinary(MAX)"),
            ("char", {"max_length": 10}, "char(10)"),
            ("decimal", {"precision": 18, "scale": 2}, "decimal(18,2)"),
            ("numeric", {"precision": 9, "scale": None}, "numeric(9,0)"),
            ("datetime2", {"scale": 7}, "datetime2(7)"),
            ("time", {"scale": 3}, "time(3)"),
            ("int", {"precision": 10, "scale": 0}, "int"),
            ("datetime", {"scale": 3}, "datetime"),
            ("INT", {}, "int"),
        ],
    )
    def test_format(self, data_type: str, kwargs: dict, expected: str) -> None:
        assert format_data_type(_col("c", data_type, **kwargs)) == expected


# ============================================================================
# Test: Table definitions
# ============================================================================


class TestRenderTableDefinition:
    """Verify canonical table text."""

    def test_full_table(self) -> None:
        text = render_table_definition(build_table_definition(ORDERS, _orders_snapshot()))

        assert text == (
            "CREATE TABLE [dbo].[Orders] (\n"
            "    [Id] int NOT NULL,\n"
            "    [OrderId] int NOT NULL,\n"
            "    [LineId] int NOT NULL,\n"
            "    [Code] varchar(20) NULL,\n"
            "    [Total] decimal(18,2) NULL,\n"
            "    [Notes] nvarchar(MAX) NULL,\n"
            "    CONSTRAINT [PK_Orders] PRIMARY KEY ([Id] ASC),\n"
            "    CONSTRAINT [FK_Orders_Lines] FOREIGN KEY ([OrderId], [LineId]) "
            "REFERENCES [dbo].[OrderLines] ([Id], [Line]) ON DELETE CASCADE,\n"
            "    CONSTRAINT [UQ_Orders_Code] UNIQUE ([Code] ASC),\n"
            "    CONSTRAINT [CK_Orders_Total] CHECK ([Total]>=(0))\n"
            ");\n"
            "\n"
            "-- Indexes\n"
            "CREATE UNIQUE NONCLUSTERED INDEX [IX_Orders_Code] ON [dbo].[Orders] ([Code] ASC);\n"
            "CREATE NONCLUSTERED INDEX [IX_Orders_Total] ON [dbo].[Orders] ([Total] DESC) INCLUDE ([Notes]);"
        )

    def test_independent_of_row_order(self) -> None:
        forward = render_table_definition(build_table_definition(ORDERS, _orders_snapshot()))
        backward = render_table_definition(
            build_table_definition(ORDERS, _orders_snapshot(reverse=True))
        )
        assert forward == backward

    def test_constraint_indexes_not_listed(self) -> None:
        table = build_table_definition(ORDERS, _orders_snapshot())
        assert [i.name for i in table.indexes] == ["IX_Orders_Code", "IX_Orders_Total"]

    def test_composite_foreign_key_single_line(self) -> None:
        text = render_table_definition(build_table_definition(ORDERS, _orders_snapshot()))
        fk_lines = [line for line in text.splitlines() if "FOREIGN KEY" in line]

        assert len(fk_lines) == 1
        assert "([OrderId], [LineId])" in fk_lines[0]
        assert "([Id], [Line])" in fk_lines[0]

    def test_composite_foreign_key_round_trip_no_diff(self) -> None:
        """The same composite FK built on both sides compares equal."""
        source = render_table_definition(build_table_definition(ORDERS, _orders_snapshot()))
        target = render_table_definition(
            build_table_definition(ORDERS, _orders_snapshot(reverse=True))
        )
        assert definitions_equal(source, target)

    def test_descending_primary_key_column(self) -> None:
        snapshot = SchemaSnapshot(
            tables=[ORDERS],
            columns=[_col("A", "int", 1, nullable=False), _col("B", "int", 2, nullable=False)],
            constraints=[
                ConstraintDescriptor(
                    schema_name="dbo", table="Orders", name="PK",
                    kind=ConstraintKind.PRIMARY_KEY, columns=["B", "A"], descending_columns=["A"],
                )
            ],
        )

        text = render_table_definition(build_table_definition(ORDERS, snapshot))

        assert "CONSTRAINT [PK] PRIMARY KEY ([B] ASC, [A] DESC)" in text

    def test_generated_constraint_names_left_out(self) -> None:
        """Tables built from the same DDL compare equal despite generated names."""

        def snapshot(suffix: str) -> SchemaSnapshot:
            return SchemaSnapshot(
                tables=[ORDERS],
                columns=[_col("Id", "int", 1, nullable=False), _col("Code", "varchar", 2, max_length=20)],
                constraints=[
                    ConstraintDescriptor(
                        schema_name="dbo", table="Orders", name=f"PK__Orders__{suffix}",
                        kind=ConstraintKind.PRIMARY_KEY, columns=["Id"], is_system_named=True,
                    ),
                    ConstraintDescriptor(
                        schema_name="dbo", table="Orders", name=f"CK__Orders__Code__{suffix}",
                        kind=ConstraintKind.CHECK, columns=["Code"],
                        check_expression="([Code]<>'')", is_system_named=True,
                    ),
                    ConstraintDescriptor(
                        schema_name="dbo", table="Orders", name=f"UQ__Orders__{suffix}",
                        kind=ConstraintKind.UNIQUE, columns=["Code"], is_system_named=True,
                    ),
                ],
            )

        source = render_table_definition(build_table_definition(ORDERS, snapshot("3214EC07A1")))
        target = render_table_definition(build_table_definition(ORDERS, snapshot("5B2F6C11FE")))

        assert source == target
        assert "    PRIMARY KEY ([Id] ASC),\n" in source
        assert "    UNIQUE ([Code] ASC),\n" in source
        assert "    CHECK ([Code]<>'')\n" in source
        assert "__Orders__" not in source

    def test_generated_names_ordered_by_content(self) -> None:
        def check(name: str, expression: str) -> ConstraintDescriptor:
            return ConstraintDescriptor(
                schema_name="dbo", table="Orders", name=name, kind=ConstraintKind.CHECK,
                check_expression=expression, is_system_named=True,
            )

        first = SchemaSnapshot(
            tables=[ORDERS], columns=[_col("Id", "int")],
            constraints=[check("CK__Orders__A1", "([Id]>(0))"), check("CK__Orders__B2", "([Id]<(9))")],
        )
        second = SchemaSnapshot(
            tables=[ORDERS], columns=[_col("Id", "int")],
            constraints=[check("CK__Orders__A1", "([Id]<(9))"), check("CK__Orders__B2", "([Id]>(0))")],
        )

        assert render_table_definition(build_table_definition(ORDERS, first)) == (
            render_table_definition(build_table_definition(ORDERS, second))
        )

    def test_generated_name_kept_in_single_constraint_text(self) -> None:
        pk = ConstraintDescriptor(
            schema_name="dbo", table="Orders", name="PK__Orders__3214EC07A1",
            kind=ConstraintKind.PRIMARY_KEY, columns=["Id"], is_system_named=True,
        )
        assert render_constraint(pk) == (
            "ALTER TABLE [dbo].[Orders] ADD CONSTRAINT [PK__Orders__3214EC07A1] PRIMARY KEY ([Id] ASC);"
        )

    def test_table_without_indexes_has_no_index_block(self) -> None:
        snapshot = SchemaSnapshot(tables=[ORDERS], columns=[_col("Id", "int")])

        text = render_table_definition(build_table_definition(ORDERS, snapshot))

        assert text == "CREATE TABLE [dbo].[Orders] (\n    [Id] int NULL\n);"


class TestRenderSingleObjects:
    """Verify index and constraint rendering used for change details."""

    def test_render_index(self) -> None:
        index = _orders_snapshot().keyed(ObjectKind.INDEX)["dbo.Orders.IX_Orders_Total"]
        assert render_index(index) == (
            "CREATE NONCLUSTERED INDEX [IX_Orders_Total] ON [dbo].[Orders] "
            "([Total] DESC) INCLUDE ([Notes]);"
        )

    def test_render_foreign_key_constraint(self) -> None:
        fk = _orders_snapshot().keyed(ObjectKind.CONSTRAINT)["dbo.Orders.FK_Orders_Lines"]
        assert render_constraint(fk) == (
            "ALTER TABLE [dbo].[Orders] ADD CONSTRAINT [FK_Orders_Lines] FOREIGN KEY "
            "([OrderId], [LineId]) REFERENCES [dbo].[OrderLines] ([Id], [Line]) ON DELETE CASCADE;"
        )

    def test_render_check_constraint(self) -> None:
        ck = _orders_snapshot().keyed(ObjectKind.CONSTRAINT)["dbo.Orders.CK_Orders_Total"]
        assert render_constraint(ck) == (
            "ALTER TABLE [dbo].[Orders] ADD CONSTRAINT [CK_Orders_Total] CHECK ([Total]>=(0));"
        )


# ============================================================================
# Test: build_definition
# ============================================================================


class TestBuildDefinition:
    """Verify synthesized and fetched canonical definitions."""

    @pytest.mark.asyncio
    async def test_table_needs_no_fetcher(self) -> None:
        definition = await build_definition(ObjectKind.TABLE, ORDERS, _orders_snapshot())

        assert definition.kind is ObjectKind.TABLE
        assert definition.qualified_name == "dbo.Orders"
        assert definition.text.startswith("CREATE TABLE [dbo].[Orders]")

    @pytest.mark.asyncio
    async def test_fetched_verbatim(self) -> None:
        fetcher = AsyncMock()
        fetcher.fetch_definition.return_value = "CREATE PROCEDURE dbo.GetUser AS SELECT 1"
        proc = ProcedureDescriptor(schema_name="dbo", name="GetUser")

        definition = await build_definition(ObjectKind.PROCEDURE, proc, SchemaSnapshot(), fetcher)

        assert definition.text == "CREATE PROCEDURE dbo.GetUser AS SELECT 1"
        assert definition.found is True
        fetcher.fetch_definition.assert_awaited_once_with(ObjectKind.PROCEDURE, "dbo", "GetUser")

    @pytest.mark.asyncio
    async def test_absent_text_gives_placeholder(self) -> None:
        fetcher = AsyncMock()
        fetcher.fetch_definition.return_value = None
        proc = ProcedureDescriptor(schema_name="dbo", name="GetUser")

        definition = await build_definition(ObjectKind.PROCEDURE, proc, SchemaSnapshot(), fetcher)

        assert definition.text == "procedure dbo.GetUser not found"
        assert definition.found is False

    @pytest.mark.asyncio
    async def test_trigger_fetched_by_schema_and_name(self) -> None:
        fetcher = AsyncMock()
        fetcher.fetch_definition.return_value = "CREATE TRIGGER dbo.trg ON dbo.Orders AFTER INSERT AS SELECT 1"
        trigger = TriggerDescriptor(schema_name="dbo", table="Orders", name="trg")

        definition = await build_definition(ObjectKind.TRIGGER, trigger, SchemaSnapshot(), fetcher)

        assert definition.qualified_name == "dbo.Orders.trg"
        fetcher.fetch_definition.assert_awaited_once_with(ObjectKind.TRIGGER, "dbo", "trg")

    @pytest.mark.asyncio
    async def test_fetch_error_propagates(self) -> None:
        fetcher = AsyncMock()
        fetcher.fetch_definition.side_effect = DefinitionFetchError("view", "dbo.v")

        with pytest.raises(DefinitionFetchError):
            await build_definition(
                ObjectKind.VIEW, ProcedureDescriptor(schema_name="dbo", name="v"),
                SchemaSnapshot(), fetcher,
            )

    @pytest.mark.asyncio
    async def test_fetched_kind_requires_fetcher(self) -> None:
        with pytest.raises(ValueError):
            await build_definition(
                ObjectKind.VIEW, ProcedureDescriptor(schema_name="dbo", name="v"), SchemaSnapshot()
            )

    @pytest.mark.asyncio
    async def test_index_has_no_definition(self) -> None:
        with pytest.raises(ValueError):
            await build_definition(ObjectKind.INDEX, ORDERS, SchemaSnapshot())


# ============================================================================
# Test: Normalization
# ============================================================================


class TestNormalizeDefinition:
    """Verify whitespace/case folding and punctuation spacing."""

    def test_lowercase_and_collapse(self) -> None:
        assert normalize_definition("CREATE   VIEW\tv\n\nAS SELECT 1") == "create view v as select 1"

    def test_line_endings(self) -> None:
        assert normalize_definition("a\r\nb\rc\nd") == "a b c d"

    def test_spaces_around_punctuation_removed(self) -> None:
        assert normalize_definition("f ( a , b ) ;") == "f(a,b);"

    def test_trimmed(self) -> None:
        assert normalize_definition("  \n SELECT 1 \n ") == "select 1"

    def test_whitespace_and_case_only_differences_equal(self) -> None:
        a = "CREATE PROCEDURE dbo.GetUser @Id INT AS\r\nSELECT Name, Email FROM dbo.Users WHERE Id = @Id;"
        b = "create procedure dbo.GetUser   @Id int as\n  select Name ,Email\n  from dbo.Users where Id = @Id ;"
        assert definitions_equal(a, b)

    def test_body_change_not_equal(self) -> None:
        a = "CREATE PROCEDURE dbo.GetUser AS SELECT Name FROM dbo.Users"
        b = "CREATE PROCEDURE dbo.GetUser AS SELECT Name, Email FROM dbo.Users"
        assert not definitions_equal(a, b)

    def test_significant_whitespace_inside_tokens_kept(self) -> None:
        assert not definitions_equal("SELECT a b", "SELECT ab")
