"""Comparison service: the entry point a presentation layer drives.

``ComparisonSession`` owns the definition cache and the snapshots of the
most recent run.  Each ``start_comparison()`` call:

1. cancels the token of any run still in flight,
2. starts a fresh, empty cache,
3. reports "started" through the optional callback,
4. extracts both sides, each on its own scoped session,
5. populates that run's cache on fresh scoped sessions,
6. diffs and returns a ``ComparisonResult``.

A run publishes its cache and snapshots only when it completes, so a
superseded run never writes into the state of the run that replaced it.

Fatal errors never escape ``start_comparison()``; they are returned as
``ComparisonResult(success=False, error=...)``.

Usage:
    session = ComparisonSession(provider)
    result = await session.start_comparison("prod", "Sales", "staging", "Sales")
    if result.success:
        for change in result.changes:
            detail = session.get_change_detail(change)
"""

import asyncio
import logging
from collections.abc import Callable

from db_compare.adapters.base import ConnectionProvider
from db_compare.cancellation import CancellationToken, check_cancelled
from db_compare.config.models import CompareSettings
from db_compare.errors import ComparisonCancelledError, CompareError
from db_compare.schema.cache import DefinitionCache
from db_compare.schema.comparator import diff_snapshots, skipped_comparisons
from db_compare.schema.definitions import not_found_text, render_constraint, render_index
from db_compare.schema.introspector import SchemaIntrospector, extract_snapshot
from db_compare.schema.models import (
    CONTENT_KINDS,
    Change,
    ChangeDetail,
    ChangeType,
    ComparisonEndpoint,
    ComparisonResult,
    ObjectKind,
    SchemaSnapshot,
    Side,
)

logger = logging.getLogger(__name__)

StartedCallback = Callable[[ComparisonEndpoint, ComparisonEndpoint], None]


def missing_in_source_text(kind: ObjectKind) -> str:
    return f"-- {kind.label} does not exist in source database"


def deleted_from_target_text(kind: ObjectKind) -> str:
    return f"-- {kind.label} deleted from target database"


class ComparisonSession:
    """Runs schema comparisons and answers follow-up detail queries.

    Args:
        provider: Connection provider used for every session
        settings: Excluded schemas and extraction concurrency
            (default: ``CompareSettings()``)
    """

    def __init__(
        self,
        provider: ConnectionProvider,
        settings: CompareSettings | None = None,
    ) -> None:
        self._provider = provider
        self._settings = settings or CompareSettings()
        self.cache = DefinitionCache()
        self._token: CancellationToken | None = None
        self._snapshots: dict[Side, SchemaSnapshot] = {}

    @property
    def running(self) -> bool:
        return self._token is not None

    def snapshot(self, side: Side) -> SchemaSnapshot | None:
        """Snapshot of *side* from the last completed run."""
        return self._snapshots.get(side)

    def cancel(self) -> None:
        """Cancel the in-flight run, if any."""
        if self._token is not None:
            self._token.cancel("Comparison was cancelled")

    async def list_databases(self, connection_id: str) -> list[str]:
        return await self._provider.list_databases(connection_id)

    # ------------------------------------------------------------------
    # Comparison run
    # ------------------------------------------------------------------

    async def start_comparison(
        self,
        source_connection: str,
        source_db: str,
        target_connection: str,
        target_db: str,
        on_started: StartedCallback | None = None,
    ) -> ComparisonResult:
        """Compare the source database against the target database.

        A run started while another is in flight supersedes it: the older
        run stops at its next checkpoint and returns ``cancelled=True``.

        Returns:
            ComparisonResult with the changes, or ``success=False`` and the
            error message when a connection or catalog query failed.
        """
        if self._token is not None:
            self._token.cancel("Superseded by a newer comparison")
        token = CancellationToken()
        self._token = token

        cache = DefinitionCache()
        self.cache = DefinitionCache()
        self._snapshots = {}

        source = ComparisonEndpoint(connection_id=source_connection, database=source_db)
        target = ComparisonEndpoint(connection_id=target_connection, database=target_db)

        if on_started is not None:
            on_started(source, target)
        logger.info(f"[CompareSchema] Comparing {source} -> {target}")

        try:
            source_snapshot, target_snapshot = await self._extract_both(source, target, token)

            check_cancelled(token)
            async with SchemaIntrospector(
                self._provider, source.connection_id, source.database,
                excluded_schemas=self._settings.excluded_schemas,
            ) as source_fetcher, SchemaIntrospector(
                self._provider, target.connection_id, target.database,
                excluded_schemas=self._settings.excluded_schemas,
            ) as target_fetcher:
                await cache.populate(
                    source_snapshot, target_snapshot, source_fetcher, target_fetcher, token
                )

            changes = diff_snapshots(source_snapshot, target_snapshot, cache, token)
            skipped = skipped_comparisons(source_snapshot, target_snapshot, cache)
            check_cancelled(token)
        except ComparisonCancelledError as e:
            logger.info(f"[CompareSchema] {source} -> {target}: {e}")
            return ComparisonResult(
                success=False, cancelled=True, error=str(e), source=source, target=target
            )
        except CompareError as e:
            logger.error(f"[CompareSchema] Comparison failed: {e}")
            return ComparisonResult(success=False, error=str(e), source=source, target=target)
        finally:
            if self._token is token:
                self._token = None

        self.cache = cache
        self._snapshots = {Side.SOURCE: source_snapshot, Side.TARGET: target_snapshot}
        for name in skipped:
            logger.warning(f"[CompareSchema] Not compared, definition unavailable: {name}")
        logger.info(f"[CompareSchema] Found {len(changes)} changes")

        return ComparisonResult(
            success=True,
            changes=changes,
            skipped=skipped,
            source=source,
            target=target,
        )

    async def _extract(
        self, endpoint: ComparisonEndpoint, token: CancellationToken
    ) -> SchemaSnapshot:
        return await extract_snapshot(
            self._provider,
            endpoint.connection_id,
            endpoint.database,
            token=token,
            excluded_schemas=self._settings.excluded_schemas,
        )

    async def _extract_both(
        self,
        source: ComparisonEndpoint,
        target: ComparisonEndpoint,
        token: CancellationToken,
    ) -> tuple[SchemaSnapshot, SchemaSnapshot]:
        if not self._settings.concurrent_extraction:
            source_snapshot = await self._extract(source, token)
            target_snapshot = await self._extract(target, token)
            return source_snapshot, target_snapshot

        # Each side releases its own session regardless of the other side
        results = await asyncio.gather(
            self._extract(source, token),
            self._extract(target, token),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results[0], results[1]

    # ------------------------------------------------------------------
    # Change detail
    # ------------------------------------------------------------------

    def get_change_detail(self, change: Change) -> ChangeDetail:
        """Before/after text for one change of the last run.

        Columns show the parent table's definition on both sides.  Indexes
        and constraints are rendered from their descriptors.  Pure adds and
        deletes get a side sentinel in place of the missing side.
        """
        kind = change.object_type

        if kind is ObjectKind.COLUMN:
            table_name = self._column_table(change.object_name)
            return ChangeDetail(
                before=self._definition_text(Side.SOURCE, ObjectKind.TABLE, table_name),
                after=self._definition_text(Side.TARGET, ObjectKind.TABLE, table_name),
            )

        if change.change_type is ChangeType.ADD:
            before = missing_in_source_text(kind)
        else:
            before = self._definition_text(Side.SOURCE, kind, change.object_name)

        if change.change_type is ChangeType.DELETE:
            after = deleted_from_target_text(kind)
        else:
            after = self._definition_text(Side.TARGET, kind, change.object_name)

        return ChangeDetail(before=before, after=after)

    def _column_table(self, column_name: str) -> str:
        for snapshot in self._snapshots.values():
            column = snapshot.keyed(ObjectKind.COLUMN).get(column_name)
            if column is not None:
                return column.table_qualified_name
        return column_name.rsplit(".", 1)[0]

    def _definition_text(self, side: Side, kind: ObjectKind, qualified_name: str) -> str:
        if kind in CONTENT_KINDS:
            definition = self.cache.lookup(side, kind, qualified_name)
            if definition is None:
                return not_found_text(kind, qualified_name)
            return definition.text

        snapshot = self._snapshots.get(side)
        descriptor = snapshot.keyed(kind).get(qualified_name) if snapshot else None
        if descriptor is None:
            return not_found_text(kind, qualified_name)
        if kind is ObjectKind.INDEX:
            return render_index(descriptor)
        return render_constraint(descriptor)
