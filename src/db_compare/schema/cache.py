"""Per-run cache of canonical definitions for both sides of a comparison.

Populated once per run, before diffing; read by the diff engine for content
comparison and by ``ComparisonSession.get_change_detail()`` for before/after
text.  Cleared at the start of every run.

A definition that cannot be fetched is logged and left out of the cache;
the diff engine then skips content comparison for that object.
"""

import logging

from db_compare.cancellation import CancellationToken, check_cancelled
from db_compare.errors import DefinitionFetchError
from db_compare.schema.definitions import (
    DefinitionFetcher,
    build_definition,
    build_table_canonical,
)
from db_compare.schema.models import (
    CONTENT_KINDS,
    KIND_ORDER,
    CanonicalDefinition,
    ObjectKind,
    SchemaSnapshot,
    Side,
)

logger = logging.getLogger(__name__)

CacheKey = tuple[Side, ObjectKind, str]


class DefinitionCache:
    """Canonical definitions keyed by (side, kind, qualified name).

    Example:
        cache = DefinitionCache()
        await cache.populate(source, target, source_introspector, target_introspector)
        definition = cache.lookup(Side.SOURCE, ObjectKind.VIEW, "dbo.ActiveUsers")
    """

    def __init__(self) -> None:
        self._entries: dict[CacheKey, CanonicalDefinition] = {}
        self.failures: list[CacheKey] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def clear(self) -> None:
        self._entries.clear()
        self.failures.clear()

    def store(self, definition: CanonicalDefinition, side: Side) -> None:
        self._entries[(side, definition.kind, definition.qualified_name)] = definition

    def lookup(
        self, side: Side, kind: ObjectKind, qualified_name: str
    ) -> CanonicalDefinition | None:
        return self._entries.get((side, kind, qualified_name))

    def populate_tables(self, snapshot: SchemaSnapshot, side: Side) -> None:
        """Synthesize and store the definition of every table in *snapshot*."""
        for table in snapshot.tables:
            self.store(build_table_canonical(table, snapshot), side)

    async def populate(
        self,
        source: SchemaSnapshot,
        target: SchemaSnapshot,
        source_fetcher: DefinitionFetcher | None = None,
        target_fetcher: DefinitionFetcher | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        """Build definitions for every content-kind object on both sides.

        Tables are synthesized from the snapshot.  Views, procedures,
        functions and triggers go through the side's fetcher and are
        skipped for a side without one.

        Raises:
            ComparisonCancelledError: If *token* is cancelled.  Entries
                stored before the checkpoint stay in the cache.
        """
        for side, snapshot, fetcher in (
            (Side.SOURCE, source, source_fetcher),
            (Side.TARGET, target, target_fetcher),
        ):
            await self._populate_side(side, snapshot, fetcher, token)

        logger.info(
            f"[DefinitionCache] Cached {len(self)} definitions "
            f"({len(self.failures)} could not be fetched)"
        )

    async def _populate_side(
        self,
        side: Side,
        snapshot: SchemaSnapshot,
        fetcher: DefinitionFetcher | None,
        token: CancellationToken | None,
    ) -> None:
        for kind in KIND_ORDER:
            if kind not in CONTENT_KINDS:
                continue
            if kind is not ObjectKind.TABLE and fetcher is None:
                continue

            for descriptor in snapshot.descriptors(kind):
                check_cancelled(token)
                try:
                    definition = await build_definition(kind, descriptor, snapshot, fetcher)
                except DefinitionFetchError as e:
                    check_cancelled(token)
                    logger.warning(f"[DefinitionCache] {side.value}: {e}")
                    self.failures.append((side, kind, descriptor.qualified_name))
                    continue

                check_cancelled(token)
                self.store(definition, side)
