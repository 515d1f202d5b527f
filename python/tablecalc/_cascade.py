"""CascadeManager: keeps merged tables in step with the tables they read.

When a source changes, every table downstream of it is rebuilt in
topological order, provided the headers each one was built with still
match. A dependent whose headers no longer match is left untouched and
reported with a :class:`HeaderMismatch`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

from tablecalc._merge import MergeDescriptor, perform_merge
from tablecalc._protocol import (
    CascadeResult,
    CascadeStatus,
    DependencyEdge,
    DependentOutcome,
    HeaderMismatch,
    SettingsStore,
)
from tablecalc._settings_store import InMemorySettingsStore, open_table, replay, save_table
from tablecalc._types import (
    CycleError,
    TableCalcError,
    TableData,
    TableSource,
    UnknownTableError,
)
from tablecalc.calc._functions import FunctionRegistry
from tablecalc.calc._graph import DependencyGraph

logger = logging.getLogger(__name__)


class CascadeManager:
    """Registry of source and merged tables plus their dependency edges.

    Usage::

        manager = CascadeManager(JsonFileSettingsStore("settings"))
        manager.register_source(customers)
        manager.register_source(orders)
        manager.register_merge("customer_orders", descriptor)
        result = manager.update_source(new_orders)
    """

    def __init__(
        self,
        settings_store: SettingsStore | None = None,
        functions: FunctionRegistry | None = None,
    ) -> None:
        self._store = settings_store if settings_store is not None else InMemorySettingsStore()
        self._functions = functions
        self._sources: dict[str, TableSource] = {}
        self._merges: dict[str, MergeDescriptor] = {}
        self._tables: dict[str, TableData] = {}
        self._graph = DependencyGraph()
        # headers of each edge's source as of the dependent's last build
        self._recorded_headers: dict[DependencyEdge, tuple[str, ...]] = {}
        self._lock = threading.RLock()

    @property
    def settings_store(self) -> SettingsStore:
        return self._store

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_source(self, source: TableSource) -> TableData:
        """Add a raw table and return its typed view (stored settings replayed)."""
        with self._lock:
            if source.table_id in self._merges:
                raise ValueError(f"{source.table_id!r} is a merged table")
            if source.table_id in self._sources:
                raise ValueError(
                    f"Source {source.table_id!r} is already registered; use update_source"
                )
            self._sources[source.table_id] = source
            table = open_table(source, self._store, self._functions)
            self._tables[source.table_id] = table
            logger.info("Registered source %s (%d rows)", source.table_id, table.row_count)
            return table

    def update_source(self, source: TableSource) -> CascadeResult:
        """Replace a source's content and cascade to its dependents."""
        with self._lock:
            if source.table_id not in self._sources:
                raise UnknownTableError(f"Unknown source table {source.table_id!r}")
            self._sources[source.table_id] = source
            self._tables[source.table_id] = open_table(source, self._store, self._functions)
            return self.on_source_updated(source.table_id, source.columns)

    def register_merge(self, derived_id: str, descriptor: MergeDescriptor) -> TableData:
        """Build a merged table and record one edge per table it reads.

        Re-registering an existing merged table replaces its descriptor.
        Raises CycleError if the merge would read (transitively) from itself,
        and UnknownTableError if it reads a table that is not registered.
        """
        with self._lock:
            if derived_id in self._sources:
                raise ValueError(f"{derived_id!r} is a source table")
            source_ids = descriptor.source_ids
            if self._graph.would_create_cycle(derived_id, set(source_ids)):
                raise CycleError(f"Merge {derived_id!r} would depend on itself")
            for source_id in source_ids:
                if source_id not in self._tables:
                    raise UnknownTableError(f"Unknown table {source_id!r}")

            table = self._build(derived_id, descriptor)

            self._graph.clear_dependencies(derived_id)
            self._recorded_headers = {
                e: h for e, h in self._recorded_headers.items()
                if e.derived_table_id != derived_id
            }
            for source_id in source_ids:
                self._graph.add_edge(derived_id, source_id)
            self._merges[derived_id] = descriptor
            self._tables[derived_id] = table
            self._record_headers(derived_id)
            logger.info("Registered merge %s from %s", derived_id, ", ".join(source_ids))
            return table

    def remove_table(self, table_id: str) -> None:
        """Forget a table, its edges in both directions and its stored settings."""
        with self._lock:
            if table_id not in self._tables:
                raise UnknownTableError(f"Unknown table {table_id!r}")
            orphans = sorted(self._graph.direct_dependents(table_id))
            self._sources.pop(table_id, None)
            self._merges.pop(table_id, None)
            self._tables.pop(table_id)
            self._graph.remove_table(table_id)
            self._recorded_headers = {
                e: h for e, h in self._recorded_headers.items()
                if table_id not in (e.derived_table_id, e.source_table_id)
            }
            self._store.delete(table_id)
            if orphans:
                logger.warning("Removed %s; dependents %s can no longer be rebuilt",
                               table_id, orphans)
            else:
                logger.info("Removed %s", table_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def table(self, table_id: str) -> TableData:
        try:
            return self._tables[table_id]
        except KeyError:
            raise UnknownTableError(f"Unknown table {table_id!r}") from None

    def tables(self) -> list[str]:
        return sorted(self._tables)

    def dependents_of(self, table_id: str) -> list[str]:
        """Tables built directly from *table_id*."""
        return sorted(self._graph.direct_dependents(table_id))

    @property
    def edges(self) -> list[DependencyEdge]:
        return sorted(
            (DependencyEdge(derived, source)
             for derived, sources in self._graph.dependencies.items()
             for source in sources),
            key=lambda e: (e.derived_table_id, e.source_table_id),
        )

    def recorded_headers(self, derived_id: str, source_id: str) -> tuple[str, ...] | None:
        """Headers of *source_id* as of *derived_id*'s last successful build."""
        return self._recorded_headers.get(DependencyEdge(derived_id, source_id))

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def update_table(
        self,
        table_id: str,
        table: TableData,
        column_widths: dict[int, int] | None = None,
    ) -> None:
        """Adopt an edited view of a table and persist its full settings snapshot.

        Dependents are not rebuilt; call :meth:`on_source_updated` for that.
        """
        with self._lock:
            if table_id not in self._tables:
                raise UnknownTableError(f"Unknown table {table_id!r}")
            self._tables[table_id] = table
            save_table(table_id, table, self._store, column_widths)
            logger.info("Saved settings for %s", table_id)

    # ------------------------------------------------------------------
    # Cascade
    # ------------------------------------------------------------------

    def on_source_updated(self, source_id: str, new_headers: Sequence[str]) -> CascadeResult:
        """Rebuild everything downstream of *source_id*.

        Each dependent is checked against the headers it was built with for
        every upstream table, changed in this cascade or not. A mismatch fails
        that dependent without touching it; dependents of a failed table are
        skipped. Unrelated dependents still run.
        """
        with self._lock:
            if source_id not in self._tables:
                raise UnknownTableError(f"Unknown table {source_id!r}")

            order = self._graph.affected_tables({source_id})
            depth = self._graph.max_depth({source_id})
            logger.info("Cascade from %s: %d dependent(s), depth %d",
                        source_id, len(order), depth)

            changed: dict[str, tuple[str, ...]] = {source_id: tuple(new_headers)}
            blocked: set[str] = set()
            outcomes: list[DependentOutcome] = []

            for table_id in order:
                upstream = self._graph.dependencies.get(table_id, set())
                stale = sorted(upstream & blocked)
                if stale:
                    logger.info("Skipping %s: upstream %s failed", table_id, stale)
                    blocked.add(table_id)
                    outcomes.append(DependentOutcome(
                        table_id, CascadeStatus.SKIPPED,
                        error=f"Upstream table(s) {stale} failed",
                    ))
                    continue

                mismatch = self._find_mismatch(table_id, upstream, changed)
                if mismatch is not None:
                    logger.warning("%s", mismatch)
                    blocked.add(table_id)
                    outcomes.append(DependentOutcome(
                        table_id, CascadeStatus.FAILED, mismatch=mismatch, error=str(mismatch),
                    ))
                    continue

                try:
                    table = self._build(table_id, self._merges[table_id])
                except (TableCalcError, ValueError, KeyError) as e:
                    logger.warning("Rebuilding %s failed: %s", table_id, e)
                    blocked.add(table_id)
                    outcomes.append(DependentOutcome(
                        table_id, CascadeStatus.FAILED, error=str(e),
                    ))
                    continue

                self._tables[table_id] = table
                self._record_headers(table_id)
                changed[table_id] = tuple(table.columns)
                logger.info("Rebuilt %s (%d rows)", table_id, table.row_count)
                outcomes.append(DependentOutcome(
                    table_id, CascadeStatus.UPDATED, row_count=table.row_count,
                ))

            return CascadeResult(source_id, tuple(outcomes), max_chain_depth=depth)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _headers_of(self, table_id: str) -> tuple[str, ...]:
        source = self._sources.get(table_id)
        if source is not None:
            return source.columns
        return tuple(self._tables[table_id].columns)

    def _input_of(self, table_id: str) -> TableSource:
        """What a merge reads: raw rows of a source, the full view of a merged table."""
        source = self._sources.get(table_id)
        if source is not None:
            return source
        table = self._tables.get(table_id)
        if table is None:
            raise UnknownTableError(f"Unknown table {table_id!r}")
        return TableSource(table_id, table.columns, table.rows)

    def _build(self, derived_id: str, descriptor: MergeDescriptor) -> TableData:
        inputs = {sid: self._input_of(sid) for sid in descriptor.source_ids}
        table = perform_merge(descriptor, inputs, derived_id)
        settings = self._store.load(derived_id)
        if settings is not None:
            table = replay(table, settings, self._functions)
        return table

    def _record_headers(self, derived_id: str) -> None:
        for source_id in self._merges[derived_id].source_ids:
            edge = DependencyEdge(derived_id, source_id)
            self._recorded_headers[edge] = self._headers_of(source_id)

    def _find_mismatch(
        self,
        table_id: str,
        upstream: set[str],
        changed: dict[str, tuple[str, ...]],
    ) -> HeaderMismatch | None:
        for source_id in sorted(upstream):
            if source_id in changed:
                new = changed[source_id]
            elif source_id in self._tables:
                new = self._headers_of(source_id)
            else:
                # Removed upstream; the rebuild reports it
                continue
            old = self._recorded_headers.get(DependencyEdge(table_id, source_id), ())
            if old != new:
                return HeaderMismatch(table_id, source_id, old, new)
        return None
