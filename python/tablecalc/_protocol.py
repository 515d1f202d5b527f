"""SettingsStore protocol, dependency edges and cascade result dataclasses."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from tablecalc._settings_store import FileSettings


@dataclass(frozen=True)
class DependencyEdge:
    """A merged table built (in part) from a source table."""

    derived_table_id: str
    source_table_id: str


@dataclass(frozen=True)
class HeaderMismatch:
    """A source's new headers differ from those a dependent was built with."""

    table_id: str  # the dependent left stale
    source_table_id: str
    old_headers: tuple[str, ...]
    new_headers: tuple[str, ...]

    @property
    def removed(self) -> list[str]:
        """Headers the dependent was built with that are now gone."""
        return [h for h in self.old_headers if h not in self.new_headers]

    @property
    def added(self) -> list[str]:
        return [h for h in self.new_headers if h not in self.old_headers]

    def __str__(self) -> str:
        return (
            f"Header mismatch for {self.table_id!r} from {self.source_table_id!r}: "
            f"old headers {list(self.old_headers)}, new headers {list(self.new_headers)}"
        )


class CascadeStatus(str, Enum):
    UPDATED = "updated"
    FAILED = "failed"
    SKIPPED = "skipped"  # an upstream dependent failed, so inputs are stale


@dataclass(frozen=True)
class DependentOutcome:
    """What happened to one dependent table during a cascade."""

    table_id: str
    status: CascadeStatus
    mismatch: HeaderMismatch | None = None
    error: str | None = None
    row_count: int = 0

    @property
    def ok(self) -> bool:
        return self.status is CascadeStatus.UPDATED


@dataclass(frozen=True)
class CascadeResult:
    """Result of propagating one source update to its dependents."""

    source_table_id: str
    outcomes: tuple[DependentOutcome, ...]
    max_chain_depth: int = 0

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def updated(self) -> list[str]:
        return [o.table_id for o in self.outcomes if o.status is CascadeStatus.UPDATED]

    @property
    def failed(self) -> list[str]:
        return [o.table_id for o in self.outcomes if o.status is CascadeStatus.FAILED]

    @property
    def skipped(self) -> list[str]:
        return [o.table_id for o in self.outcomes if o.status is CascadeStatus.SKIPPED]

    def outcome(self, table_id: str) -> DependentOutcome | None:
        for o in self.outcomes:
            if o.table_id == table_id:
                return o
        return None


@runtime_checkable
class SettingsStore(Protocol):
    """Key-value persistence of :class:`FileSettings` per table id."""

    def load(self, table_id: str) -> FileSettings | None:
        """Return stored settings, or None when the table has none."""
        ...

    def save(self, table_id: str, settings: FileSettings) -> None:
        """Replace the stored settings for *table_id* with a full snapshot."""
        ...

    def delete(self, table_id: str) -> None:
        ...

    def update(
        self,
        table_id: str,
        fn: Callable[[FileSettings | None], FileSettings],
    ) -> FileSettings:
        """Read-modify-write, serialized per table id."""
        ...
