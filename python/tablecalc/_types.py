"""Core table types: sources, column metadata, and the working TableData view."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Union

RawValue = Union[str, int, float, bool, datetime.date, None]


class DataType(str, Enum):
    """Semantic column types. Values are the persisted form."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    CURRENCY = "currency"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TableCalcError(Exception):
    """Base class for tablecalc errors."""


class ColumnExistsError(TableCalcError, ValueError):
    """A calculated column name collides with an existing column."""


class NotCalculatedColumnError(TableCalcError, ValueError):
    """Only calculated columns can be removed from a table."""


class CycleError(TableCalcError, ValueError):
    """A merge would make a table depend on itself."""


class UnknownTableError(TableCalcError, KeyError):
    """A table id is not registered."""


class SettingsVersionError(TableCalcError):
    """A persisted settings record is newer than this library understands."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


def _check_rectangular(columns: list[str], rows: list[list[Any]]) -> None:
    width = len(columns)
    for i, row in enumerate(rows):
        if len(row) != width:
            raise ValueError(
                f"Row {i} has {len(row)} values, expected {width} ({columns!r})"
            )


@dataclass(frozen=True)
class TableSource:
    """Raw, immutable table content as delivered by ingestion."""

    table_id: str
    columns: tuple[str, ...]
    rows: tuple[tuple[RawValue, ...], ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "rows", tuple(tuple(r) for r in self.rows))
        _check_rectangular(list(self.columns), [list(r) for r in self.rows])

    def column_values(self, index: int) -> list[RawValue]:
        return [row[index] for row in self.rows]


@dataclass(frozen=True)
class ColumnMetadata:
    """Per-column type, display format and calculated-field bookkeeping."""

    name: str
    data_type: DataType = DataType.TEXT
    format: str | None = None
    is_calculated: bool = False
    formula: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "data_type", DataType(self.data_type))
        if self.is_calculated and not self.formula:
            raise ValueError(f"Calculated column {self.name!r} requires a formula")
        if not self.is_calculated and self.formula is not None:
            raise ValueError(f"Source column {self.name!r} cannot carry a formula")

    @classmethod
    def calculated(cls, name: str, formula: str) -> ColumnMetadata:
        return cls(name=name, data_type=DataType.NUMBER, is_calculated=True, formula=formula)


@dataclass
class TableData:
    """The working, typed view of a table plus any calculated columns.

    ``columns``, every row and ``column_metadata`` are index-aligned.
    Operations in :mod:`tablecalc._materialize` return new instances.
    """

    columns: list[str]
    rows: list[list[Any]]
    column_metadata: list[ColumnMetadata] = field(default_factory=list)

    def __post_init__(self) -> None:
        if len(self.column_metadata) != len(self.columns):
            raise ValueError(
                f"{len(self.column_metadata)} metadata entries for "
                f"{len(self.columns)} columns"
            )
        _check_rectangular(self.columns, self.rows)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def column_index(self, name: str) -> int | None:
        try:
            return self.columns.index(name)
        except ValueError:
            return None

    def column_values(self, index: int) -> list[Any]:
        return [row[index] for row in self.rows]

    def copy(self) -> TableData:
        return TableData(
            columns=list(self.columns),
            rows=[list(r) for r in self.rows],
            column_metadata=list(self.column_metadata),
        )

    def with_metadata(self, index: int, **changes: Any) -> TableData:
        """Return a copy with one metadata entry replaced."""
        table = self.copy()
        table.column_metadata[index] = replace(table.column_metadata[index], **changes)
        return table

    @property
    def calculated_columns(self) -> list[ColumnMetadata]:
        return [m for m in self.column_metadata if m.is_calculated]
