"""Join execution for merged (derived) tables.

A :class:`MergeDescriptor` chains one or more joins: the first reads two
tables, every later join reads one more table and joins it onto the
running result.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from tablecalc._inference import infer_table
from tablecalc._types import RawValue, TableData, TableSource, UnknownTableError

logger = logging.getLogger(__name__)

# Left name used for every join after the first
MERGED_NAME = "merged"


class JoinType(str, Enum):
    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL = "FULL"


@dataclass(frozen=True)
class JoinSpec:
    """One join step.

    ``left_table`` is required for the first join of a descriptor and
    ignored afterwards. ``selected_left`` / ``selected_right`` restrict the
    copied columns; None means all of them.
    """

    right_table: str
    left_key: str
    right_key: str
    join_type: JoinType = JoinType.INNER
    left_table: str | None = None
    left_name: str | None = None
    right_name: str | None = None
    selected_left: tuple[str, ...] | None = None
    selected_right: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "join_type", JoinType(self.join_type.upper()))
        if self.selected_left is not None:
            object.__setattr__(self, "selected_left", tuple(self.selected_left))
        if self.selected_right is not None:
            object.__setattr__(self, "selected_right", tuple(self.selected_right))


@dataclass(frozen=True)
class MergeDescriptor:
    joins: tuple[JoinSpec, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "joins", tuple(self.joins))
        if not self.joins:
            raise ValueError("A merge needs at least one join")
        if not self.joins[0].left_table:
            raise ValueError("The first join must name its left table")

    @property
    def source_ids(self) -> list[str]:
        """Every table read by the merge, in first-use order."""
        ids: list[str] = []
        first = self.joins[0]
        for table_id in [first.left_table, *(j.right_table for j in self.joins)]:
            if table_id not in ids:
                ids.append(table_id)
        return ids


# ---------------------------------------------------------------------------
# Join execution
# ---------------------------------------------------------------------------


def _require_columns(names: Sequence[str], columns: Sequence[str], table: str) -> None:
    missing = [n for n in names if n not in columns]
    if missing:
        raise ValueError(f"Table {table!r} has no column(s) {missing}")


def _output_name(col: str, taken: set[str], table_name: str) -> str:
    name = col
    while name in taken:
        name = f"{table_name}_{name}"
    return name


def join(
    left_columns: Sequence[str],
    left_rows: Sequence[Sequence[RawValue]],
    right_columns: Sequence[str],
    right_rows: Sequence[Sequence[RawValue]],
    join_spec: JoinSpec,
    left_name: str,
    right_name: str,
) -> tuple[list[str], list[list[RawValue]]]:
    """Join two row sets; returns ``(columns, rows)``.

    Right rows are indexed by key, left rows are emitted in order with
    every match. A column name already taken is prefixed with its table
    name. Cells of the missing side of an outer row are None.
    """
    _require_columns([join_spec.left_key], left_columns, left_name)
    _require_columns([join_spec.right_key], right_columns, right_name)
    left_sel = list(left_columns if join_spec.selected_left is None else join_spec.selected_left)
    right_sel = list(right_columns if join_spec.selected_right is None else join_spec.selected_right)
    _require_columns(left_sel, left_columns, left_name)
    _require_columns(right_sel, right_columns, right_name)

    left_pos = [list(left_columns).index(c) for c in left_sel]
    right_pos = [list(right_columns).index(c) for c in right_sel]

    taken: set[str] = set()
    columns: list[str] = []
    for col in left_sel:
        name = _output_name(col, taken, left_name)
        taken.add(name)
        columns.append(name)
    for col in right_sel:
        name = _output_name(col, taken, right_name)
        taken.add(name)
        columns.append(name)

    lkey = list(left_columns).index(join_spec.left_key)
    rkey = list(right_columns).index(join_spec.right_key)

    index: dict[Any, list[int]] = {}
    for i, row in enumerate(right_rows):
        index.setdefault(row[rkey], []).append(i)

    def _row(left: Sequence[RawValue] | None, right: Sequence[RawValue] | None) -> list[RawValue]:
        lvals = [left[p] for p in left_pos] if left is not None else [None] * len(left_pos)
        rvals = [right[p] for p in right_pos] if right is not None else [None] * len(right_pos)
        return lvals + rvals

    rows: list[list[RawValue]] = []
    matched: set[int] = set()
    for left in left_rows:
        hits = index.get(left[lkey], [])
        for i in hits:
            matched.add(i)
            rows.append(_row(left, right_rows[i]))
        if not hits and join_spec.join_type in (JoinType.LEFT, JoinType.FULL):
            rows.append(_row(left, None))

    if join_spec.join_type in (JoinType.RIGHT, JoinType.FULL):
        for i, right in enumerate(right_rows):
            if i not in matched:
                rows.append(_row(None, right))

    return columns, rows


def perform_merge(
    descriptor: MergeDescriptor,
    sources: Mapping[str, TableSource],
    table_id: str = MERGED_NAME,
) -> TableData:
    """Run every join of *descriptor* over *sources* and infer column types."""
    for source_id in descriptor.source_ids:
        if source_id not in sources:
            raise UnknownTableError(f"Unknown table {source_id!r}")

    first = descriptor.joins[0]
    left = sources[first.left_table]
    columns: list[str] = list(left.columns)
    rows: list[list[RawValue]] = [list(r) for r in left.rows]
    left_name = first.left_name or first.left_table

    for step, join_spec in enumerate(descriptor.joins):
        right = sources[join_spec.right_table]
        if step:
            left_name = MERGED_NAME
        columns, rows = join(
            columns, rows, right.columns, right.rows, join_spec,
            left_name, join_spec.right_name or join_spec.right_table,
        )

    rows = [["" if v is None else v for v in row] for row in rows]
    logger.debug("Merged %s into %d rows x %d columns",
                 descriptor.source_ids, len(rows), len(columns))
    merged = TableSource(table_id, columns, rows)
    return TableData(columns=columns, rows=rows, column_metadata=infer_table(merged))
