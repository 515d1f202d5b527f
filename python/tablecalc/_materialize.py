"""Calculated column materialization and column metadata edits."""

from __future__ import annotations

import logging

from tablecalc._formatting import DEFAULT_FORMAT, format_options
from tablecalc._types import (
    ColumnExistsError,
    ColumnMetadata,
    DataType,
    NotCalculatedColumnError,
    TableData,
)
from tablecalc.calc._evaluator import RowEvaluator
from tablecalc.calc._functions import FunctionRegistry, is_error

logger = logging.getLogger(__name__)


def materialize(
    table: TableData,
    name: str,
    formula: str,
    functions: FunctionRegistry | None = None,
) -> TableData:
    """Return *table* with a calculated column appended.

    Each row gets one cell evaluated from that row's existing values.
    Formula failures become ``ERROR`` cells; they never abort.
    """
    name = name.strip() if name else ""
    formula = formula.strip() if formula else ""
    if not name or not formula:
        raise ValueError("A calculated field needs both a name and a formula")
    if name in table.columns:
        raise ColumnExistsError(f"Column {name!r} already exists")

    evaluator = RowEvaluator(table.columns, functions)
    values = evaluator.evaluate_rows(formula, table.rows)

    errors = sum(1 for v in values if is_error(v))
    if errors:
        logger.debug("Calculated field %r: %d of %d rows evaluated to ERROR",
                     name, errors, len(values))

    return TableData(
        columns=[*table.columns, name],
        rows=[[*row, value] for row, value in zip(table.rows, values)],
        column_metadata=[*table.column_metadata, ColumnMetadata.calculated(name, formula)],
    )


def remove(table: TableData, column_index: int) -> TableData:
    """Drop a calculated column: the exact inverse of :func:`materialize`."""
    if not 0 <= column_index < len(table.columns):
        raise IndexError(f"Column index {column_index} out of range")
    meta = table.column_metadata[column_index]
    if not meta.is_calculated:
        raise NotCalculatedColumnError(
            f"Column {meta.name!r} comes from the source table and cannot be removed"
        )
    return TableData(
        columns=[c for i, c in enumerate(table.columns) if i != column_index],
        rows=[[v for i, v in enumerate(row) if i != column_index] for row in table.rows],
        column_metadata=[m for i, m in enumerate(table.column_metadata) if i != column_index],
    )


def set_column_type(table: TableData, column_index: int, data_type: DataType | str) -> TableData:
    """Reassign a column's type; the format resets to the default."""
    return table.with_metadata(column_index, data_type=DataType(data_type), format=DEFAULT_FORMAT)


def set_column_format(table: TableData, column_index: int, format_tag: str | None) -> TableData:
    meta = table.column_metadata[column_index]
    options = format_options(meta.data_type)
    if format_tag is not None and options and format_tag not in options:
        raise ValueError(
            f"Format {format_tag!r} is not valid for {meta.data_type.value} columns; "
            f"expected one of {list(options)}"
        )
    return table.with_metadata(column_index, format=format_tag)
