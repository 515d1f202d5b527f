"""Column type inference from a leading value sample."""

from __future__ import annotations

import datetime
import math
import re
from collections.abc import Iterable, Sequence
from typing import Any

from tablecalc._config import get_settings
from tablecalc._parsing import CURRENCY_GLYPHS, parse_date, parse_number
from tablecalc._types import ColumnMetadata, DataType, TableSource

BOOLEAN_TOKENS = frozenset({"true", "false", "1", "0", "yes", "no"})

_CURRENCY_RE = re.compile(f"[{re.escape(CURRENCY_GLYPHS)}]")


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def sample_values(values: Iterable[Any], size: int | None = None) -> list[Any]:
    """First *size* non-blank values, in stored order."""
    if size is None:
        size = get_settings().inference_sample_size
    sample: list[Any] = []
    for v in values:
        if _is_blank(v):
            continue
        sample.append(v)
        if len(sample) >= size:
            break
    return sample


def parses_as_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    if not isinstance(value, str):
        return False
    return parse_number(value) is not None


def has_currency_glyph(value: Any) -> bool:
    return isinstance(value, str) and _CURRENCY_RE.search(value) is not None


def parses_as_boolean(value: Any) -> bool:
    return str(value).strip().lower() in BOOLEAN_TOKENS


def parses_as_date(value: Any) -> bool:
    if isinstance(value, (datetime.date, datetime.datetime)):
        return True
    if not isinstance(value, str):
        return False
    return parse_date(value) is not None


def infer(values: Sequence[Any]) -> DataType:
    """Classify a column from its first non-blank values.

    Only the start of the column is sampled, so a column whose leading
    values are atypical will be misclassified. Classification order, first
    match wins: currency, number, boolean, date, text.
    """
    sample = sample_values(values)
    if not sample:
        return DataType.TEXT

    if all(parses_as_number(v) for v in sample):
        if any(has_currency_glyph(v) for v in sample):
            return DataType.CURRENCY
        return DataType.NUMBER

    if all(parses_as_boolean(v) for v in sample):
        return DataType.BOOLEAN

    if all(parses_as_date(v) for v in sample):
        return DataType.DATE

    return DataType.TEXT


def infer_table(source: TableSource) -> list[ColumnMetadata]:
    """Fresh, non-calculated metadata for every column of *source*."""
    return [
        ColumnMetadata(name=name, data_type=infer(source.column_values(idx)))
        for idx, name in enumerate(source.columns)
    ]
