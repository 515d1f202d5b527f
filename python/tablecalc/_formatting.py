"""Display formatting of raw cell values by column type and format tag.

Formatting is total: any value that cannot be interpreted for its column
type is rendered as its plain string form.
"""

from __future__ import annotations

import datetime
import logging
import math
import re
from typing import Any

from tablecalc._parsing import parse_date, parse_number
from tablecalc._types import DataType, TableData

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = "default"

FORMAT_OPTIONS: dict[DataType, tuple[str, ...]] = {
    DataType.TEXT: (),
    DataType.NUMBER: (DEFAULT_FORMAT, "0", "0.0", "0.00", "0,0", "0,0.00"),
    DataType.CURRENCY: (DEFAULT_FORMAT, "$0,0", "$0,0.00", "$0.00"),
    DataType.DATE: (
        DEFAULT_FORMAT, "DD/MM/YYYY", "YYYY-MM-DD", "MMM DD, YYYY", "DD MMM YYYY",
    ),
    DataType.BOOLEAN: (),
}

_MONTH_ABBRS = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]

# Legacy spreadsheet serial dates: 1900-01-01 plus (serial - 2) days. The
# 2-day offset folds in the phantom 1900-02-29 and the 1-based serial.
_SERIAL_EPOCH = datetime.date(1900, 1, 1)
_SERIAL_OFFSET_DAYS = 2
_SERIAL_RE = re.compile(r"^\d{5}$")

_LEADING_NUMBER_RE = re.compile(r"^[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_CURRENCY_NOISE_RE = re.compile(r"[^0-9.\-]")

_TRUE_TOKENS = frozenset({"true", "1", "yes"})
_FALSE_TOKENS = frozenset({"false", "0", "no"})


def format_options(data_type: DataType | str) -> tuple[str, ...]:
    return FORMAT_OPTIONS[DataType(data_type)]


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _leading_float(text: str) -> float | None:
    """Parse the longest numeric prefix of *text*, or None."""
    m = _LEADING_NUMBER_RE.match(text.strip())
    if not m:
        return None
    num = float(m.group(0))
    return num if math.isfinite(num) else None


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    text = str(value)
    num = parse_number(text)
    return num if num is not None else _leading_float(text)


def _half_up(num: float) -> int:
    return math.floor(num + 0.5)


def _group(num: float, max_fraction: int) -> str:
    """Thousands-grouped with up to *max_fraction* digits, no trailing zeros."""
    text = f"{num:,.{max_fraction}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        text = "0"
    return text


def _to_date(value: Any) -> datetime.date | None:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    text = str(value).strip()
    if _SERIAL_RE.match(text):
        return _SERIAL_EPOCH + datetime.timedelta(days=int(text) - _SERIAL_OFFSET_DAYS)
    parsed = parse_date(text)
    if parsed is None or parsed.year <= 1900:
        return None
    return parsed.date()


# ---------------------------------------------------------------------------
# Per-type formatters
# ---------------------------------------------------------------------------


def _format_number(value: Any, fmt: str | None) -> str:
    num = _to_float(value)
    if num is None:
        return str(value)
    if fmt == "0":
        return str(_half_up(num))
    if fmt == "0.0":
        return f"{num:.1f}"
    if fmt == "0.00":
        return f"{num:.2f}"
    if fmt == "0,0":
        return f"{_half_up(num):,}"
    if fmt == "0,0.00":
        return f"{num:,.2f}"
    return _group(num, 3)


def _format_currency(value: Any, fmt: str | None) -> str:
    if isinstance(value, str):
        num = _leading_float(_CURRENCY_NOISE_RE.sub("", value))
    else:
        num = _to_float(value)
    if num is None:
        return str(value)
    if fmt == "$0,0":
        return f"${_half_up(num):,}"
    if fmt == "$0.00":
        return f"${num:.2f}"
    return f"${num:,.2f}"


def _format_date(value: Any, fmt: str | None) -> str:
    date = _to_date(value)
    if date is None:
        return str(value)
    month = f"{date.month:02d}"
    day = f"{date.day:02d}"
    year = date.year
    month_name = _MONTH_ABBRS[date.month - 1]
    if fmt == "DD/MM/YYYY":
        return f"{day}/{month}/{year}"
    if fmt == "YYYY-MM-DD":
        return f"{year}-{month}-{day}"
    if fmt == "MMM DD, YYYY":
        return f"{month_name} {day}, {year}"
    if fmt == "DD MMM YYYY":
        return f"{day} {month_name} {year}"
    return f"{month}/{day}/{year}"


def _format_boolean(value: Any, fmt: str | None) -> str:
    token = str(value).strip().lower()
    if token in _TRUE_TOKENS:
        return "Yes"
    if token in _FALSE_TOKENS:
        return "No"
    return str(value)


def _format_text(value: Any, fmt: str | None) -> str:
    return str(value)


_FORMATTERS = {
    DataType.NUMBER: _format_number,
    DataType.CURRENCY: _format_currency,
    DataType.DATE: _format_date,
    DataType.BOOLEAN: _format_boolean,
    DataType.TEXT: _format_text,
}


def format_value(value: Any, data_type: DataType | str, format_tag: str | None = None) -> str:
    """Render *value* for display. Never raises."""
    if value is None or value == "":
        return ""
    fmt = None if format_tag == DEFAULT_FORMAT else format_tag
    try:
        formatter = _FORMATTERS[DataType(data_type)]
        return formatter(value, fmt)
    except Exception as e:
        logger.debug("Cannot format %r as %s/%s: %s", value, data_type, format_tag, e)
        try:
            return str(value)
        except Exception:
            return ""


def format_column(table: TableData, index: int) -> list[str]:
    """Formatted display strings for one column of *table*."""
    meta = table.column_metadata[index]
    return [format_value(row[index], meta.data_type, meta.format) for row in table.rows]
