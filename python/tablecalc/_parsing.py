"""Lenient parsing of raw cell text into numbers and dates.

Inference, formatting and formula evaluation all read cells through these
helpers so that a value classified as numeric is also computed with and
displayed as a number.
"""

from __future__ import annotations

import datetime
import math
import re

from dateutil import parser as dateparser

CURRENCY_GLYPHS = "$€£¥"

# Stripped before numeric parsing: currency glyphs, thousands separators, spaces
_NUMERIC_NOISE_RE = re.compile(rf"[{re.escape(CURRENCY_GLYPHS)},\s]")

# Fills the fields a partial date leaves out ("March 2024" -> 2024-03-01)
DATE_DEFAULT = datetime.datetime(2000, 1, 1)


def parse_number(text: str) -> float | None:
    """Finite float value of *text*, ignoring currency glyphs, commas and spaces."""
    cleaned = _NUMERIC_NOISE_RE.sub("", text)
    if not cleaned:
        return None
    try:
        num = float(cleaned)
    except ValueError:
        return None
    return num if math.isfinite(num) else None


def parse_date(text: str) -> datetime.datetime | None:
    """Parse free-form date text; missing day or month default to the first."""
    if not text.strip():
        return None
    try:
        return dateparser.parse(text, default=DATE_DEFAULT)
    except (ValueError, OverflowError):
        return None
