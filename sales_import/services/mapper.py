from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from typing import Any

import pandas as pd

from sales_import.models.rows import MappedRow, RawRow

"""Schema mapping: CSV columns -> target fields, plus per-field coercion.

The mapping is an allow-list. A CSV column that is not a key of the mapping
never reaches the database layer, whatever its name.

Coercion is lenient on purpose: a date that cannot be parsed is kept as-is
(the validator rejects it later) and a non-numeric amount becomes 0.0. Both
cases are logged as warnings.
"""

__all__ = [
    "map_to_schema",
    "normalize_date",
    "to_number",
    "to_text",
]

logger = logging.getLogger(__name__)

# leading float literal, the part parseFloat-style parsing keeps ("100 EUR" -> 100)
_NUMBER_PREFIX_RE = re.compile(r"^\s*[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")


def normalize_date(value: Any) -> Any:
    """Return ``YYYY-MM-DD`` for anything pandas can read as a date, else the value unchanged."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        ts = pd.to_datetime(str(value))
    except (ValueError, TypeError, OverflowError):
        return value
    if pd.isna(ts):
        return value
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC")
    return ts.strftime("%Y-%m-%d")


def _parse_number(value: Any) -> float | None:
    """Float of the leading numeric part, or None when there is none (bool and NaN included)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    m = _NUMBER_PREFIX_RE.match(str(value))
    if m is None:
        return None
    number = float(m.group(0))
    return None if math.isnan(number) or math.isinf(number) else number


def to_number(value: Any) -> float | None:
    """Float for numeric-looking values, 0.0 for anything else, None stays None."""
    if value is None:
        return None
    number = _parse_number(value)
    return 0.0 if number is None else number


def to_text(value: Any) -> Any:
    """Undo dynamic typing for identifier columns (1001 -> '1001', 12.0 -> '12')."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def map_to_schema(
    rows: Sequence[RawRow],
    mapping: Mapping[str, str],
    date_fields: Iterable[str] = (),
    numeric_fields: Iterable[str] = (),
    text_fields: Iterable[str] = (),
    raw_rows: Sequence[Mapping[str, str]] | None = None,
) -> list[MappedRow]:
    """Apply a {csv column: target field} mapping to every row.

    Columns missing from a row are not copied; mapping entries with an empty
    target are ignored. Returns an empty list for empty rows or mapping.

    ``raw_rows`` (the untyped cell text, parallel to ``rows``) is the source
    for text fields when given, so identifiers keep leading zeros and
    exponent-looking spellings.
    """
    if not rows or not mapping:
        return []
    date_fields = tuple(date_fields)
    numeric_fields = tuple(numeric_fields)
    text_fields = tuple(text_fields)

    mapped_rows: list[MappedRow] = []
    for index, row in enumerate(rows):
        out: MappedRow = {}
        raw = raw_rows[index] if raw_rows is not None else None
        for src, dst in mapping.items():
            if not dst or src not in row:
                continue
            if raw is not None and dst in text_fields and src in raw:
                out[dst] = raw[src] if raw[src] != "" else None
            else:
                out[dst] = row[src]

        for f in text_fields:
            if f in out:
                out[f] = to_text(out[f])

        for f in date_fields:
            value = out.get(f)
            if value:
                normalized = normalize_date(value)
                if normalized is value:
                    logger.warning("row=%d invalid date format for field %s: %r", index, f, value)
                out[f] = normalized

        for f in numeric_fields:
            if f in out:
                value = out[f]
                number = to_number(value)
                if value is not None and _parse_number(value) is None:
                    logger.warning("row=%d non-numeric value for field %s: %r -> 0", index, f, value)
                out[f] = number

        mapped_rows.append(out)
    return mapped_rows

