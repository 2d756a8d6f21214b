from __future__ import annotations

import io
import re
from typing import Any

import pandas as pd

from sales_import.models.rows import ParseError, ParseResult, RawRow, Scalar

"""CSV reader.

The first non-empty line is the header (names trimmed), the following lines
are data rows. Cells are read as text by pandas and typed per cell afterwards
(numbers, booleans, empty -> None), so a column may mix kinds the way the
uploaded sheet does.

The untyped cell text is kept next to the typed rows (ParseResult.raw) so that
identifier columns can be read back exactly as written: "00123" is not 123.

Malformed rows never raise: they come back as ParseError entries and the
caller decides whether to go on.
"""

__all__ = [
    "parse_csv",
    "infer_scalar",
]

_NUMBER_RE = re.compile(r"^\s*-?(\d+\.?|\.\d+|\d+\.\d+)([eE][-+]?\d+)?\s*$")
_BOOLEANS = {"true": True, "false": False}


def infer_scalar(value: str) -> Scalar:
    """Type a single cell: '' -> None, 'true'/'false' -> bool, numbers -> int/float."""
    if value == "":
        return None
    lowered = value.strip().lower()
    if lowered in _BOOLEANS:
        return _BOOLEANS[lowered]
    if _NUMBER_RE.match(value):
        text = value.strip()
        if any(c in text for c in ".eE"):
            return float(text)
        return int(text)
    return value


def _decode(content: bytes | str) -> str:
    if isinstance(content, (bytes, bytearray)):
        text = bytes(content).decode("utf-8", errors="replace")
    else:
        text = content
    return text[1:] if text.startswith("\ufeff") else text


def _is_missing(val: Any) -> bool:
    # padded cells of short rows come back as None/NaN, real empty cells as ''
    return val is None or (not isinstance(val, str) and pd.isna(val))


def parse_csv(
    content: bytes | str,
    header: bool = True,
    dynamic_typing: bool = True,
    skip_empty_lines: bool = True,
) -> ParseResult:
    """Parse CSV text into RawRows plus structured parse errors.

    Parameters
    ----------
    content: CSV bytes (UTF-8) or text
    header: treat the first non-empty line as the header row; otherwise
        columns are named by position ("0", "1", ...)
    dynamic_typing: convert numeric/boolean-looking cells and map '' to None
    skip_empty_lines: drop lines that are completely empty
    """
    text = _decode(content)
    bad_lines: list[list[str]] = []

    def _on_bad_line(fields: list[str]) -> None:
        bad_lines.append(fields)
        return None  # drop the line, reported below

    try:
        df = pd.read_csv(
            io.StringIO(text),
            header=None,
            dtype=object,
            keep_default_na=False,
            skip_blank_lines=skip_empty_lines,
            engine="python",
            on_bad_lines=_on_bad_line,
        )
    except pd.errors.EmptyDataError:
        return ParseResult(data=[], errors=[], fields=[])
    except pd.errors.ParserError as e:
        return ParseResult(data=[], errors=[ParseError(code="ParserError", message=str(e))], fields=[])

    width = df.shape[1]
    if header:
        if df.shape[0] == 0:
            return ParseResult(data=[], errors=[], fields=[])
        fields = [("" if _is_missing(c) else str(c)).strip() for c in df.iloc[0].tolist()]
        data_part = df.iloc[1:]
    else:
        fields = [str(i) for i in range(width)]
        data_part = df

    errors: list[ParseError] = [
        ParseError(
            code="TooManyFields",
            message=f"Too many fields: expected {width} fields but parsed {len(fields_)}",
        )
        for fields_ in bad_lines
    ]

    rows: list[RawRow] = []
    raw_rows: list[dict[str, str]] = []
    for index, raw in enumerate(data_part.itertuples(index=False, name=None)):
        row: RawRow = {}
        raw_row: dict[str, str] = {}
        present = 0
        for col, val in zip(fields, raw, strict=False):
            if _is_missing(val):
                continue
            present += 1
            raw_row[col] = str(val)
            row[col] = infer_scalar(val) if dynamic_typing else str(val)
        if present < width:
            errors.append(
                ParseError(
                    code="TooFewFields",
                    message=f"Too few fields: expected {width} fields but parsed {present}",
                    row=index,
                )
            )
        rows.append(row)
        raw_rows.append(raw_row)

    return ParseResult(data=rows, errors=errors, fields=fields, raw=raw_rows)
