from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""Row level models shared by the parser, the mapper and the validator.

RawRow and MappedRow are plain dicts (column/field name -> scalar); only the
structured results around them get their own types.
"""

__all__ = [
    "RawRow",
    "MappedRow",
    "ParseError",
    "ParseResult",
    "InvalidRow",
    "ValidationResult",
]

Scalar = str | int | float | bool | None
RawRow = dict[str, Scalar]
MappedRow = dict[str, Any]


@dataclass(frozen=True)
class ParseError:
    """A malformed CSV row, reported instead of raised."""
    code: str  # TooManyFields / TooFewFields
    message: str
    row: int | None = None  # 0-based data row index, None if unknown


@dataclass(frozen=True)
class ParseResult:
    data: list[RawRow]
    errors: list[ParseError] = field(default_factory=list)
    fields: list[str] = field(default_factory=list)  # header names in file order
    raw: list[dict[str, str]] = field(default_factory=list)  # untyped cell text, parallel to data


@dataclass(frozen=True)
class InvalidRow:
    row_index: int  # index in the mapped row list
    data: MappedRow
    errors: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"rowIndex": self.row_index, "data": self.data, "errors": list(self.errors)}


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    message: str
    valid_rows: list[MappedRow]
    invalid_rows: list[InvalidRow]
