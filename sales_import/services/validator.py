from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from sales_import.models.rows import InvalidRow, MappedRow, ValidationResult

"""Row validation: required fields and per-field validators.

A field validator has the signature ``fn(value, row) -> True | str``; any
return value other than ``True`` is the error message for that row.
"""

__all__ = [
    "FieldValidator",
    "validate_rows",
]

FieldValidator = Callable[[Any, MappedRow], Any]

NO_DATA_MESSAGE = "No data to validate"


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def validate_rows(
    rows: Sequence[MappedRow],
    required_fields: Iterable[str] = (),
    validators: Mapping[str, FieldValidator] | None = None,
) -> ValidationResult:
    """Partition rows into valid and invalid ones.

    An empty batch is itself invalid: callers must not treat an empty CSV as
    a successful no-op import.
    """
    if not rows:
        return ValidationResult(valid=False, message=NO_DATA_MESSAGE, valid_rows=[], invalid_rows=[])

    required_fields = tuple(required_fields)
    validators = validators or {}
    valid_rows: list[MappedRow] = []
    invalid_rows: list[InvalidRow] = []

    for index, row in enumerate(rows):
        errors: list[str] = []
        for f in required_fields:
            if _is_blank(row.get(f)):
                errors.append(f"Missing required field: {f}")
        for f, check in validators.items():
            if row.get(f) is None:
                continue
            outcome = check(row[f], row)
            if outcome is not True:
                errors.append(str(outcome))
        if errors:
            invalid_rows.append(InvalidRow(row_index=index, data=row, errors=errors))
        else:
            valid_rows.append(row)

    if invalid_rows:
        message = f"{len(invalid_rows)} invalid rows found"
    else:
        message = "All data is valid"
    return ValidationResult(
        valid=not invalid_rows,
        message=message,
        valid_rows=valid_rows,
        invalid_rows=invalid_rows,
    )
