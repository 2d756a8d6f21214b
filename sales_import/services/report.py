from __future__ import annotations

from sales_import.models.import_outcome import ImportOutcome, UpsertTally
from sales_import.models.rows import ValidationResult

"""Result reporting: ImportOutcome builders and the SUMMARY line.

No business logic beyond counting and capping the invalid row sample.
"""

__all__ = [
    "INVALID_SAMPLE_SIZE",
    "success_outcome",
    "failure_outcome",
    "validation_failure_outcome",
    "render_summary_line",
]

INVALID_SAMPLE_SIZE = 5


def success_outcome(tally: UpsertTally, total_rows: int) -> ImportOutcome:
    return ImportOutcome(
        success=True,
        imported_count=tally.imported,
        error_count=tally.failed,
        total_rows=total_rows,
    )


def failure_outcome(error: str, *, total_rows: int = 0, error_count: int = 0) -> ImportOutcome:
    return ImportOutcome(success=False, error=error, total_rows=total_rows, error_count=error_count)


def validation_failure_outcome(result: ValidationResult) -> ImportOutcome:
    """Failure carrying the first INVALID_SAMPLE_SIZE invalid rows."""
    return ImportOutcome(
        success=False,
        error=result.message,
        error_count=len(result.invalid_rows),
        total_rows=len(result.valid_rows) + len(result.invalid_rows),
        invalid_rows=result.invalid_rows[:INVALID_SAMPLE_SIZE],
    )


def render_summary_line(kind: str, outcome: ImportOutcome) -> str:
    """Render the SUMMARY line printed by the CLI.

    Format:
    SUMMARY kind={kind} status={ok|partial|failed} rows={total} imported={n} errors={n}

    >>> render_summary_line("sales", ImportOutcome(success=True, imported_count=3, total_rows=3))
    'SUMMARY kind=sales status=ok rows=3 imported=3 errors=0'
    """
    if not outcome.success:
        status = "failed"
    elif outcome.partial:
        status = "partial"
    else:
        status = "ok"
    return (
        f"SUMMARY kind={kind} "
        f"status={status} "
        f"rows={outcome.total_rows} "
        f"imported={outcome.imported_count} "
        f"errors={outcome.error_count}"
    )
