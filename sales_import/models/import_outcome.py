from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .rows import InvalidRow

"""ImportOutcome: the value every import entry point returns.

Callers (CLI, HTTP handler) branch on ``success`` and render either the
counts or the error message; nothing in the pipeline raises for data or
database problems.
"""

__all__ = [
    "ImportOutcome",
    "UpsertTally",
]


@dataclass(frozen=True)
class ImportOutcome:
    success: bool
    imported_count: int = 0
    error_count: int = 0
    total_rows: int = 0
    error: str | None = None
    invalid_rows: list[InvalidRow] | None = None  # capped sample, validation failures only

    @property
    def partial(self) -> bool:
        return self.success and self.error_count > 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the camelCase keys the UI expects; optional keys only when set."""
        data: dict[str, Any] = {
            "success": self.success,
            "importedCount": self.imported_count,
            "errorCount": self.error_count,
            "totalRows": self.total_rows,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.invalid_rows is not None:
            data["invalidRows"] = [r.to_dict() for r in self.invalid_rows]
        return data


@dataclass
class UpsertTally:
    """Mutable per-batch counters filled by the upsert loop."""
    inserted: int = 0
    updated: int = 0
    failed: int = 0
    failures: list[tuple[int, str]] = field(default_factory=list)  # (row index, message)

    @property
    def imported(self) -> int:
        return self.inserted + self.updated
