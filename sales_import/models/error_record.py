from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the structured import error log.

One record per failed step of an import: a parse error, a rejected batch, a
row that could not be persisted or a transaction that had to be rolled back.
``row`` is -1 when the failure is not attributable to a single row.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        source: Name of the imported file (or "<upload>" for in-memory content)
        entity: Import kind (sales, products, customers, targets)
        row: 0-based row index within the batch. -1 for batch-level errors
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Database error message or description
    """
    timestamp: str
    source: str
    entity: str
    row: int
    error_type: str
    message: str

    @staticmethod
    def create(source: str, entity: str, row: int, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            source=source,
            entity=entity,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
