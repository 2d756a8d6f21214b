from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from sales_import.models.error_record import ErrorRecord

"""Error log buffering.

- JSON Lines with a fixed schema (no extra keys)
- One ``errors-YYYYMMDD-HHMMSS.log`` (UTC) per buffer, created on first flush
  that has something to write
- Records are buffered during an import and written once at the end

Each ``import_csv`` call owns one buffer unless the caller passes its own:
the importer appends PARSE_ERROR, VALIDATION_ERROR, ROW_PERSISTENCE_ERROR and
TRANSACTION_ERROR records as the stages fail, then flushes in its ``finally``
block. The HTTP app therefore gets one buffer per upload request, flushed under
``ImportOptions.error_log_dir`` in one append; concurrent requests never
share a buffer. A caller that wants to inspect the records
(tests, a batch of CLI files) passes its own buffer and flushes it itself.
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
]

DEFAULT_LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush writes JSON Lines.

    Not thread safe: one buffer per import call.
    """
    def __init__(self, logs_dir: Path | str | None = None) -> None:
        self._records: list[ErrorRecord] = []
        self._logs_dir = Path(logs_dir) if logs_dir is not None else DEFAULT_LOGS_DIR
        self._file_path: Path | None = None

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    @property
    def records(self) -> list[ErrorRecord]:
        return list(self._records)

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records to the log file; returns None when there was nothing to write."""
        if not self._records:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
