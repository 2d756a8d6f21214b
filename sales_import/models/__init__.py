"""Domain models for the CSV sales import pipeline.

Row shapes flowing through parse -> map -> validate, the import outcome
returned to callers, error log records and configuration.
"""

from .config_models import AppConfig, DatabaseConfig, ImportOptions, PoolConfig, RowFailurePolicy
from .error_record import ErrorRecord
from .import_outcome import ImportOutcome, UpsertTally
from .rows import InvalidRow, MappedRow, ParseError, ParseResult, RawRow, ValidationResult

__all__ = [
    # Configuration models
    "AppConfig",
    "DatabaseConfig",
    "ImportOptions",
    "PoolConfig",
    "RowFailurePolicy",
    # Pipeline models
    "RawRow",
    "MappedRow",
    "ParseError",
    "ParseResult",
    "InvalidRow",
    "ValidationResult",
    "ImportOutcome",
    "UpsertTally",
    "ErrorRecord",
]
