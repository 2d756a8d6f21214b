from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

"""Config dataclasses for the CSV sales import pipeline.

These are produced by ``sales_import.config.loader`` and consumed by the CLI,
the HTTP app and the importer service.
"""


class RowFailurePolicy(Enum):
    """What to do with a batch once some of its rows failed to persist.

    - PARTIAL: commit the rows that succeeded, report the failures
    - ALL_OR_NOTHING: roll the whole batch back as soon as one row failed
    """
    PARTIAL = "partial"
    ALL_OR_NOTHING = "all_or_nothing"


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None
    ssl: bool = False


@dataclass(frozen=True)
class PoolConfig:
    """Bounds and timeouts of the shared connection pool."""
    minconn: int = 1
    maxconn: int = 10
    connect_timeout: int = 5  # seconds


@dataclass(frozen=True)
class ImportOptions:
    row_failure_policy: RowFailurePolicy = RowFailurePolicy.PARTIAL
    error_log_dir: str = "./logs"
    dry_run: bool = False
    show_progress: bool = False


@dataclass(frozen=True)
class AppConfig:
    """Root configuration object."""
    database: DatabaseConfig
    pool: PoolConfig = field(default_factory=PoolConfig)
    options: ImportOptions = field(default_factory=ImportOptions)
    mappings: dict[str, dict[str, str]] = field(default_factory=dict)  # kind -> {csv column: field}
