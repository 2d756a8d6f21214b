from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sales_import.csvfile.reader import parse_csv
from sales_import.db.connection import ConnectionProvider, TransactionError
from sales_import.db.upsert import RowPersistenceError, UpsertAction, upsert_row
from sales_import.logging.error_log import ErrorLogBuffer
from sales_import.models.config_models import ImportOptions, RowFailurePolicy
from sales_import.models.error_record import ErrorRecord
from sales_import.models.import_outcome import ImportOutcome, UpsertTally
from sales_import.models.rows import MappedRow
from .entities import EntitySpec, UnknownEntityError, get_entity
from .mapper import map_to_schema
from .progress import RowProgress
from .report import failure_outcome, success_outcome, validation_failure_outcome
from .validator import validate_rows

"""Import service: parse -> map -> validate -> transactional upsert -> outcome.

Every entry point returns an ImportOutcome; data and database problems are
never raised to the caller.

Transaction model (one connection, one transaction per call):
- each row runs inside its own SAVEPOINT, so a failing row is undone and
  counted without poisoning the surrounding transaction; the savepoint is
  released after success and after rollback alike, so none stays open
- RowFailurePolicy.PARTIAL commits whatever succeeded, ALL_OR_NOTHING rolls
  the batch back at the end when any row failed
- any failure outside the per-row handling (lost connection, COMMIT) rolls
  the whole batch back
"""

__all__ = [
    "import_csv",
    "import_sales",
    "import_products",
    "import_customers",
    "import_targets",
]

logger = logging.getLogger(__name__)

ROW_SAVEPOINT = "row_upsert"
DEFAULT_SOURCE = "<upload>"


class BatchRolledBack(Exception):
    """Rows failed under the all-or-nothing policy; nothing was kept."""

    def __init__(self, tally: UpsertTally) -> None:
        self.tally = tally
        super().__init__(f"{tally.failed} rows failed; batch rolled back")


def _row_label(spec: EntitySpec, row: MappedRow) -> str:
    return " ".join(f"{k}={row.get(k)}" for k in spec.key_fields)


def _rollback_quietly(cursor: Any, error_log: ErrorLogBuffer, source: str, kind: str) -> None:
    try:
        cursor.execute("ROLLBACK")
    except Exception as rollback_e:
        # keep the original error; the rollback failure is only recorded
        logger.warning("rollback failed: %s", rollback_e)
        error_log.append(ErrorRecord.create(source, kind, -1, "TRANSACTION_ROLLBACK_ERROR", str(rollback_e)))


def _execute_batch(
    spec: EntitySpec,
    rows: list[MappedRow],
    provider: ConnectionProvider,
    options: ImportOptions,
    error_log: ErrorLogBuffer,
    source: str,
) -> UpsertTally:
    """Upsert ``rows`` in one transaction.

    Raises:
        TransactionError: BEGIN/COMMIT failed or the connection was lost;
            the batch has been rolled back
        BatchRolledBack: rows failed under ALL_OR_NOTHING; rolled back
    """
    with provider.connection() as conn:
        cursor = conn.cursor()
        try:
            cursor.execute("BEGIN")
            tally = UpsertTally()
            with RowProgress(len(rows), description=f"Importing {spec.kind}", enabled=options.show_progress) as progress:
                for index, row in enumerate(rows):
                    cursor.execute(f"SAVEPOINT {ROW_SAVEPOINT}")
                    try:
                        action = upsert_row(cursor, spec.table, spec.key_fields, row)
                    except RowPersistenceError as e:
                        cursor.execute(f"ROLLBACK TO SAVEPOINT {ROW_SAVEPOINT}")
                        cursor.execute(f"RELEASE SAVEPOINT {ROW_SAVEPOINT}")
                        tally.failed += 1
                        tally.failures.append((index, str(e)))
                        logger.error("row=%d %s import failed: %s", index, _row_label(spec, row), e)
                        error_log.append(
                            ErrorRecord.create(source, spec.kind, index, "ROW_PERSISTENCE_ERROR", str(e))
                        )
                    else:
                        cursor.execute(f"RELEASE SAVEPOINT {ROW_SAVEPOINT}")
                        if action is UpsertAction.INSERTED:
                            tally.inserted += 1
                        else:
                            tally.updated += 1
                    progress.advance(ok=tally.imported, failed=tally.failed)

            if tally.failed and options.row_failure_policy is RowFailurePolicy.ALL_OR_NOTHING:
                cursor.execute("ROLLBACK")
                raise BatchRolledBack(tally)

            cursor.execute("COMMIT")
            logger.debug(
                "kind=%s committed inserted=%d updated=%d failed=%d",
                spec.kind, tally.inserted, tally.updated, tally.failed,
            )
            return tally
        except BatchRolledBack:
            raise
        except Exception as e:
            _rollback_quietly(cursor, error_log, source, spec.kind)
            if isinstance(e, TransactionError):
                raise
            raise TransactionError(str(e) or type(e).__name__) from e
        finally:
            try:
                cursor.close()
            except Exception:  # pragma: no cover
                logger.debug("cursor close failed", exc_info=True)


def _run_import(
    spec: EntitySpec,
    csv_content: bytes | str,
    mappings: Mapping[str, str],
    provider: ConnectionProvider | None,
    options: ImportOptions,
    error_log: ErrorLogBuffer,
    source: str,
) -> ImportOutcome:
    parsed = parse_csv(csv_content)
    if parsed.errors:
        first = parsed.errors[0]
        logger.error("CSV parsing errors (%d), first: %s", len(parsed.errors), first.message)
        for err in parsed.errors:
            row = err.row if err.row is not None else -1
            error_log.append(ErrorRecord.create(source, spec.kind, row, "PARSE_ERROR", err.message))
        return failure_outcome(f"CSV parsing error: {first.message}")

    unknown = spec.unknown_fields(dict(mappings))
    if unknown:
        message = f"Unknown target field(s) for {spec.kind}: {', '.join(unknown)}"
        logger.error(message)
        return failure_outcome(message)

    mapped = map_to_schema(
        parsed.data,
        mappings,
        date_fields=spec.date_fields,
        numeric_fields=spec.numeric_fields,
        text_fields=spec.text_fields,
        raw_rows=parsed.raw,
    )

    validation = validate_rows(mapped, spec.required_fields, spec.validators)
    if not validation.valid:
        logger.error("kind=%s validation failed: %s", spec.kind, validation.message)
        for invalid in validation.invalid_rows:
            error_log.append(
                ErrorRecord.create(source, spec.kind, invalid.row_index, "VALIDATION_ERROR", "; ".join(invalid.errors))
            )
        return validation_failure_outcome(validation)

    rows = validation.valid_rows
    total = len(rows)
    if options.dry_run:
        logger.info("kind=%s dry run: %d rows valid, nothing written", spec.kind, total)
        return success_outcome(UpsertTally(), total_rows=total)

    if provider is None:
        return failure_outcome("No database connection configured", total_rows=total)

    try:
        tally = _execute_batch(spec, rows, provider, options, error_log, source)
    except BatchRolledBack as e:
        logger.error("kind=%s %s", spec.kind, e)
        return failure_outcome(str(e), total_rows=total, error_count=e.tally.failed)
    except TransactionError as e:
        logger.error("kind=%s transaction failed, batch rolled back: %s", spec.kind, e)
        error_log.append(ErrorRecord.create(source, spec.kind, -1, "TRANSACTION_ERROR", str(e)))
        return failure_outcome(str(e), total_rows=total)

    logger.info(
        "kind=%s imported=%d (inserted=%d updated=%d) errors=%d rows=%d",
        spec.kind, tally.imported, tally.inserted, tally.updated, tally.failed, total,
    )
    return success_outcome(tally, total_rows=total)


def import_csv(
    kind: str,
    csv_content: bytes | str,
    mappings: Mapping[str, str],
    provider: ConnectionProvider | None = None,
    options: ImportOptions | None = None,
    *,
    source: str = DEFAULT_SOURCE,
    error_log: ErrorLogBuffer | None = None,
) -> ImportOutcome:
    """Import CSV content of the given kind and report the outcome.

    Args:
        kind: sales, products, customers or targets
        csv_content: raw CSV bytes (UTF-8) or text
        mappings: {csv column: target field}; only mapped columns are imported
        provider: where to get the connection from (not needed for dry runs)
        options: policy / dry run / progress settings
        source: file name recorded in the error log
        error_log: buffer to record errors into; flushed before returning
            when created here

    Returns:
        ImportOutcome, success or failure
    """
    options = options or ImportOptions()
    own_log = error_log is None
    if error_log is None:
        error_log = ErrorLogBuffer(options.error_log_dir)
    try:
        spec = get_entity(kind)
    except UnknownEntityError as e:
        return failure_outcome(str(e))

    try:
        return _run_import(spec, csv_content, mappings or {}, provider, options, error_log, source)
    except Exception as e:
        logger.exception("%s import error", kind)
        return failure_outcome(str(e) or "An error occurred during import")
    finally:
        if own_log:
            try:
                error_log.flush()
            except OSError as e:
                logger.warning("could not write error log: %s", e)


def import_sales(csv_content: bytes | str, mappings: Mapping[str, str], provider: ConnectionProvider | None = None,
                 options: ImportOptions | None = None, **kwargs: Any) -> ImportOutcome:
    return import_csv("sales", csv_content, mappings, provider, options, **kwargs)


def import_products(csv_content: bytes | str, mappings: Mapping[str, str], provider: ConnectionProvider | None = None,
                    options: ImportOptions | None = None, **kwargs: Any) -> ImportOutcome:
    return import_csv("products", csv_content, mappings, provider, options, **kwargs)


def import_customers(csv_content: bytes | str, mappings: Mapping[str, str], provider: ConnectionProvider | None = None,
                     options: ImportOptions | None = None, **kwargs: Any) -> ImportOutcome:
    return import_csv("customers", csv_content, mappings, provider, options, **kwargs)


def import_targets(csv_content: bytes | str, mappings: Mapping[str, str], provider: ConnectionProvider | None = None,
                   options: ImportOptions | None = None, **kwargs: Any) -> ImportOutcome:
    return import_csv("targets", csv_content, mappings, provider, options, **kwargs)
