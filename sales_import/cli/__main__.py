from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

from sales_import.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from sales_import.csvfile.reader import parse_csv
from sales_import.db.connection import PooledConnectionProvider
from sales_import.logging.init import log_summary, set_debug, setup_logging
from sales_import.models.config_models import AppConfig, RowFailurePolicy
from sales_import.services.entities import ENTITIES, get_entity
from sales_import.services.importer import import_csv
from sales_import.services.report import render_summary_line

"""CLI entrypoint: import one CSV file of a given kind.

Flow:
- Load .env, then the YAML config
- Resolve the column mapping (--mapping file, else config, else identity on
  matching header names)
- Run the import and print the outcome JSON and the SUMMARY line

Exit codes: 0 everything imported, 2 imported with row errors, 1 failure.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv; .env values win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="sales-import", description="CSV -> PostgreSQL sales data importer")
    p.add_argument("--type", dest="kind", required=True, choices=sorted(ENTITIES), help="Import type")
    p.add_argument("--file", required=True, type=Path, help="CSV file to import")
    p.add_argument("--mapping", type=Path, help="JSON file with {csv column: target field}")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="YAML config file")
    p.add_argument(
        "--policy",
        choices=[policy.value for policy in RowFailurePolicy],
        help="Row failure policy (overrides config)",
    )
    p.add_argument("--dry-run", action="store_true", help="Parse, map and validate only")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--inspect-data", action="store_true", help="Print header & first rows then exit")
    return p.parse_args(argv)


def _resolve_mapping(kind: str, mapping_path: Path | None, cfg: AppConfig, header: list[str]) -> dict[str, str]:
    if mapping_path is not None:
        data = json.loads(mapping_path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("mapping file must contain a JSON object")
        return {str(k): str(v) for k, v in data.items()}
    if kind in cfg.mappings:
        return dict(cfg.mappings[kind])
    # identity on the header names that are columns of the entity
    columns = get_entity(kind).columns
    return {h: h for h in header if h in columns}


def _inspect_data(content: bytes) -> int:
    parsed = parse_csv(content)
    print(f"  cols={parsed.fields}")
    print("    sample_rows=", parsed.data[:3])
    for err in parsed.errors:
        print(f"  parse_error: {err.code} {err.message}")
    return 0


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # argv=[] must not fall back to sys.argv (pytest arguments)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)

    if args.debug:
        set_debug(logger)
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if not args.file.exists():
        logger.error(f"file not found: {args.file}")
        return EXIT_FATAL
    content = args.file.read_bytes()

    if args.inspect_data:
        print(f"FILE: {args.file.name}")
        return _inspect_data(content)

    try:
        mapping = _resolve_mapping(args.kind, args.mapping, cfg, parse_csv(content).fields)
    except (OSError, ValueError) as e:
        logger.error(f"mapping: {e}")
        return EXIT_FATAL
    logger.debug(f"mapping={mapping}")

    options = replace(cfg.options, dry_run=args.dry_run, show_progress=True)
    if args.policy:
        options = replace(options, row_failure_policy=RowFailurePolicy(args.policy))

    provider = None if args.dry_run else PooledConnectionProvider.from_config(cfg.database, cfg.pool)
    logger.info(f"Importing {args.kind} from: {args.file}")
    try:
        outcome = import_csv(args.kind, content, mapping, provider, options, source=args.file.name)
    finally:
        if provider is not None:
            provider.close()

    print(json.dumps(outcome.to_dict(), ensure_ascii=False, default=str))
    summary_line = render_summary_line(args.kind, outcome)
    log_summary(summary_line.removeprefix("SUMMARY "))

    if not outcome.success:
        return EXIT_FATAL
    if outcome.partial:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
