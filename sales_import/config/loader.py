from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from sales_import.models.config_models import (
    AppConfig,
    DatabaseConfig,
    ImportOptions,
    PoolConfig,
    RowFailurePolicy,
)

"""Config loader.

Responsibilities:
- Load YAML config (default ``config/import.yml``)
- Validate it against the JSON schema shipped next to this module
- Apply defaults (pool bounds, partial row failure policy, ./logs)
- Resolve the database settings, environment variables first
"""

SCHEMA_PATH = Path(__file__).parent / "config_schema.json"
DEFAULT_CONFIG_PATH = Path("config/import.yml")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: If the schema file is missing or not valid JSON, or the
            config data fails schema validation (missing keys, wrong types,
            unknown keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def resolve_database(db_raw: dict[str, Any]) -> DatabaseConfig:
    """Merge the ``database`` section with the environment.

    Precedence: DATABASE_URL, then DB_HOST / DB_PORT / DB_NAME / DB_USER /
    DB_PASSWORD / DB_SSL, then the YAML values.
    """
    port_env = os.getenv("DB_PORT")
    try:
        port = int(port_env) if port_env else db_raw.get("port")
    except ValueError as e:
        raise ConfigError(f"DB_PORT is not a number: {port_env!r}") from e
    return DatabaseConfig(
        host=os.getenv("DB_HOST", db_raw.get("host")),
        port=port,
        user=os.getenv("DB_USER", db_raw.get("user")),
        password=os.getenv("DB_PASSWORD", db_raw.get("password")),
        database=os.getenv("DB_NAME", db_raw.get("database")),
        dsn=os.getenv("DATABASE_URL") or db_raw.get("dsn"),
        ssl=_env_bool(os.getenv("DB_SSL"), bool(db_raw.get("ssl", False))),
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    pool_raw = data.get("pool", {})
    pool = PoolConfig(
        minconn=pool_raw.get("minconn", 1),
        maxconn=pool_raw.get("maxconn", 10),
        connect_timeout=pool_raw.get("connect_timeout", 5),
    )
    if pool.minconn > pool.maxconn:
        raise ConfigError(f"pool.minconn ({pool.minconn}) exceeds pool.maxconn ({pool.maxconn})")

    import_raw = data.get("import", {})
    options = ImportOptions(
        row_failure_policy=RowFailurePolicy(import_raw.get("row_failure_policy", "partial")),
        error_log_dir=import_raw.get("error_log_dir", "./logs"),
    )
    return AppConfig(
        database=resolve_database(data["database"]),
        pool=pool,
        options=options,
        mappings={kind: dict(m) for kind, m in (data.get("mappings") or {}).items()},
    )
