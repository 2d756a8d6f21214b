# Shared pytest fixtures: workdir/config helpers and an in-memory PostgreSQL stand-in
from __future__ import annotations

import copy
import logging
import re
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable

import psycopg2
import pytest

from sales_import.logging.init import reset_logging


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
pool:
  minconn: 1
  maxconn: 4
import:
  row_failure_policy: partial
  error_log_dir: ./logs
mappings:
  sales:
    Invoice: invoice_id
    Date: date
    Net: item_net
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture(autouse=True)
def clean_db_env(monkeypatch):
    for name in ("DATABASE_URL", "DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD", "DB_SSL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def fresh_logging():
    reset_logging()
    yield
    reset_logging()
    app_logger = logging.getLogger("sales_import")
    app_logger.handlers.clear()
    app_logger.propagate = True
    app_logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Fake database
#
# Understands exactly the statement shapes issued by sales_import.db.upsert and
# the importer's transaction control. NOW() is the transaction start tick, as
# in PostgreSQL.
# ---------------------------------------------------------------------------

_SELECT_RE = re.compile(r'^SELECT (.+) FROM "(\w+)" WHERE (.+)$')
_INSERT_RE = re.compile(r'^INSERT INTO "(\w+)" \((.+)\) VALUES \((.+)\) RETURNING (.+)$')
_UPDATE_RE = re.compile(r'^UPDATE "(\w+)" SET (.+) WHERE (.+) RETURNING (.+)$')
_COND_RE = re.compile(r'^"(\w+)" (= %s|IS NULL)$')
_ASSIGN_RE = re.compile(r'^"(\w+)" = (%s|NOW\(\))$')


def _names(text: str) -> list[str]:
    return [part.strip().strip('"') for part in text.split(", ")]


class FakeDatabase:
    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {
            "sales": [], "products": [], "customers": [], "targets": [],
        }
        self.clock = 0
        self.statements: list[str] = []
        # table, row -> True to raise an IntegrityError for that write
        self.reject_row: Callable[[str, dict[str, Any]], bool] | None = None
        # statement prefix -> exception raised when such a statement runs
        self.fail_on: dict[str, Exception] = {}
        self.acquired = 0
        self.released = 0

    def tick(self) -> int:
        self.clock += 1
        return self.clock

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables[table]

    def find(self, table: str, **key: Any) -> list[dict[str, Any]]:
        return [r for r in self.tables[table] if all(r.get(k) == v for k, v in key.items())]


class FakeCursor:
    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn
        self.db = conn.db
        self._result: list[tuple[Any, ...]] = []
        self.closed = False

    def _match(self, table: str, where: str, params: list[Any]) -> tuple[list[dict[str, Any]], list[Any]]:
        conds = []
        for part in where.split(" AND "):
            m = _COND_RE.match(part)
            assert m, f"unexpected condition: {part}"
            if m.group(2) == "IS NULL":
                conds.append((m.group(1), None))
            else:
                conds.append((m.group(1), params.pop(0)))
        rows = [r for r in self.db.tables[table] if all(r.get(c) == v for c, v in conds)]
        return rows, params

    def execute(self, sql: str, params: Any = None) -> None:
        params = list(params or [])
        self.db.statements.append(sql)
        for prefix, exc in self.db.fail_on.items():
            if sql.startswith(prefix):
                raise exc
        self._result = []
        if sql == "BEGIN":
            self.conn.begin()
        elif sql == "COMMIT":
            self.conn.commit()
        elif sql == "ROLLBACK":
            self.conn.rollback()
        elif sql.startswith("SAVEPOINT "):
            # a savepoint outlives ROLLBACK TO; only RELEASE ends it
            self.conn.savepoints.append(copy.deepcopy(self.db.tables))
            self.conn.max_savepoint_depth = max(self.conn.max_savepoint_depth, len(self.conn.savepoints))
        elif sql.startswith("ROLLBACK TO SAVEPOINT "):
            assert self.conn.savepoints, "no savepoint to roll back to"
            self.db.tables = copy.deepcopy(self.conn.savepoints[-1])
        elif sql.startswith("RELEASE SAVEPOINT "):
            assert self.conn.savepoints, "no savepoint to release"
            self.conn.savepoints.pop()
        elif m := _SELECT_RE.match(sql):
            cols, table, where = _names(m.group(1)), m.group(2), m.group(3)
            rows, _ = self._match(table, where, params)
            self._result = [tuple(r.get(c) for c in cols) for r in rows]
        elif m := _INSERT_RE.match(sql):
            table, cols, values, returning = m.group(1), _names(m.group(2)), _names(m.group(3)), _names(m.group(4))
            row: dict[str, Any] = {}
            for col, placeholder in zip(cols, values):
                row[col] = self.conn.now if placeholder == "NOW()" else params.pop(0)
            if self.db.reject_row is not None and self.db.reject_row(table, row):
                raise psycopg2.IntegrityError(f"new row for relation \"{table}\" violates check constraint")
            self.db.tables[table].append(row)
            self._result = [tuple(row.get(c) for c in returning)]
        elif m := _UPDATE_RE.match(sql):
            table, assigns, where, returning = m.group(1), m.group(2), m.group(3), _names(m.group(4))
            changes: dict[str, Any] = {}
            for part in assigns.split(", "):
                am = _ASSIGN_RE.match(part)
                assert am, f"unexpected assignment: {part}"
                changes[am.group(1)] = self.conn.now if am.group(2) == "NOW()" else params.pop(0)
            rows, _ = self._match(table, where, params)
            for r in rows:
                if self.db.reject_row is not None and self.db.reject_row(table, {**r, **changes}):
                    raise psycopg2.IntegrityError(f"new row for relation \"{table}\" violates check constraint")
                r.update(changes)
            self._result = [tuple(r.get(c) for c in returning) for r in rows]
        else:
            raise AssertionError(f"unexpected statement: {sql}")

    def fetchone(self) -> tuple[Any, ...] | None:
        return self._result.pop(0) if self._result else None

    def fetchall(self) -> list[tuple[Any, ...]]:
        rows, self._result = self._result, []
        return rows

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self, db: FakeDatabase) -> None:
        self.db = db
        self.autocommit = False
        self.closed = 0
        self.snapshot: dict[str, list[dict[str, Any]]] | None = None
        self.savepoints: list[dict[str, list[dict[str, Any]]]] = []
        self.max_savepoint_depth = 0
        self.open_savepoints_at_commit: int | None = None
        self.now: int | None = None
        self.cursors: list[FakeCursor] = []

    def cursor(self) -> FakeCursor:
        cur = FakeCursor(self)
        self.cursors.append(cur)
        return cur

    def begin(self) -> None:
        self.snapshot = copy.deepcopy(self.db.tables)
        self.savepoints = []
        self.now = self.db.tick()

    def commit(self) -> None:
        self.open_savepoints_at_commit = len(self.savepoints)
        self.snapshot = None
        self.savepoints = []

    def rollback(self) -> None:
        if self.snapshot is not None:
            self.db.tables = self.snapshot
        self.snapshot = None
        self.savepoints = []


class FakeProvider:
    def __init__(self, db: FakeDatabase) -> None:
        self.db = db
        self.connections: list[FakeConnection] = []
        self.closed = False

    @contextmanager
    def connection(self):
        conn = FakeConnection(self.db)
        self.connections.append(conn)
        self.db.acquired += 1
        try:
            conn.autocommit = True
            yield conn
        finally:
            self.db.released += 1

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture()
def provider(fake_db: FakeDatabase) -> FakeProvider:
    return FakeProvider(fake_db)
