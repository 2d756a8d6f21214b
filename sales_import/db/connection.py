from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Protocol

import psycopg2
from psycopg2.pool import ThreadedConnectionPool

from sales_import.models.config_models import DatabaseConfig, PoolConfig

"""Connection provider abstraction over the psycopg2 pool.

The importer never reaches a process-wide pool itself: it is handed a
ConnectionProvider and scopes one connection per import call. Connections are
put in autocommit mode so that the explicit BEGIN / COMMIT / ROLLBACK issued
by the importer are the only transaction boundaries.
"""

__all__ = [
    "ConnectionProvider",
    "PooledConnectionProvider",
    "TransactionError",
    "build_dsn",
]


class TransactionError(Exception):
    """BEGIN/COMMIT failed or the connection was lost mid-batch."""


class ConnectionProvider(Protocol):
    def connection(self) -> Any:  # context manager yielding a DB-API connection
        ...


def build_dsn(db: DatabaseConfig, connect_timeout: int | None = None) -> str:
    """Build a libpq DSN; an explicit dsn/DATABASE_URL wins over the individual fields."""
    if db.dsn:
        return db.dsn
    parts = [
        f"host={db.host or 'localhost'}",
        f"port={db.port or 5432}",
        f"user={db.user or 'postgres'}",
        f"dbname={db.database or 'postgres'}",
    ]
    if db.password:
        parts.append(f"password={db.password}")
    if db.ssl:
        parts.append("sslmode=require")
    if connect_timeout:
        parts.append(f"connect_timeout={connect_timeout}")
    return " ".join(parts)


class PooledConnectionProvider:
    """Bounded ThreadedConnectionPool, created lazily on first use."""

    def __init__(self, dsn: str, minconn: int = 1, maxconn: int = 10) -> None:
        self._dsn = dsn
        self._minconn = minconn
        self._maxconn = maxconn
        self._pool: ThreadedConnectionPool | None = None

    @classmethod
    def from_config(cls, db: DatabaseConfig, pool: PoolConfig) -> PooledConnectionProvider:
        return cls(build_dsn(db, pool.connect_timeout), minconn=pool.minconn, maxconn=pool.maxconn)

    def _get_pool(self) -> ThreadedConnectionPool:
        if self._pool is None:
            try:
                self._pool = ThreadedConnectionPool(self._minconn, self._maxconn, self._dsn)
            except psycopg2.Error as e:
                raise TransactionError(f"could not open connection pool: {e}") from e
        return self._pool

    @contextmanager
    def connection(self) -> Iterator[Any]:
        pool = self._get_pool()
        try:
            conn = pool.getconn()
        except psycopg2.Error as e:  # includes PoolError (pool exhausted)
            raise TransactionError(f"could not acquire connection: {e}") from e
        try:
            conn.autocommit = True
            yield conn
        finally:
            pool.putconn(conn, close=bool(conn.closed))

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
