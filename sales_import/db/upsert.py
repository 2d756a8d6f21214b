from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

import psycopg2

from .connection import TransactionError

"""Single-row upsert by natural key.

SELECT by key, then UPDATE (non-key fields + updated_at) or INSERT (all
fields + created_at/updated_at). Timestamps are maintained here, not by
triggers. Table and column names must come from an EntitySpec allow-list;
they are double-quoted, values always go through parameters.
"""

__all__ = [
    "RowPersistenceError",
    "UpsertAction",
    "upsert_row",
    "quote_ident",
]


class RowPersistenceError(Exception):
    """A single row could not be written (constraint violation, bad value, ...)."""


class UpsertAction(Enum):
    INSERTED = "inserted"
    UPDATED = "updated"


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _key_condition(key_fields: Sequence[str], row: Mapping[str, Any]) -> tuple[str, list[Any]]:
    """WHERE clause matching the row's key; a None key part matches NULL."""
    parts: list[str] = []
    params: list[Any] = []
    for k in key_fields:
        value = row.get(k)
        if value is None:
            parts.append(f"{quote_ident(k)} IS NULL")
        else:
            parts.append(f"{quote_ident(k)} = %s")
            params.append(value)
    return " AND ".join(parts), params


def build_select(table: str, key_fields: Sequence[str], row: Mapping[str, Any]) -> tuple[str, list[Any]]:
    cond, params = _key_condition(key_fields, row)
    cols = ", ".join(quote_ident(k) for k in key_fields)
    return f"SELECT {cols} FROM {quote_ident(table)} WHERE {cond}", params


def build_update(table: str, key_fields: Sequence[str], row: Mapping[str, Any]) -> tuple[str, list[Any]]:
    fields = [f for f in row if f not in key_fields]
    assignments = [f"{quote_ident(f)} = %s" for f in fields]
    assignments.append(f"{quote_ident('updated_at')} = NOW()")
    cond, key_params = _key_condition(key_fields, row)
    returning = ", ".join(quote_ident(k) for k in key_fields)
    sql = f"UPDATE {quote_ident(table)} SET {', '.join(assignments)} WHERE {cond} RETURNING {returning}"
    return sql, [row[f] for f in fields] + key_params


def build_insert(table: str, key_fields: Sequence[str], row: Mapping[str, Any]) -> tuple[str, list[Any]]:
    fields = list(row)
    cols = [quote_ident(f) for f in fields] + [quote_ident("created_at"), quote_ident("updated_at")]
    placeholders = ["%s"] * len(fields) + ["NOW()", "NOW()"]
    returning = ", ".join(quote_ident(k) for k in key_fields)
    sql = (
        f"INSERT INTO {quote_ident(table)} ({', '.join(cols)}) "
        f"VALUES ({', '.join(placeholders)}) RETURNING {returning}"
    )
    return sql, [row[f] for f in fields]


def upsert_row(cursor: Any, table: str, key_fields: Sequence[str], row: Mapping[str, Any]) -> UpsertAction:
    """Insert or update one row keyed by ``key_fields``.

    Raises:
        TransactionError: the connection itself is gone
        RowPersistenceError: any other database error for this row
    """
    try:
        sql, params = build_select(table, key_fields, row)
        cursor.execute(sql, params)
        exists = cursor.fetchone() is not None
        if exists:
            sql, params = build_update(table, key_fields, row)
            action = UpsertAction.UPDATED
        else:
            sql, params = build_insert(table, key_fields, row)
            action = UpsertAction.INSERTED
        cursor.execute(sql, params)
        cursor.fetchone()
    except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
        raise TransactionError(str(e)) from e
    except Exception as e:
        raise RowPersistenceError(str(e).strip()) from e
    return action
