from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from sales_import.models.rows import MappedRow
from .validator import FieldValidator

"""Import kinds and the table each one writes to.

An EntitySpec carries everything the pipeline needs to know about a kind:
target table, natural key, column allow-list, coercion field lists, required
fields and field validators. Column names used in SQL come only from here.
"""

__all__ = [
    "EntitySpec",
    "ENTITIES",
    "get_entity",
    "UnknownEntityError",
]


class UnknownEntityError(Exception):
    pass


@dataclass(frozen=True)
class EntitySpec:
    kind: str
    table: str
    key_fields: tuple[str, ...]
    columns: frozenset[str]  # writable columns, key included; timestamps excluded
    required_fields: tuple[str, ...] = ()
    date_fields: tuple[str, ...] = ()
    numeric_fields: tuple[str, ...] = ()
    text_fields: tuple[str, ...] = ()
    validators: dict[str, FieldValidator] = field(default_factory=dict)

    def unknown_fields(self, mapping: dict[str, str]) -> list[str]:
        """Targets of ``mapping`` that are not columns of this entity."""
        return sorted({dst for dst in mapping.values() if dst and dst not in self.columns})


def _is_date(value: Any) -> bool:
    try:
        ts = pd.to_datetime(str(value))
    except (ValueError, TypeError, OverflowError):
        return False
    return not pd.isna(ts)


def _valid_date(value: Any, row: MappedRow) -> Any:
    return _is_date(value) or "Invalid date format"


def _item_net_is_number(value: Any, row: MappedRow) -> Any:
    return (isinstance(value, (int, float)) and not isinstance(value, bool)) or "Item net must be a number"


def _positive_target_value(value: Any, row: MappedRow) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return "Target value must be a number"
    return value > 0 or "Target value must be positive"


def _period_end_after_start(value: Any, row: MappedRow) -> Any:
    if not _is_date(value):
        return "Period end must be a valid date"
    start = row.get("period_start")
    if start is None or not _is_date(start):
        return True
    return pd.to_datetime(str(value)) >= pd.to_datetime(str(start)) or "Period end must be after period start"


SALES = EntitySpec(
    kind="sales",
    table="sales",
    key_fields=("invoice_id",),
    columns=frozenset({
        "invoice_id", "date", "customer_id", "sales_unit_id", "material_id",
        "quantity", "price", "discount", "freight",
        "item_net", "item_tax", "item_gross",
        "total_net_per_invoice", "total_tax_per_invoice", "total_gross_per_invoice",
        "period_start", "period_end",
    }),
    required_fields=("invoice_id", "date", "item_net"),
    date_fields=("date", "period_start", "period_end"),
    numeric_fields=(
        "quantity", "price", "discount", "freight",
        "item_net", "item_tax", "item_gross",
        "total_net_per_invoice", "total_tax_per_invoice", "total_gross_per_invoice",
    ),
    text_fields=("invoice_id", "customer_id", "sales_unit_id", "material_id"),
    validators={"date": _valid_date, "item_net": _item_net_is_number},
)

PRODUCTS = EntitySpec(
    kind="products",
    table="products",
    key_fields=("id",),
    columns=frozenset({"id", "name", "category_id", "description", "unit_price"}),
    required_fields=("id", "name"),
    numeric_fields=("unit_price",),
    text_fields=("id", "category_id"),
)

CUSTOMERS = EntitySpec(
    kind="customers",
    table="customers",
    key_fields=("id",),
    columns=frozenset({"id", "name", "region", "segment", "email", "phone"}),
    required_fields=("id", "name"),
    text_fields=("id", "phone"),
)

TARGETS = EntitySpec(
    kind="targets",
    table="targets",
    key_fields=("target_type", "target_id", "period_start", "period_end"),
    columns=frozenset({
        "target_type", "target_id", "period_start", "period_end", "target_value", "currency",
    }),
    required_fields=("target_type", "target_id", "target_value"),
    date_fields=("period_start", "period_end"),
    numeric_fields=("target_value",),
    text_fields=("target_id",),
    validators={"target_value": _positive_target_value, "period_end": _period_end_after_start},
)

ENTITIES: dict[str, EntitySpec] = {e.kind: e for e in (SALES, PRODUCTS, CUSTOMERS, TARGETS)}


def get_entity(kind: str) -> EntitySpec:
    try:
        return ENTITIES[kind]
    except KeyError:
        raise UnknownEntityError(
            f"unknown import type: {kind!r} (expected one of {', '.join(sorted(ENTITIES))})"
        ) from None
