from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from ..models.schema import ColumnKind, ColumnMeta, ColumnType
from ..store.base import HIDDEN_COLUMNS, StoreError, TableStore
from .coercion import is_number

"""Schema introspection for the target table.

Store metadata is preferred. Without it the first row is sampled; a table
with no rows reports every column as Text. An unreadable table gives {}.
"""

__all__ = [
    "SchemaIntrospector",
    "column_type_from_meta",
    "infer_kind",
    "formula_columns",
]

logger = logging.getLogger(__name__)

_DECLARED_KINDS = {
    "Text": ColumnKind.TEXT,
    "Numeric": ColumnKind.NUMERIC,
    "Int": ColumnKind.NUMERIC,
    "Date": ColumnKind.DATE,
    "DateTime": ColumnKind.DATE,
    "Bool": ColumnKind.BOOL,
    "Choice": ColumnKind.CHOICE,
    "ChoiceList": ColumnKind.CHOICE,
}


def column_type_from_meta(meta: ColumnMeta) -> ColumnType:
    # Computed columns with an empty body are plain data columns
    is_formula = bool(meta.is_formula and meta.formula.strip())
    ref_table = meta.ref_table
    if ref_table is not None:
        kind = ColumnKind.REFERENCE
    else:
        base = meta.declared_type.split(":", 1)[0]
        kind = _DECLARED_KINDS.get(base, ColumnKind.UNKNOWN)
    return ColumnType(kind=kind, ref_table=ref_table, is_formula=is_formula, declared_type=meta.declared_type)


def infer_kind(value: Any) -> ColumnKind:
    if value is None:
        return ColumnKind.UNKNOWN
    if isinstance(value, (date, datetime)):
        return ColumnKind.DATE
    if isinstance(value, bool):
        return ColumnKind.BOOL
    if is_number(value):
        return ColumnKind.NUMERIC
    return ColumnKind.TEXT


class SchemaIntrospector:
    def __init__(self, store: TableStore) -> None:
        self._store = store

    def column_types(self, table_id: str) -> dict[str, ColumnType]:
        try:
            meta = self._store.fetch_column_metadata(table_id)
        except StoreError as e:
            logger.debug(f"metadata unavailable for {table_id}: {e}")
            meta = None
        if meta:
            return {
                name: column_type_from_meta(m)
                for name, m in meta.items()
                if name not in HIDDEN_COLUMNS
            }

        try:
            data = self._store.fetch_table(table_id)
        except StoreError as e:
            logger.warning(f"cannot read table {table_id}: {e}")
            return {}
        names = data.column_names
        if len(data) == 0:
            return {name: ColumnType(ColumnKind.TEXT) for name in names}
        return {name: ColumnType(infer_kind(data.columns[name][0])) for name in names}


def formula_columns(types: dict[str, ColumnType]) -> set[str]:
    return {name for name, t in types.items() if t.is_formula}
