from __future__ import annotations

import copy
import json
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from ..models.mutation import Mutation, MutationKind
from ..models.schema import ColumnMeta
from .base import ROW_ID, StoreError, TableData

"""In-process table store.

Used by the CLI "json" backend (tables persisted as a JSON snapshot) and by
the test-suite. Behaves like a host store: sequential row ids, atomic batches,
formula columns rejected on write, optional native column metadata.

Snapshot format:

    {"tables": {"Contacts": {
        "columns": {"Name": "Text", "Company": "Ref:Companies",
                    "Total": {"type": "Numeric", "formula": "$a + $b"}},
        "records": [{"id": 1, "Name": "Alice", "Company": 2}]}}}
"""

__all__ = [
    "MemoryStore",
]


class _Table:
    def __init__(self, columns: dict[str, ColumnMeta], has_metadata: bool) -> None:
        self.columns = columns
        self.has_metadata = has_metadata
        self.rows: dict[int, dict[str, Any]] = {}
        self.next_id = 1

    def insert(self, values: Mapping[str, Any], row_id: int | None = None) -> int:
        unknown = [c for c in values if c != ROW_ID and c not in self.columns]
        if unknown:
            raise StoreError(f"unknown column(s): {', '.join(unknown)}")
        if row_id is None:
            row_id = self.next_id
        elif row_id in self.rows:
            raise StoreError(f"duplicate row id {row_id}")
        self.rows[row_id] = {c: values.get(c) for c in self.columns}
        self.next_id = max(self.next_id, row_id + 1)
        return row_id


def _to_meta(spec: str | ColumnMeta | Mapping[str, Any]) -> ColumnMeta:
    if isinstance(spec, ColumnMeta):
        return spec
    if isinstance(spec, Mapping):
        formula = str(spec.get("formula") or "")
        return ColumnMeta(
            declared_type=str(spec.get("type") or "Any"),
            is_formula=bool(spec.get("is_formula", bool(formula))),
            formula=formula,
        )
    return ColumnMeta(declared_type=str(spec))


class MemoryStore:
    def __init__(self) -> None:
        self._tables: dict[str, _Table] = {}
        self.apply_calls = 0
        # apply_mutations call numbers (1-based) that fail, for failure drills
        self.failing_calls: set[int] = set()

    # ----------------------------------------------------------- set up
    def add_table(
        self,
        table_id: str,
        columns: Mapping[str, str | ColumnMeta | Mapping[str, Any]] | Sequence[str],
        records: Sequence[Mapping[str, Any]] | None = None,
        *,
        with_metadata: bool = True,
    ) -> None:
        """Register a table with its columns and initial records.

        ``columns`` maps names to declared types (or ColumnMeta); a plain list
        of names declares Text columns. ``with_metadata=False`` makes
        fetch_column_metadata report nothing, as a store without a metadata
        table would.
        """
        if isinstance(columns, Mapping):
            metas = {name: _to_meta(spec) for name, spec in columns.items() if name != ROW_ID}
        else:
            metas = {name: ColumnMeta("Text") for name in columns if name != ROW_ID}
        table = _Table(metas, with_metadata)
        for record in records or []:
            table.insert(record, record.get(ROW_ID))
        self._tables[table_id] = table

    def records(self, table_id: str) -> list[dict[str, Any]]:
        """Rows of a table as dicts including "id", in id order."""
        table = self._table(table_id)
        return [{ROW_ID: rid, **copy.deepcopy(row)} for rid, row in sorted(table.rows.items())]

    def get(self, table_id: str, row_id: int) -> dict[str, Any] | None:
        row = self._table(table_id).rows.get(row_id)
        return dict(row) if row is not None else None

    # ------------------------------------------------------ TableStore
    def list_tables(self) -> list[str]:
        return list(self._tables)

    def fetch_table(self, table_id: str) -> TableData:
        table = self._table(table_id)
        ids = sorted(table.rows)
        columns: dict[str, list[Any]] = {ROW_ID: ids}
        for name in table.columns:
            columns[name] = [copy.deepcopy(table.rows[i][name]) for i in ids]
        return TableData(table_id=table_id, columns=columns)

    def fetch_column_metadata(self, table_id: str) -> dict[str, ColumnMeta] | None:
        table = self._table(table_id)
        if not table.has_metadata:
            return None
        return dict(table.columns)

    def apply_mutations(self, mutations: Sequence[Mutation]) -> list[Any]:
        self.apply_calls += 1
        if self.apply_calls in self.failing_calls:
            raise StoreError(f"injected failure on call {self.apply_calls}")

        snapshot = copy.deepcopy(self._tables)
        try:
            return [self._apply_one(m) for m in mutations]
        except StoreError:
            self._tables = snapshot
            raise

    def create_table(self, table_id: str, columns: Sequence[tuple[str, str]]) -> None:
        if table_id in self._tables:
            raise StoreError(f"table {table_id} already exists")
        self.add_table(table_id, {name: col_type for name, col_type in columns})

    def add_column(self, table_id: str, column_id: str, column_type: str) -> None:
        table = self._table(table_id)
        if column_id in table.columns:
            raise StoreError(f"column {column_id} already exists in {table_id}")
        table.columns[column_id] = ColumnMeta(column_type)
        for row in table.rows.values():
            row[column_id] = None

    # --------------------------------------------------------- helpers
    def _table(self, table_id: str) -> _Table:
        try:
            return self._tables[table_id]
        except KeyError:
            raise StoreError(f"table not found: {table_id}") from None

    def _check_writable(self, table: _Table, fields: Mapping[str, Any]) -> None:
        for name in fields:
            meta = table.columns.get(name)
            if meta is None:
                raise StoreError(f"unknown column: {name}")
            if meta.is_formula and meta.formula:
                raise StoreError(f"cannot write formula column: {name}")

    def _apply_one(self, mutation: Mutation) -> Any:
        table = self._table(mutation.table_id)
        if mutation.kind is MutationKind.ADD:
            self._check_writable(table, mutation.fields)
            return table.insert(mutation.fields)
        if mutation.row_id not in table.rows:
            raise StoreError(f"invalid row id {mutation.row_id} in {mutation.table_id}")
        if mutation.kind is MutationKind.UPDATE:
            self._check_writable(table, mutation.fields)
            table.rows[mutation.row_id].update(mutation.fields)
        else:
            del table.rows[mutation.row_id]
        return None

    # ------------------------------------------------------- snapshots
    def to_snapshot(self) -> dict[str, Any]:
        tables: dict[str, Any] = {}
        for table_id, table in self._tables.items():
            columns: dict[str, Any] = {}
            for name, meta in table.columns.items():
                if meta.formula:
                    columns[name] = {"type": meta.declared_type, "formula": meta.formula}
                else:
                    columns[name] = meta.declared_type
            tables[table_id] = {"columns": columns, "records": self.records(table_id)}
        return {"tables": tables}

    @classmethod
    def from_snapshot(cls, data: Mapping[str, Any]) -> MemoryStore:
        store = cls()
        tables = data.get("tables")
        if not isinstance(tables, Mapping):
            raise StoreError("snapshot has no 'tables' object")
        for table_id, spec in tables.items():
            store.add_table(table_id, spec.get("columns") or {}, spec.get("records") or [])
        return store

    @classmethod
    def load(cls, path: Path) -> MemoryStore:
        if not path.exists():
            raise StoreError(f"store snapshot not found: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StoreError(f"invalid store snapshot {path}: {e}") from e
        return cls.from_snapshot(data)

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        text = json.dumps(self.to_snapshot(), ensure_ascii=False, indent=2, default=str)
        path.write_text(text, encoding="utf-8")
