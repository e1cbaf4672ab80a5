from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..models.mutation import Mutation
from ..models.schema import ColumnMeta

"""Host store interface.

The reconciliation engine never talks to a database or a spreadsheet host
directly; it consumes this narrow protocol. Adapters live next to this module
(memory.py, postgres.py).

Contract:
- fetch_table returns columnar data and always includes the "id" column
- apply_mutations applies one batch atomically and returns one value per
  mutation (the new row id for AddRecord, None otherwise); on failure it
  raises StoreError and leaves the batch unapplied
- every adapter failure surfaces as StoreError
"""

__all__ = [
    "ROW_ID",
    "HIDDEN_COLUMNS",
    "StoreError",
    "TableData",
    "TableStore",
]

ROW_ID = "id"
# Row identifier and internal ordering column, never reconciled
HIDDEN_COLUMNS = frozenset({ROW_ID, "manualSort"})


class StoreError(Exception):
    """Raised by store adapters for any read or write failure."""


@dataclass(frozen=True)
class TableData:
    """Columnar snapshot of a table."""
    table_id: str
    columns: dict[str, list[Any]] = field(default_factory=dict)

    @property
    def ids(self) -> list[Any]:
        return list(self.columns.get(ROW_ID, []))

    @property
    def column_names(self) -> list[str]:
        """Visible column names, in store order."""
        return [c for c in self.columns if c not in HIDDEN_COLUMNS]

    def __len__(self) -> int:
        return len(self.columns.get(ROW_ID, []))

    def records(self) -> list[dict[str, Any]]:
        names = list(self.columns)
        return [
            {name: self.columns[name][i] for name in names}
            for i in range(len(self))
        ]


class TableStore(Protocol):
    def list_tables(self) -> list[str]: ...

    def fetch_table(self, table_id: str) -> TableData: ...

    def fetch_column_metadata(self, table_id: str) -> dict[str, ColumnMeta] | None:
        """Native column metadata, or None when the store has none for the table."""
        ...

    def apply_mutations(self, mutations: Sequence[Mutation]) -> list[Any]: ...

    def create_table(self, table_id: str, columns: Sequence[tuple[str, str]]) -> None: ...

    def add_column(self, table_id: str, column_id: str, column_type: str) -> None: ...
