from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from .names import normalize_name

"""Spreadsheet column -> store column matching.

Matching is by normalized-name equality. When several store columns normalize
to the same key, the first one in store column order wins. Blank incoming
headers never appear in the mapping; an unmatched header maps to None.
"""

__all__ = [
    "ColumnMapping",
    "match_columns",
]


@dataclass(frozen=True)
class ColumnMapping:
    columns: dict[str, str | None] = field(default_factory=dict)  # incoming -> store column or None
    unmatched_store: list[str] = field(default_factory=list)

    @property
    def matched(self) -> dict[str, str]:
        return {k: v for k, v in self.columns.items() if v is not None}

    @property
    def unmatched_incoming(self) -> list[str]:
        return [k for k, v in self.columns.items() if v is None]

    @property
    def mapped_store_columns(self) -> set[str]:
        return {v for v in self.columns.values() if v is not None}


def match_columns(incoming: Iterable[str], store_columns: Iterable[str]) -> ColumnMapping:
    store_list = list(store_columns)
    index: dict[str, str] = {}
    for name in store_list:
        key = normalize_name(name)
        if key and key not in index:
            index[key] = name

    columns: dict[str, str | None] = {}
    for name in incoming:
        if name is None or not str(name).strip():
            continue
        columns[name] = index.get(normalize_name(name))

    mapped = {v for v in columns.values() if v is not None}
    return ColumnMapping(columns, [c for c in store_list if c not in mapped])
