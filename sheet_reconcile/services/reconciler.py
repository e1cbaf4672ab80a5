from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..models.import_result import ImportStats
from ..models.mutation import Mutation
from ..models.row_data import RowData
from ..models.rules import KeyMode, Policy, RuleSet
from ..models.schema import ColumnType
from ..store.base import HIDDEN_COLUMNS, TableData
from .coercion import EMPTY_REFERENCE, ValueCoercer, are_equal, is_empty, key_text, normalize_date
from .matcher import ColumnMapping
from .names import normalize_name

"""Row reconciliation.

Each incoming row goes through:

    parse -> resolve key -> (no key | matched | unmatched) -> compute mutation -> emit

Nothing is written here. The engine reads a snapshot of the target table and
returns the mutations (with pre-images for updates) plus counts and the
per-row report. Formula columns never appear in a mutation.
"""

__all__ = [
    "ReconcileError",
    "PreconditionError",
    "RowState",
    "KEY_SEPARATOR",
    "APPEND_SEPARATOR",
    "ReconcileOutcome",
    "ReconciliationEngine",
    "POLICY_HANDLERS",
]

logger = logging.getLogger(__name__)

# Unit separator: cannot be typed into a cell
KEY_SEPARATOR = "\x1f"
APPEND_SEPARATOR = " | "

ProgressCallback = Callable[[int, int], None]


class ReconcileError(Exception):
    pass


class PreconditionError(ReconcileError):
    """Import cannot start; nothing has been written."""


class RowState(Enum):
    NO_KEY = "no_key"
    MATCHED = "matched"
    UNMATCHED = "unmatched"


@dataclass(frozen=True)
class _Cell:
    store_column: str
    column_type: ColumnType | None

    @property
    def is_date(self) -> bool:
        return self.column_type is not None and self.column_type.is_date

    @property
    def is_reference(self) -> bool:
        return self.column_type is not None and self.column_type.is_reference


def _blank(value: Any, cell: _Cell) -> bool:
    if cell.is_reference and value == EMPTY_REFERENCE and not isinstance(value, bool):
        return True
    return is_empty(value)


# Policy handlers: (incoming, current, cell) -> (changed, new value)
def _ignore(incoming: Any, current: Any, cell: _Cell) -> tuple[bool, Any]:
    return False, None


def _overwrite(incoming: Any, current: Any, cell: _Cell) -> tuple[bool, Any]:
    if _blank(incoming, cell) or are_equal(incoming, current):
        return False, None
    return True, incoming


def _update_if_newer(incoming: Any, current: Any, cell: _Cell) -> tuple[bool, Any]:
    if _blank(incoming, cell):
        return False, None
    incoming_date = normalize_date(incoming)
    if incoming_date is None:
        return False, None
    current_date = normalize_date(current)
    # ISO dates order lexically
    if current_date is None or incoming_date > current_date:
        return True, incoming
    return False, None


def _fill_if_empty(incoming: Any, current: Any, cell: _Cell) -> tuple[bool, Any]:
    if _blank(current, cell) and not _blank(incoming, cell):
        return True, incoming
    return False, None


def _append_if_different(incoming: Any, current: Any, cell: _Cell) -> tuple[bool, Any]:
    if _blank(incoming, cell) or are_equal(incoming, current):
        return False, None
    before = "" if _blank(current, cell) else key_text(current)
    separator = APPEND_SEPARATOR if before else ""
    return True, before + separator + key_text(incoming)


# fill_if_empty and preserve_if_not_empty share one behavior
POLICY_HANDLERS: dict[Policy, Callable[[Any, Any, _Cell], tuple[bool, Any]]] = {
    Policy.IGNORE: _ignore,
    Policy.OVERWRITE: _overwrite,
    Policy.UPDATE_IF_NEWER: _update_if_newer,
    Policy.FILL_IF_EMPTY: _fill_if_empty,
    Policy.PRESERVE_IF_NOT_EMPTY: _fill_if_empty,
    Policy.APPEND_IF_DIFFERENT: _append_if_different,
}


@dataclass
class ReconcileOutcome:
    mutations: list[Mutation] = field(default_factory=list)
    stats: ImportStats = field(default_factory=ImportStats)
    resume: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    unmapped_store_columns: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _KeyMatch:
    state: RowState
    existing: dict[str, Any] | None = None
    key_info: str = ""


class ReconciliationEngine:
    """Computes the mutations that bring the target table in line with a sheet.

    ``existing`` is the table snapshot taken at the start of the import and is
    never modified. Raises PreconditionError when no key is configured or a key
    column does not exist in the table.
    """

    def __init__(
        self,
        table_id: str,
        existing: TableData,
        column_types: dict[str, ColumnType],
        rules: RuleSet,
        coercer: ValueCoercer,
    ) -> None:
        self.table_id = table_id
        self._types = column_types
        self._rules = rules
        self._coercer = coercer
        self._records = existing.records()

        store_columns = list(column_types) or existing.column_names
        for name in existing.column_names:
            if name not in store_columns:
                store_columns.append(name)
        self._store_columns = [c for c in store_columns if c not in HIDDEN_COLUMNS]

        self._by_norm: dict[str, str] = {}
        for name in self._store_columns:
            self._by_norm.setdefault(normalize_name(name), name)

        if not rules.has_keys:
            raise PreconditionError("no unique key column defined in the rules table")
        missing = [k for k in rules.key_columns if k not in self._by_norm]
        if missing:
            raise PreconditionError(f"unique key column(s) not found in {table_id}: {', '.join(missing)}")
        self._keys = [(k, self._cell(self._by_norm[k])) for k in rules.key_columns]

        # Policies that can write: column exists, not computed, not ignore
        self._policies: list[tuple[str, _Cell, Policy]] = []
        for norm, rule in rules.policies.items():
            store_column = self._by_norm.get(norm) or self._by_norm.get(normalize_name(rule.original))
            if store_column is None or self._is_formula(store_column):
                continue
            if rule.policy is Policy.IGNORE:
                continue
            self._policies.append((normalize_name(store_column), self._cell(store_column), rule.policy))

        self._duplicates = 0
        self._composite_index: dict[str, dict[str, Any]] = {}
        self._fallback_index: dict[str, dict[str, dict[str, Any]]] = {}
        self._build_indexes()

    # ---------------------------------------------------------- set up
    def _cell(self, store_column: str) -> _Cell:
        return _Cell(store_column, self._types.get(store_column))

    def _is_formula(self, store_column: str) -> bool:
        t = self._types.get(store_column)
        return t is not None and t.is_formula

    def _key_part(self, value: Any, cell: _Cell) -> str:
        return "" if _blank(value, cell) else key_text(value)

    def _build_indexes(self) -> None:
        if self._rules.key_mode is KeyMode.FALLBACK:
            for norm, cell in self._keys:
                index: dict[str, dict[str, Any]] = {}
                for rec in self._records:
                    part = self._key_part(rec.get(cell.store_column), cell)
                    if not part:
                        continue
                    if part in index:
                        self._duplicates += 1
                        continue
                    index[part] = rec
                self._fallback_index[norm] = index
        else:
            for rec in self._records:
                parts = [self._key_part(rec.get(cell.store_column), cell) for _, cell in self._keys]
                if not any(parts):
                    continue
                composite = KEY_SEPARATOR.join(parts)
                if composite in self._composite_index:
                    self._duplicates += 1
                    continue
                self._composite_index[composite] = rec
        if self._duplicates:
            logger.warning(
                f"{self._duplicates} row(s) of {self.table_id} share a key with an earlier row; first row wins"
            )

    # ------------------------------------------------------------- run
    def reconcile(
        self,
        header: Sequence[Any],
        rows: Sequence[Sequence[Any]],
        mapping: ColumnMapping,
        on_progress: ProgressCallback | None = None,
    ) -> ReconcileOutcome:
        outcome = ReconcileOutcome()
        positions = self._positions(header, mapping)

        mapped = mapping.mapped_store_columns
        unmapped = [c for c in self._store_columns if c not in mapped and not self._is_formula(c)]
        if unmapped:
            message = (
                f"{len(unmapped)} store column(s) without a spreadsheet match (left untouched): "
                f"{', '.join(unmapped)}"
            )
            outcome.unmapped_store_columns = unmapped
            outcome.warnings.append(message)
            outcome.resume.append(f"WARNING: {message}")
            logger.warning(message)
        if self._duplicates:
            outcome.warnings.append(f"{self._duplicates} existing row(s) with a duplicate key were not indexed")

        total = len(rows)
        for i, raw in enumerate(rows, start=1):
            if on_progress is not None:
                on_progress(i, total)
            row = self._parse_row(i, header, raw, positions)
            match = self._resolve_key(row)

            if match.state is RowState.NO_KEY:
                if row.has_any_data():
                    outcome.stats.keyless += 1
                else:
                    outcome.stats.empty_rows += 1
                continue

            if match.state is RowState.MATCHED:
                mutation = self._update_for(row, match.existing)
                if mutation is None:
                    outcome.stats.unchanged += 1
                    outcome.resume.append(f"Row {i}: IGNORE [{match.key_info}]")
                else:
                    outcome.stats.updated += 1
                    outcome.mutations.append(mutation)
                    outcome.resume.append(f"Row {i}: UPDATE [{match.key_info}]")
            else:
                outcome.stats.added += 1
                outcome.mutations.append(self._insert_for(row))
                outcome.resume.append(f"Row {i}: ADD [{match.key_info}]")

        if outcome.stats.empty_rows:
            outcome.resume.append(f"{outcome.stats.empty_rows} empty row(s) excluded")
        if outcome.stats.keyless:
            joiner = " / " if self._rules.key_mode is KeyMode.FALLBACK else " + "
            labels = joiner.join(cell.store_column for _, cell in self._keys)
            message = f"{outcome.stats.keyless} row(s) skipped: data present but key \"{labels}\" missing"
            outcome.resume.append(message)
            outcome.warnings.append(message)

        logger.debug(
            f"reconciled {total} row(s) against {self.table_id}: "
            f"{outcome.stats.added} add, {outcome.stats.updated} update, {outcome.stats.skipped} skip"
        )
        return outcome

    # ------------------------------------------------------- row steps
    def _positions(self, header: Sequence[Any], mapping: ColumnMapping) -> list[tuple[int, str]]:
        """(header index, normalized store column) for each usable mapped column."""
        positions: list[tuple[int, str]] = []
        seen: set[str] = set()
        for idx, name in enumerate(header):
            if name is None or not str(name).strip():
                continue
            store_column = mapping.columns.get(name)
            if store_column is None or self._is_formula(store_column):
                continue
            norm = normalize_name(store_column)
            # Two headers on one store column: the first one is used
            if norm in seen:
                continue
            seen.add(norm)
            positions.append((idx, norm))
        return positions

    def _parse_row(
        self, row_number: int, header: Sequence[Any], raw: Sequence[Any], positions: list[tuple[int, str]]
    ) -> RowData:
        def cell_at(idx: int) -> Any:
            return raw[idx] if idx < len(raw) else ""

        values: dict[str, Any] = {}
        for idx, norm in positions:
            store_column = self._by_norm[norm]
            values[norm] = self._coercer.coerce(cell_at(idx), self._types.get(store_column))
        raw_values = {
            str(name): cell_at(idx)
            for idx, name in enumerate(header)
            if name is not None and str(name).strip()
        }
        return RowData(row_number=row_number, values=values, raw_values=raw_values)

    def _resolve_key(self, row: RowData) -> _KeyMatch:
        parts = [self._key_part(row.values.get(norm), cell) for norm, cell in self._keys]
        if not any(parts):
            return _KeyMatch(RowState.NO_KEY)

        if self._rules.key_mode is KeyMode.FALLBACK:
            for (norm, cell), part in zip(self._keys, parts):
                if not part:
                    continue
                hit = self._fallback_index[norm].get(part)
                if hit is not None:
                    return _KeyMatch(RowState.MATCHED, hit, f"{cell.store_column}={part}")
            return _KeyMatch(RowState.UNMATCHED, key_info=" | ".join(p for p in parts if p))

        hit = self._composite_index.get(KEY_SEPARATOR.join(parts))
        key_info = " | ".join(parts)
        if hit is not None:
            return _KeyMatch(RowState.MATCHED, hit, key_info)
        return _KeyMatch(RowState.UNMATCHED, key_info=key_info)

    def _final_value(self, value: Any, cell: _Cell) -> Any:
        if cell.is_date:
            normalized = normalize_date(value)
            return normalized if normalized is not None else value
        return value

    def _update_for(self, row: RowData, existing: dict[str, Any]) -> Mutation | None:
        fields: dict[str, Any] = {}
        previous: dict[str, Any] = {}
        for norm, cell, policy in self._policies:
            if norm not in row.values:
                continue
            current = existing.get(cell.store_column)
            changed, value = POLICY_HANDLERS[policy](row.values[norm], current, cell)
            if not changed:
                continue
            fields[cell.store_column] = self._final_value(value, cell)
            previous[cell.store_column] = current
        if not fields:
            return None
        return Mutation.update(
            self.table_id, existing["id"], fields, previous=previous, row_number=row.row_number
        )

    def _insert_for(self, row: RowData) -> Mutation:
        fields = {}
        for norm, value in row.values.items():
            cell = self._cell(self._by_norm[norm])
            fields[cell.store_column] = self._final_value(value, cell)
        return Mutation.add(self.table_id, fields, row_number=row.row_number)
