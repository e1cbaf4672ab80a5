from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from ..models.mutation import Mutation
from ..models.rules import ColumnRule, KeyMode, Policy, RuleSet
from ..store.base import TableStore
from .coercion import is_empty
from .names import clean_label, normalize_name

"""Rule configuration: per-column policies and unique-key columns.

Rules live as rows of a RULES_CONFIG table in the store:

    col_name      column label (any spelling; compared normalized)
    rule          one of the Policy values
    is_key        marks a unique-key column
    key_priority  fallback order, 1 = tried first; empty sorts last
    key_mode      "composite" or "fallback", global (read from any row)

Two historical shapes of rule maps (flat ``{column: rule}`` and enriched
``{normalized: {"rule", "original", "label"}}``) are accepted by
parse_rule_mapping and turned into the same RuleSet.
"""

__all__ = [
    "RULES_TABLE",
    "RULES_COLUMNS",
    "LOWEST_PRIORITY",
    "parse_rule_mapping",
    "order_key_columns",
    "build_rule_set",
    "rule_set_from_mapping",
    "RuleStore",
]

logger = logging.getLogger(__name__)

RULES_TABLE = "RULES_CONFIG"
RULES_COLUMNS: tuple[tuple[str, str], ...] = (
    ("col_name", "Text"),
    ("is_key", "Bool"),
    ("rule", "Text"),
    ("key_priority", "Int"),
    ("key_mode", "Text"),
)
LOWEST_PRIORITY = 999


def _priority(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return LOWEST_PRIORITY
    return number or LOWEST_PRIORITY


def order_key_columns(entries: Iterable[tuple[str, Any]]) -> list[str]:
    """Sort (normalized name, priority) pairs; missing or 0 priority goes last, order kept on ties."""
    ordered = sorted(entries, key=lambda e: _priority(e[1]))
    keys: list[str] = []
    for name, _ in ordered:
        if name and name not in keys:
            keys.append(name)
    return keys


def _rule(name: str, value: Any, original: str | None = None, label: str | None = None) -> ColumnRule | None:
    policy = Policy.parse(value)
    if policy is None:
        logger.warning(f"unknown rule '{value}' for column '{name}', column ignored")
        return None
    original = original or name
    return ColumnRule(policy=policy, original=original, label=label or clean_label(original))


def parse_rule_mapping(mapping: Mapping[str, Any]) -> dict[str, ColumnRule]:
    """Convert a flat or enriched rule map to normalized name -> ColumnRule."""
    rules: dict[str, ColumnRule] = {}
    for name, spec in mapping.items():
        if isinstance(spec, Mapping):
            value = spec.get("rule")
            original = spec.get("original")
            label = spec.get("label")
        else:
            value, original, label = spec, None, None
        if is_empty(name) or is_empty(value):
            continue
        rule = _rule(str(name), value, original, label)
        if rule is not None:
            rules[normalize_name(name)] = rule
    return rules


def rule_set_from_mapping(
    mapping: Mapping[str, Any],
    key_columns: Sequence[str] = (),
    key_mode: Any = None,
) -> RuleSet:
    keys = order_key_columns((normalize_name(k), i + 1) for i, k in enumerate(key_columns))
    return RuleSet(
        policies=parse_rule_mapping(mapping),
        key_columns=keys,
        key_mode=KeyMode.parse(key_mode),
    )


def build_rule_set(records: Iterable[Mapping[str, Any]]) -> RuleSet:
    """Build the RuleSet from RULES_CONFIG records.

    Records without a column name or a rule are skipped. An unknown rule drops
    the policy but keeps the key flag.
    """
    policies: dict[str, ColumnRule] = {}
    keyed: list[tuple[str, Any]] = []
    key_mode: KeyMode | None = None

    for record in records:
        raw_name = record.get("col_name")
        value = record.get("rule")
        if is_empty(raw_name) or is_empty(value):
            continue
        normalized = normalize_name(raw_name)
        if record.get("is_key"):
            keyed.append((normalized, record.get("key_priority")))
        if not is_empty(record.get("key_mode")):
            key_mode = KeyMode.parse(record["key_mode"])
        rule = _rule(str(raw_name), value)
        if rule is not None:
            policies[normalized] = rule

    keys = order_key_columns(keyed)
    if not keys:
        logger.warning("no unique key column defined in the rules table")
    return RuleSet(policies=policies, key_columns=keys, key_mode=key_mode or KeyMode.COMPOSITE)


class RuleStore:
    """Reads and maintains the rules table of a store."""

    def __init__(self, store: TableStore, table_id: str = RULES_TABLE) -> None:
        self._store = store
        self.table_id = table_id

    def load_rules(self) -> RuleSet:
        data = self._store.fetch_table(self.table_id)
        return build_rule_set(data.records())

    def ensure_rules_table(self, target_columns: Sequence[str]) -> bool:
        """Make sure the rules table exists and has the current columns.

        A missing table is created with one "ignore" row per target column, the
        first one marked as key. Returns False when there is nothing to create
        it from.
        """
        if self.table_id in self._store.list_tables():
            self._migrate()
            return True

        columns = [c for c in target_columns if c not in ("id", "manualSort")]
        if not columns:
            logger.warning(f"{self.table_id} missing and no target columns to create it from")
            return False

        self._store.create_table(self.table_id, RULES_COLUMNS)
        self._store.apply_mutations([
            Mutation.add(self.table_id, {"col_name": col, "is_key": i == 0, "rule": Policy.IGNORE.value})
            for i, col in enumerate(columns)
        ])
        logger.info(f"created {self.table_id} with {len(columns)} column(s)")
        return True

    def _migrate(self) -> None:
        data = self._store.fetch_table(self.table_id)
        missing = [(name, kind) for name, kind in RULES_COLUMNS if name not in data.columns]
        for name, kind in missing:
            logger.warning(f"{self.table_id}: adding missing column {name}")
            self._store.add_column(self.table_id, name, kind)

        # Legacy tables without is_key: first row becomes the key
        if any(name == "is_key" for name, _ in missing) and len(data):
            self._store.apply_mutations([
                Mutation.update(self.table_id, row_id, {"is_key": i == 0})
                for i, row_id in enumerate(data.ids)
            ])

    def save_rule(self, column: str, policy: Policy | str) -> None:
        """Set the rule of one column, adding a row when the column has none."""
        parsed = Policy.parse(policy)
        if parsed is None:
            raise ValueError(f"unknown rule: {policy}")
        target = normalize_name(column)
        data = self._store.fetch_table(self.table_id)
        for record in data.records():
            if normalize_name(record.get("col_name")) == target:
                self._store.apply_mutations([
                    Mutation.update(self.table_id, record["id"], {"rule": parsed.value})
                ])
                return
        self._store.apply_mutations([
            Mutation.add(self.table_id, {"col_name": column, "is_key": False, "rule": parsed.value})
        ])

    def set_keys(self, columns: Sequence[str], key_mode: KeyMode | str | None = None) -> None:
        """Mark exactly ``columns`` as keys, in that priority order."""
        wanted = [normalize_name(c) for c in columns]
        mode = KeyMode.parse(key_mode).value if key_mode is not None else None
        data = self._store.fetch_table(self.table_id)
        mutations = []
        for record in data.records():
            normalized = normalize_name(record.get("col_name"))
            fields: dict[str, Any] = {
                "is_key": normalized in wanted,
                "key_priority": wanted.index(normalized) + 1 if normalized in wanted else None,
            }
            if mode is not None:
                fields["key_mode"] = mode
            mutations.append(Mutation.update(self.table_id, record["id"], fields))
        if mutations:
            self._store.apply_mutations(mutations)
