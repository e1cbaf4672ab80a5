from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""Rule models for spreadsheet -> table reconciliation.

A RuleSet is the canonical, already-normalized shape of the rules table: one
ColumnRule per normalized column name, the ordered unique-key columns and the
global key mode. Both historical rule-row shapes are converted to this shape
at the ingestion boundary (services/rules.py) and nothing deeper in the engine
sees the raw rows.
"""

__all__ = [
    "Policy",
    "KeyMode",
    "ColumnRule",
    "RuleSet",
]


class Policy(Enum):
    """Per-column conflict resolution policy.

    - IGNORE: never touch the stored value
    - OVERWRITE: replace when the incoming value is non-empty and different
    - UPDATE_IF_NEWER: replace when the incoming date is strictly later
    - FILL_IF_EMPTY: replace only an empty stored value
    - PRESERVE_IF_NOT_EMPTY: same behavior as FILL_IF_EMPTY (kept as a distinct label)
    - APPEND_IF_DIFFERENT: append the incoming value after " | "
    """
    IGNORE = "ignore"
    OVERWRITE = "overwrite"
    UPDATE_IF_NEWER = "update_if_newer"
    FILL_IF_EMPTY = "fill_if_empty"
    PRESERVE_IF_NOT_EMPTY = "preserve_if_not_empty"
    APPEND_IF_DIFFERENT = "append_if_different"

    @classmethod
    def parse(cls, value: Any) -> Policy | None:
        """Return the policy named by ``value`` or None when it is not a known policy."""
        if isinstance(value, Policy):
            return value
        if value is None:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class KeyMode(Enum):
    """How multiple unique-key columns are combined.

    COMPOSITE: all key columns form one compound key.
    FALLBACK: key columns are tried one by one in priority order.
    """
    COMPOSITE = "composite"
    FALLBACK = "fallback"

    @classmethod
    def parse(cls, value: Any, default: KeyMode | None = None) -> KeyMode:
        if isinstance(value, KeyMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return default or cls.COMPOSITE


@dataclass(frozen=True)
class ColumnRule:
    policy: Policy
    original: str  # column name as written in the rules table
    label: str  # display label (whitespace collapsed)


@dataclass(frozen=True)
class RuleSet:
    """Canonical rule configuration for one import."""
    policies: dict[str, ColumnRule] = field(default_factory=dict)  # normalized name -> rule
    key_columns: list[str] = field(default_factory=list)  # normalized names, priority order
    key_mode: KeyMode = KeyMode.COMPOSITE

    @property
    def has_keys(self) -> bool:
        return bool(self.key_columns)

    def policy_for(self, normalized_name: str) -> Policy:
        rule = self.policies.get(normalized_name)
        return rule.policy if rule is not None else Policy.IGNORE
