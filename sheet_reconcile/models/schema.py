from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

"""Column type models for the target table.

ColumnMeta is what a store adapter reports natively (declared type string,
formula flag and body). ColumnType is the semantic view the engine works with.

Declared type strings use the vocabulary: Text, Numeric, Int, Date, DateTime,
Bool, Choice, ChoiceList, Ref:<table>, RefList:<table>, Any.
"""

__all__ = [
    "ColumnKind",
    "ColumnMeta",
    "ColumnType",
]

REF_PREFIXES = ("Ref:", "RefList:")


class ColumnKind(Enum):
    TEXT = "Text"
    NUMERIC = "Numeric"
    DATE = "Date"
    BOOL = "Bool"
    CHOICE = "Choice"
    REFERENCE = "Reference"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class ColumnMeta:
    """Store-native metadata for one column."""
    declared_type: str = "Any"
    is_formula: bool = False
    formula: str = ""

    @property
    def ref_table(self) -> str | None:
        for prefix in REF_PREFIXES:
            if self.declared_type.startswith(prefix):
                return self.declared_type[len(prefix):] or None
        return None


@dataclass(frozen=True)
class ColumnType:
    kind: ColumnKind
    ref_table: str | None = None  # target table for REFERENCE columns
    is_formula: bool = False  # computed by the store, never written
    declared_type: str | None = None

    @property
    def is_date(self) -> bool:
        return self.kind is ColumnKind.DATE

    @property
    def is_reference(self) -> bool:
        return self.kind is ColumnKind.REFERENCE and self.ref_table is not None
