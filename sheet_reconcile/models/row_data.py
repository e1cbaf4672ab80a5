from __future__ import annotations

from dataclasses import dataclass
from typing import Any

"""RowData model for spreadsheet -> table reconciliation.

RowData represents a single spreadsheet row after projection through the
column mapping, formula-column removal and date/reference coercion.
"""

__all__ = [
    "RowData",
]


@dataclass(frozen=True)
class RowData:
    """Normalized incoming row.

    ``values`` is keyed by the normalized name of the target store column.
    The row_number is the 1-based position of the row among the data rows
    (the header row is not counted).
    """
    row_number: int
    values: dict[str, Any]  # normalized store column -> coerced value
    raw_values: dict[str, Any] | None = None  # incoming column -> raw cell, for reporting

    def has_any_data(self) -> bool:
        """True when at least one raw cell of the row carries something."""
        source = self.raw_values if self.raw_values is not None else self.values
        for value in source.values():
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            return True
        return False
