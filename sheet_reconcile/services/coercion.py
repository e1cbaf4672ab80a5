from __future__ import annotations

import logging
import math
import re
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from ..models.schema import ColumnType
from ..store.base import StoreError, TableStore

"""Value coercion: dates, references and the engine's equality rule.

Spreadsheet serial 1 is 1900-01-01. Serial 60 is the historic 1900-02-29 slot,
which rolls over to 1900-03-01; serials above 60 are offset from 1899-12-30.
"""

__all__ = [
    "SERIAL_MIN",
    "SERIAL_MAX",
    "EMPTY_REFERENCE",
    "is_empty",
    "is_number",
    "normalize_date",
    "are_equal",
    "key_text",
    "ValueCoercer",
]

logger = logging.getLogger(__name__)

SERIAL_MIN = 1
SERIAL_MAX = 2958465  # 9999-12-31
EMPTY_REFERENCE = 0

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_DMY_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def is_empty(value: Any) -> bool:
    """None, NaN and blank strings are empty; 0 and False are not."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _serial_to_date(serial: float) -> date | None:
    if not math.isfinite(serial) or serial < SERIAL_MIN or serial > SERIAL_MAX:
        return None
    day = int(serial)  # time of day dropped
    if day <= 60:
        return date(1899, 12, 31) + timedelta(days=day)
    return date(1899, 12, 30) + timedelta(days=day)


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def normalize_date(value: Any) -> str | None:
    """Return ``YYYY-MM-DD`` or None. Never raises.

    Accepts serial day numbers in [SERIAL_MIN, SERIAL_MAX], ``YYYY-MM-DD`` and
    ``D/M/YYYY`` strings naming a real calendar day, and date/datetime objects.
    None means "could not parse"; callers keep the original value.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if is_number(value):
        parsed = _serial_to_date(float(value))
        return parsed.isoformat() if parsed else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    m = _ISO_DATE.match(text)
    if m:
        parsed = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        return parsed.isoformat() if parsed else None
    m = _DMY_DATE.match(text)
    if m:
        parsed = _safe_date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
        return parsed.isoformat() if parsed else None
    return None


def _to_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def are_equal(a: Any, b: Any) -> bool:
    """Equality used to decide whether a cell changed.

    Dates win over numbers so "2024-01-01" and its serial compare equal. Two
    numbers in the serial range are compared as calendar days too, so 10 and
    10.5 are equal.
    """
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    da, db = normalize_date(a), normalize_date(b)
    if da is not None and db is not None:
        return da == db
    if is_number(a) or is_number(b):
        fa, fb = _to_float(a), _to_float(b)
        return fa is not None and fb is not None and fa == fb
    return str(a).strip() == str(b).strip()


def key_text(value: Any) -> str:
    """Trimmed string form used to build key indexes."""
    if is_empty(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (date, datetime)):
        return normalize_date(value) or ""
    return str(value).strip()


class ValueCoercer:
    """Coerces incoming cells to the target column kind.

    Reference lookups are built once per target table and kept for the life of
    the coercer (one import session); clear_cache drops them.
    """

    def __init__(self, store: TableStore) -> None:
        self._store = store
        self._lookups: dict[str, dict[str, int]] = {}

    def resolve_reference(self, value: Any, target_table: str) -> Any:
        if is_number(value):
            return value
        if is_empty(value):
            return EMPTY_REFERENCE
        lookup = self._lookup(target_table)
        return lookup.get(str(value).strip().lower(), EMPTY_REFERENCE)

    def clear_cache(self, table: str | None = None) -> None:
        if table is None:
            self._lookups.clear()
        else:
            self._lookups.pop(table, None)

    def coerce(self, value: Any, column_type: ColumnType | None) -> Any:
        if column_type is None:
            return value
        if column_type.is_reference:
            return self.resolve_reference(value, column_type.ref_table)
        if column_type.is_date:
            normalized = normalize_date(value)
            return normalized if normalized is not None else value
        return value

    def _lookup(self, table_id: str) -> dict[str, int]:
        if table_id in self._lookups:
            return self._lookups[table_id]
        lookup: dict[str, int] = {}
        try:
            data = self._store.fetch_table(table_id)
        except StoreError as e:
            logger.warning(f"reference table {table_id} unreadable, values resolve to empty: {e}")
        else:
            names = data.column_names
            if names:
                for row_id, value in zip(data.ids, data.columns[names[0]]):
                    if not is_empty(value):
                        lookup[str(value).strip().lower()] = row_id
        self._lookups[table_id] = lookup
        logger.debug(f"reference lookup for {table_id}: {len(lookup)} entries")
        return lookup
