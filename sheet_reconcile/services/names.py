from __future__ import annotations

import re
import unicodedata
from typing import Any

"""Column name canonicalization.

normalize_name is the comparison key shared by spreadsheet headers, store
column ids and rule labels. clean_label is for display only; the two are
never interchangeable.
"""

__all__ = [
    "normalize_name",
    "clean_label",
]

_SEPARATORS = re.compile(r"[\s_\-]+")
_NON_ALNUM = re.compile(r"[^a-z0-9]")
_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: Any) -> str:
    """Lower-case, strip accents, drop separators and any other non [a-z0-9].

    Total (None gives "") and idempotent.
    """
    if name is None:
        return ""
    text = unicodedata.normalize("NFD", str(name).lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = _SEPARATORS.sub("", text)
    return _NON_ALNUM.sub("", text)


def clean_label(name: Any) -> str:
    if name is None:
        return ""
    return _WHITESPACE.sub(" ", str(name)).strip()
