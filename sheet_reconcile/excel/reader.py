from __future__ import annotations

import zipfile
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

"""Spreadsheet reader.

Each sheet becomes a rectangular grid: first row is the header, columns with a
blank header are dropped, missing cells are "" and values are plain Python
objects (numpy scalars unwrapped, pandas timestamps as datetime, integral
floats as int). Rows are kept as they are, blank ones included; the engine
decides what an empty row is.
"""

__all__ = [
    "SheetReadError",
    "SheetGrid",
    "read_workbook",
    "sheet_to_grid",
    "load_workbook_grids",
]

EXCEL_SUFFIXES = {".xlsx", ".xlsm"}
CSV_SUFFIXES = {".csv"}


class SheetReadError(Exception):
    """Raised when a file cannot be read as a workbook."""


@dataclass
class SheetGrid:
    sheet_name: str
    header: list[str] = field(default_factory=list)
    rows: list[list[Any]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.header or not self.rows


def read_workbook(path: Path, target_sheets: Iterable[str] | None = None) -> dict[str, pd.DataFrame]:
    """Read every sheet headerless, keyed by sheet name.

    CSV files are read as a single sheet named after the file stem.
    """
    if not path.exists():
        raise SheetReadError(f"file not found: {path}")
    suffix = path.suffix.lower()
    wanted = set(target_sheets) if target_sheets is not None else None
    try:
        if suffix in CSV_SUFFIXES:
            df = pd.read_csv(path, header=None, dtype=str, keep_default_na=False)
            return {path.stem: df}
        if suffix not in EXCEL_SUFFIXES:
            raise SheetReadError(f"unsupported file type: {path.suffix}")
        dfs: dict[str, pd.DataFrame] = {}
        with pd.ExcelFile(path, engine="openpyxl") as xls:
            for name in xls.sheet_names:
                if wanted is not None and str(name) not in wanted:
                    continue
                dfs[str(name)] = xls.parse(name, header=None)
        return dfs
    except pd.errors.EmptyDataError:
        return {path.stem: pd.DataFrame()}
    except (OSError, ValueError, zipfile.BadZipFile) as e:
        raise SheetReadError(f"cannot read {path.name}: {e}") from e


def _cell(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return "" if value is None else value
    if pd.isna(value):
        return ""
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def sheet_to_grid(df: pd.DataFrame, sheet_name: str) -> SheetGrid:
    if df.shape[0] == 0:
        return SheetGrid(sheet_name)
    raw_header = [_cell(v) for v in df.iloc[0].tolist()]
    keep = [i for i, h in enumerate(raw_header) if str(h).strip()]
    header = [str(raw_header[i]).strip() for i in keep]

    rows: list[list[Any]] = []
    for raw in df.iloc[1:].itertuples(index=False, name=None):
        values = [_cell(raw[i]) if i < len(raw) else "" for i in keep]
        rows.append(values)
    return SheetGrid(sheet_name, header, rows)


def load_workbook_grids(path: Path, target_sheets: Iterable[str] | None = None) -> list[SheetGrid]:
    return [sheet_to_grid(df, name) for name, df in read_workbook(path, target_sheets).items()]
