# Shared pytest fixtures
from __future__ import annotations

import json
import tempfile
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

from sheet_reconcile.excel.reader import SheetGrid
from sheet_reconcile.logging.init import reset_logging
from sheet_reconcile.store.memory import MemoryStore

CONTACT_COLUMNS = {
    "Email": "Text",
    "Name": "Text",
    "City": "Text",
    "Tags": "Text",
    "Last_contact": "Date",
    "Company": "Ref:Companies",
    "Score": "Numeric",
    "Score_label": {"type": "Text", "formula": "str($Score)"},
}

RULE_ROWS = [
    {"col_name": "Email", "rule": "ignore", "is_key": True, "key_priority": 1},
    {"col_name": "Name", "rule": "overwrite", "is_key": False},
    {"col_name": "City", "rule": "fill_if_empty", "is_key": False},
    {"col_name": "Tags", "rule": "append_if_different", "is_key": False},
    {"col_name": "Last contact", "rule": "update_if_newer", "is_key": False},
    {"col_name": "Company", "rule": "overwrite", "is_key": False},
    {"col_name": "Score label", "rule": "overwrite", "is_key": False},
]


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture(autouse=True)
def _fresh_logging():
    # Handlers bind sys.stdout at creation; capsys swaps it per test
    reset_logging()
    yield
    reset_logging()


def add_rules(store: MemoryStore, rows: list[dict[str, Any]] | None = None) -> None:
    store.add_table(
        "RULES_CONFIG",
        {"col_name": "Text", "is_key": "Bool", "rule": "Text", "key_priority": "Int", "key_mode": "Text"},
        rows if rows is not None else RULE_ROWS,
    )


@pytest.fixture()
def contacts_store() -> MemoryStore:
    """Contacts table (two rows), Companies lookup and RULES_CONFIG keyed on Email."""
    store = MemoryStore()
    store.add_table("Companies", {"Name": "Text"}, [
        {"id": 1, "Name": "Acme"},
        {"id": 2, "Name": "Globex"},
    ])
    store.add_table("Contacts", CONTACT_COLUMNS, [
        {"id": 1, "Email": "alice@example.org", "Name": "Alice", "City": "", "Tags": "vip",
         "Last_contact": "2024-01-10", "Company": 1, "Score": 10},
        {"id": 2, "Email": "bob@example.org", "Name": "Bob", "City": "Lyon", "Tags": "",
         "Last_contact": None, "Company": 0, "Score": 20},
    ])
    add_rules(store)
    return store


def _grid(header: list[str], *rows: list[Any], name: str = "Sheet1") -> SheetGrid:
    return SheetGrid(name, list(header), [list(r) for r in rows])


def _write_excel(path: Path, sheets: dict[str, list[list[Any]]]) -> Path:
    """Write a real workbook; first row of each sheet is the header."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for sheet_name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=sheet_name, header=False, index=False)
    return path


@pytest.fixture()
def make_grid():
    return _grid


@pytest.fixture()
def write_excel():
    return _write_excel


@pytest.fixture()
def sample_config_yaml() -> str:
    return """target_table: Contacts
batch_size: 100
store:
  backend: json
  path: ./data/store.json
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "reconcile.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def store_snapshot(temp_workdir: Path, contacts_store: MemoryStore) -> Path:
    path = temp_workdir / "data" / "store.json"
    contacts_store.save(path)
    return path


@pytest.fixture()
def read_snapshot():
    def read(path: Path) -> dict[str, Any]:
        return json.loads(path.read_text(encoding="utf-8"))
    return read
