from __future__ import annotations

import pytest

from sheet_reconcile.models.config_models import ReconcileConfig, StoreConfig
from sheet_reconcile.models.rules import KeyMode, Policy
from sheet_reconcile.services.importer import ImportService
from sheet_reconcile.services.reconciler import PreconditionError
from sheet_reconcile.services.session import ImportSession
from sheet_reconcile.store.memory import MemoryStore

HEADER = ["Email", "Name", "City"]


def _service(store: MemoryStore, **kwargs) -> ImportService:
    return ImportService(ImportSession(store, "Contacts", session_id="s1"), **kwargs)


def test_from_config_inline_rules_override_table(contacts_store: MemoryStore):
    cfg = ReconcileConfig(
        target_table="Contacts",
        store=StoreConfig(backend="json", path="x.json"),
        batch_size=7,
        rules={"City": "overwrite"},
        key_columns=["Name"],
        key_mode="fallback",
    )
    service = ImportService.from_config(cfg, contacts_store, session_id="abc")
    assert service.session.session_id == "abc"
    assert service.batch_size == 7
    rules = service.load_rules()
    assert rules.key_columns == ["name"]
    assert rules.key_mode is KeyMode.FALLBACK
    assert rules.policy_for("city") is Policy.OVERWRITE
    # Inline rules never touch the rules table
    assert service.ensure_rules() is True


def test_key_columns_alone_override_table_keys(contacts_store: MemoryStore):
    rules = _service(contacts_store, key_columns=["Name", "Email"], key_mode="fallback").load_rules()
    assert rules.key_columns == ["name", "email"]
    assert rules.key_mode is KeyMode.FALLBACK
    assert rules.policy_for("tags") is Policy.APPEND_IF_DIFFERENT


def test_unreadable_rules_table_is_a_precondition_failure():
    store = MemoryStore()
    store.add_table("Contacts", ["Email"])
    with pytest.raises(PreconditionError, match="RULES_CONFIG"):
        _service(store).load_rules()


def test_ensure_rules_creates_table_from_target_columns():
    store = MemoryStore()
    store.add_table("Contacts", ["Email", "Name"])
    assert _service(store).ensure_rules() is True
    assert [r["col_name"] for r in store.records("RULES_CONFIG")] == ["Email", "Name"]


def test_validate_ok_with_warnings(contacts_store: MemoryStore, make_grid):
    grid = make_grid(
        ["Email", "Last contact", "Score", "Score label", "Notes"],
        ["a@x.org", "someday", "high", "x", "n"],
        ["b@x.org", 45000, 3, "x", "n"],
    )
    report = _service(contacts_store).validate(grid)
    assert report.valid
    assert report.errors == []
    text = "\n".join(report.warnings)
    assert "1 formula column(s) excluded from the import: Score_label" in text
    assert "1 date value(s) in an unrecognized format" in text
    assert "1 non-numeric value(s) in numeric columns" in text
    assert "1 column(s) without a match: Notes" in text


def test_validate_errors(contacts_store: MemoryStore, make_grid):
    service = _service(contacts_store)
    assert not service.validate(make_grid(["Email"])).valid
    no_match = service.validate(make_grid(["Foo", "Bar"], ["1", "2"]))
    assert no_match.errors == ["no spreadsheet column matches a column of Contacts"]
    no_key = service.validate(make_grid(["Name"], ["Alice"]))
    assert not no_key.valid
    assert "key column(s) not present in the spreadsheet: email" in no_key.errors


def test_import_sheet_preconditions(contacts_store: MemoryStore, make_grid):
    service = _service(contacts_store)
    with pytest.raises(PreconditionError, match="empty"):
        service.import_sheet(make_grid(HEADER), "f.xlsx")
    with pytest.raises(PreconditionError, match="no spreadsheet column"):
        service.import_sheet(make_grid(["Foo"], ["x"]), "f.xlsx")

    service.session.import_in_progress = True
    with pytest.raises(PreconditionError, match="already running"):
        service.import_sheet(make_grid(HEADER, ["a@x.org", "A", ""]), "f.xlsx")

    missing = _service(contacts_store)
    missing.table_id = "Nope"
    with pytest.raises(PreconditionError, match="cannot read target table"):
        missing.import_sheet(make_grid(HEADER, ["a@x.org", "A", ""]), "f.xlsx")
    assert contacts_store.apply_calls == 0


def test_import_without_keys_writes_nothing(contacts_store: MemoryStore, make_grid):
    service = _service(contacts_store)
    service.rule_store.table_id = "NO_KEYS"
    contacts_store.add_table("NO_KEYS", ["col_name", "rule"], [{"id": 1, "col_name": "Name", "rule": "overwrite"}])
    with pytest.raises(PreconditionError, match="no unique key"):
        service.import_sheet(make_grid(HEADER, ["a@x.org", "A", ""]), "f.xlsx")
    assert contacts_store.apply_calls == 0


def test_dry_run_writes_nothing_and_records_no_rollback(contacts_store: MemoryStore, make_grid):
    service = _service(contacts_store)
    before = contacts_store.records("Contacts")
    result = service.import_sheet(
        make_grid(HEADER, ["alice@example.org", "Alicia", ""], ["new@example.org", "New", "Nice"]),
        "f.xlsx",
        dry_run=True,
    )
    assert (result.stats.added, result.stats.updated) == (1, 1)
    assert result.dry_run and result.rollback is None
    assert contacts_store.records("Contacts") == before
    assert contacts_store.apply_calls == 0
    assert "IMPORT_LOG" not in contacts_store.list_tables()
    assert service.session.last_rollback is None
