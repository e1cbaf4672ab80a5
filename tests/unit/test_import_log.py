from __future__ import annotations

from sheet_reconcile.models.import_log import ImportLogEntry
from sheet_reconcile.models.mutation import RollbackRecord
from sheet_reconcile.services.import_log import LOG_COLUMNS, ImportLog
from sheet_reconcile.store.base import StoreError
from sheet_reconcile.store.memory import MemoryStore


def _entry(session_id: str = "s1", payload: str = "", **overrides) -> ImportLogEntry:
    values = dict(
        timestamp="2024-01-01T00:00:00Z", file_name="f.xlsx", sheet_name="S", rows_added=1,
        rows_updated=0, rows_skipped=0, rows_errors=0, dry_run=False,
        rollback_data=payload, session_id=session_id,
    )
    values.update(overrides)
    return ImportLogEntry(**values)


def test_write_creates_table():
    store = MemoryStore()
    row_id = ImportLog(store).write(_entry())
    assert row_id == 1
    assert set(store.fetch_table("IMPORT_LOG").column_names) == {name for name, _ in LOG_COLUMNS}


def test_missing_columns_are_added():
    store = MemoryStore()
    store.add_table("IMPORT_LOG", {"timestamp": "Text", "file_name": "Text"})
    ImportLog(store).write(_entry())
    assert "rolled_back" in store.fetch_table("IMPORT_LOG").columns


def test_write_failure_is_not_fatal(caplog):
    class BrokenStore(MemoryStore):
        def apply_mutations(self, mutations):
            raise StoreError("read only")

    assert ImportLog(BrokenStore()).write(_entry()) is None
    assert "could not write IMPORT_LOG entry" in caplog.text


def test_find_latest_rollback_newest_first_and_filtered(caplog):
    store = MemoryStore()
    log = ImportLog(store)
    old = RollbackRecord("Contacts", added=[1]).to_json()
    new = RollbackRecord("Contacts", added=[2]).to_json()
    log.write(_entry(payload=old))
    log.write(_entry(payload=new))
    log.write(_entry(payload=RollbackRecord("Contacts", added=[3]).to_json(), dry_run=True))
    log.write(_entry(session_id="s2", payload=RollbackRecord("Contacts", added=[4]).to_json()))
    log.write(_entry(payload="{broken"))

    record = log.find_latest_rollback("s1")
    assert record.added == [2]
    assert record.log_row_id == 2
    assert "corrupt rollback data" in caplog.text

    assert log.mark_rolled_back(2) is True
    assert log.find_latest_rollback("s1").added == [1]
    assert log.find_latest_rollback("unknown") is None


def test_find_latest_rollback_without_table():
    assert ImportLog(MemoryStore()).find_latest_rollback("s1") is None


def test_mark_rolled_back_unknown_row():
    store = MemoryStore()
    log = ImportLog(store)
    log.ensure_table()
    assert log.mark_rolled_back(99) is False
