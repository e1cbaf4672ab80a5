from __future__ import annotations

import logging

from ..models.import_log import ImportLogEntry
from ..models.mutation import Mutation, RollbackRecord
from ..store.base import StoreError, TableStore

"""IMPORT_LOG audit table.

The table and any missing columns are created on first write. Writing is
best-effort: a failure is logged and never changes the import outcome.
"""

__all__ = [
    "LOG_TABLE",
    "LOG_COLUMNS",
    "ImportLog",
]

logger = logging.getLogger(__name__)

LOG_TABLE = "IMPORT_LOG"
LOG_COLUMNS: tuple[tuple[str, str], ...] = (
    ("timestamp", "Text"),
    ("file_name", "Text"),
    ("sheet_name", "Text"),
    ("rows_added", "Int"),
    ("rows_updated", "Int"),
    ("rows_skipped", "Int"),
    ("rows_errors", "Int"),
    ("dry_run", "Bool"),
    ("rollback_data", "Text"),
    ("session_id", "Text"),
    ("rolled_back", "Bool"),
)


class ImportLog:
    def __init__(self, store: TableStore, table_id: str = LOG_TABLE) -> None:
        self._store = store
        self.table_id = table_id

    def ensure_table(self) -> None:
        if self.table_id not in self._store.list_tables():
            self._store.create_table(self.table_id, LOG_COLUMNS)
            logger.info(f"created {self.table_id}")
            return
        present = self._store.fetch_table(self.table_id).columns
        for name, kind in LOG_COLUMNS:
            if name not in present:
                self._store.add_column(self.table_id, name, kind)
                logger.info(f"{self.table_id}: added column {name}")

    def write(self, entry: ImportLogEntry) -> int | None:
        """Append an entry; returns its row id, or None when it could not be written."""
        try:
            self.ensure_table()
            returned = self._store.apply_mutations([Mutation.add(self.table_id, entry.to_fields())])
        except StoreError as e:
            logger.warning(f"could not write {self.table_id} entry: {e}")
            return None
        return returned[0] if returned else None

    def find_latest_rollback(self, session_id: str) -> RollbackRecord | None:
        """Newest entry of the session that can still be undone, scanned newest-first."""
        try:
            data = self._store.fetch_table(self.table_id)
        except StoreError as e:
            logger.debug(f"{self.table_id} unreadable: {e}")
            return None

        for record in reversed(data.records()):
            if record.get("session_id") != session_id:
                continue
            if record.get("dry_run") or record.get("rolled_back"):
                continue
            payload = record.get("rollback_data")
            if not payload:
                continue
            try:
                return RollbackRecord.from_json(payload, log_row_id=record["id"])
            except ValueError as e:
                logger.warning(f"corrupt rollback data in {self.table_id} row {record['id']}, skipped: {e}")
        return None

    def mark_rolled_back(self, log_row_id: int) -> bool:
        try:
            self._store.apply_mutations([
                Mutation.update(self.table_id, log_row_id, {"rolled_back": True, "rollback_data": ""})
            ])
        except StoreError as e:
            logger.warning(f"could not mark {self.table_id} row {log_row_id} as rolled back: {e}")
            return False
        return True
