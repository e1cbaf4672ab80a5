from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from .import_result import ImportResult

"""ImportLogEntry model: one audit row of the IMPORT_LOG table."""

__all__ = [
    "ImportLogEntry",
]


@dataclass(frozen=True)
class ImportLogEntry:
    timestamp: str  # ISO8601 UTC
    file_name: str
    sheet_name: str
    rows_added: int
    rows_updated: int
    rows_skipped: int
    rows_errors: int
    dry_run: bool
    rollback_data: str  # serialized RollbackRecord, "" when nothing to undo
    session_id: str
    rolled_back: bool = False

    @classmethod
    def from_result(
        cls, result: ImportResult, session_id: str, *, include_rollback: bool = True
    ) -> ImportLogEntry:
        rollback = result.rollback if include_rollback else None
        payload = rollback.to_json() if rollback is not None and not rollback.is_empty else ""
        return cls(
            timestamp=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            file_name=result.file_name or "unknown",
            sheet_name=result.sheet_name or "unknown",
            rows_added=result.stats.added,
            rows_updated=result.stats.updated,
            rows_skipped=result.stats.skipped,
            rows_errors=result.stats.errors,
            dry_run=result.dry_run,
            rollback_data=payload,
            session_id=session_id,
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "file_name": self.file_name,
            "sheet_name": self.sheet_name,
            "rows_added": self.rows_added,
            "rows_updated": self.rows_updated,
            "rows_skipped": self.rows_skipped,
            "rows_errors": self.rows_errors,
            "dry_run": self.dry_run,
            "rollback_data": self.rollback_data,
            "session_id": self.session_id,
            "rolled_back": self.rolled_back,
        }
