from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from ..db.batch_apply import BatchFailure
from ..models.error_record import ErrorRecord

"""Error log buffering.

One JSON Lines file per run, ``logs/errors-YYYYMMDD-HHMMSS.log`` (UTC), created
on the first flush that has something to write. The record schema is fixed
(see ErrorRecord); no extra keys.
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
    "STORE_BATCH_FAILED",
    "SHEET_FAILED",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"

STORE_BATCH_FAILED = "STORE_BATCH_FAILED"
SHEET_FAILED = "SHEET_FAILED"


class ErrorLogBuffer:
    """In-memory buffer for error records; flush appends them as JSON Lines."""

    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self._logs_dir = logs_dir or LOGS_DIR

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def add_batch_failure(self, file: str, sheet: str, failure: BatchFailure) -> None:
        self.append(ErrorRecord.create(
            file=file,
            sheet=sheet,
            first_row=failure.first,
            last_row=failure.last,
            error_type=STORE_BATCH_FAILED,
            message=failure.message,
        ))

    def add_sheet_failure(self, file: str, sheet: str, message: str) -> None:
        self.append(ErrorRecord.create(file, sheet, -1, -1, SHEET_FAILED, message))

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Write buffered records; returns the file path, or None when there was nothing to write."""
        if not self._records:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
