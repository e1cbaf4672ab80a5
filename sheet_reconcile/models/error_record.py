from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for batch failure logging.

This module defines the ErrorRecord dataclass written as JSON Lines by
ErrorLogBuffer. One record is produced per failed mutation batch. Row bounds
are positions in the mutation list (1-based, inclusive); -1 is used when the
failure is not tied to a batch (e.g. an unreadable sheet).
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: Spreadsheet filename being imported
        sheet: Sheet name within the file
        first_row: First mutation of the failed batch (1-based), -1 if unknown
        last_row: Last mutation of the failed batch (1-based), -1 if unknown
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Store error message or description
    """
    timestamp: str
    file: str
    sheet: str
    first_row: int
    last_row: int
    error_type: str
    message: str

    @staticmethod
    def create(
        file: str, sheet: str, first_row: int, last_row: int, error_type: str, message: str
    ) -> ErrorRecord:
        """Create a new ErrorRecord with current UTC timestamp."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            sheet=sheet,
            first_row=first_row,
            last_row=last_row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        """Serialize ErrorRecord to JSON Lines format (no extra keys)."""
        return json.dumps(asdict(self), ensure_ascii=False)
