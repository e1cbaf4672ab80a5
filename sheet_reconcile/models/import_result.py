from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from datetime import datetime

from .mutation import RollbackRecord

"""Import result models for spreadsheet -> table reconciliation.

This module defines the models used to aggregate reconciliation counts, batch
timing metrics and the outcome of an import or a rollback.
"""

__all__ = [
    "ImportStats",
    "ImportResult",
    "RollbackResult",
    "ValidationReport",
    "BatchStatsAccumulator",
    "WorkbookResult",
]


@dataclass
class ImportStats:
    """Row counters for one import.

    ``skipped`` is derived: matched rows that needed no change plus rows that
    carry data but no key. Fully empty rows are counted apart and never shown
    as skipped.
    """
    added: int = 0
    updated: int = 0
    unchanged: int = 0  # matched, nothing to change
    keyless: int = 0  # data present, every key field empty
    empty_rows: int = 0  # no data at all (usually trailing blank lines)
    errors: int = 0  # mutations in failed batches

    @property
    def skipped(self) -> int:
        return self.unchanged + self.keyless

    def merge(self, other: ImportStats) -> None:
        self.added += other.added
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.keyless += other.keyless
        self.empty_rows += other.empty_rows
        self.errors += other.errors

    def as_dict(self) -> dict[str, int]:
        return {
            "added": self.added,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "unchanged": self.unchanged,
            "keyless": self.keyless,
            "empty_rows": self.empty_rows,
        }


@dataclass(frozen=True)
class ImportResult:
    """Outcome of one import (single sheet or merged workbook)."""
    table_id: str
    file_name: str
    sheet_name: str
    stats: ImportStats
    dry_run: bool
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    resume: list[str] = field(default_factory=list)  # human readable per-row report
    warnings: list[str] = field(default_factory=list)
    rollback: RollbackRecord | None = None  # None for dry runs
    # Batch timing statistics
    total_batches: int = 0
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0


@dataclass(frozen=True)
class RollbackResult:
    message: str
    deleted_count: int = 0
    restored_count: int = 0
    errors: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def action_count(self) -> int:
        return self.deleted_count + self.restored_count

    @classmethod
    def nothing_to_undo(cls) -> RollbackResult:
        return cls(message="Nothing to undo.")


@dataclass(frozen=True)
class ValidationReport:
    valid: bool
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class BatchStatsAccumulator:
    """Helper class to accumulate batch timing statistics for ImportResult.

    Collects individual batch timing data and calculates summary statistics.
    """

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        """Add a batch timing measurement."""
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate batch statistics.

        Returns:
            tuple: (total_batches, avg_batch_seconds, p95_batch_seconds)
        """
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]  # 19th of the 20-quantile cut points

        return (total_batches, avg_batch_seconds, p95_batch_seconds)


@dataclass
class WorkbookResult:
    """Outcome of a multi-sheet import.

    ``combined`` merges the counts and rollback records of every imported
    sheet; it is None when no sheet was imported.
    """
    file_name: str
    sheets: list[ImportResult] = field(default_factory=list)
    skipped_sheets: list[str] = field(default_factory=list)  # empty sheets
    failed_sheets: dict[str, str] = field(default_factory=dict)  # sheet -> reason
    combined: ImportResult | None = None

    @property
    def has_errors(self) -> bool:
        return bool(self.failed_sheets) or (self.combined is not None and self.combined.stats.errors > 0)
