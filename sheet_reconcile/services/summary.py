from __future__ import annotations

from ..models.import_result import ImportResult, RollbackResult

"""SUMMARY line rendering.

Import:
    SUMMARY table={table} added={n} updated={n} skipped={n} errors={n} empty_rows={n}
    dry_run={true|false} elapsed_sec={s} batches={n}

Rollback:
    SUMMARY rollback deleted={n} restored={n} errors={n} warnings={n}

The leading "SUMMARY " is part of the returned string; callers going through
log_summary strip it (the formatter adds the label).
"""

__all__ = [
    "format_seconds",
    "render_summary_line",
    "render_rollback_line",
]


def format_seconds(value: float) -> str:
    """Compact number formatting (no trailing zeros, no scientific notation)."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(result: ImportResult) -> str:
    """Render the SUMMARY line of an import.

    >>> from datetime import datetime, timezone
    >>> from sheet_reconcile.models import ImportStats
    >>> t = datetime(2024, 1, 1, tzinfo=timezone.utc)
    >>> r = ImportResult("Contacts", "f.xlsx", "S1", ImportStats(added=2, updated=1),
    ...                  False, t, t, 1.5, total_batches=1)
    >>> render_summary_line(r)
    'SUMMARY table=Contacts added=2 updated=1 skipped=0 errors=0 empty_rows=0 dry_run=false elapsed_sec=1.5 batches=1'
    """
    s = result.stats
    return (
        f"SUMMARY table={result.table_id} "
        f"added={s.added} "
        f"updated={s.updated} "
        f"skipped={s.skipped} "
        f"errors={s.errors} "
        f"empty_rows={s.empty_rows} "
        f"dry_run={'true' if result.dry_run else 'false'} "
        f"elapsed_sec={format_seconds(result.elapsed_seconds)} "
        f"batches={result.total_batches}"
    )


def render_rollback_line(result: RollbackResult) -> str:
    return (
        f"SUMMARY rollback deleted={result.deleted_count} "
        f"restored={result.restored_count} "
        f"errors={result.errors} "
        f"warnings={len(result.warnings)}"
    )
