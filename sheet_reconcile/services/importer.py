from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import UTC, datetime

from ..db.batch_apply import ApplyResult, BatchApplier, BatchMetrics
from ..excel.reader import SheetGrid
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import ReconcileConfig
from ..models.import_log import ImportLogEntry
from ..models.import_result import (
    BatchStatsAccumulator,
    ImportResult,
    ImportStats,
    RollbackResult,
    ValidationReport,
    WorkbookResult,
)
from ..models.mutation import MutationKind, RollbackRecord
from ..models.rules import KeyMode, RuleSet
from ..models.schema import ColumnKind, ColumnType
from ..store.base import StoreError, TableStore
from .coercion import is_empty, is_number, normalize_date
from .import_log import LOG_TABLE, ImportLog
from .matcher import ColumnMapping, match_columns
from .names import normalize_name
from .reconciler import PreconditionError, ProgressCallback, ReconciliationEngine
from .rollback import RollbackManager
from .rules import RULES_TABLE, RuleStore, order_key_columns, rule_set_from_mapping
from .schema import SchemaIntrospector, formula_columns
from .session import ImportSession

"""Import orchestration.

Wires the components for one target table:

    grid -> match columns -> rules + column types -> reconcile -> apply batches
         -> import log + rollback record

Precondition failures raise PreconditionError before anything is written.
Batch failures are counted in the result, written to the error log and never
abort the import.
"""

__all__ = [
    "VALIDATION_SAMPLE_ROWS",
    "ImportService",
]

logger = logging.getLogger(__name__)

VALIDATION_SAMPLE_ROWS = 50


class ImportService:
    def __init__(
        self,
        session: ImportSession,
        *,
        rules_table: str = RULES_TABLE,
        log_table: str = LOG_TABLE,
        batch_size: int = 100,
        rules_override: RuleSet | None = None,
        key_columns: Sequence[str] | None = None,
        key_mode: str | None = None,
        error_log: ErrorLogBuffer | None = None,
    ) -> None:
        self.session = session
        self.store: TableStore = session.store
        self.table_id = session.table_id
        self.batch_size = batch_size
        self.rule_store = RuleStore(self.store, rules_table)
        self.import_log = ImportLog(self.store, log_table)
        self.introspector = SchemaIntrospector(self.store)
        self.rollback_manager = RollbackManager(session, self.import_log, BatchApplier(self.store, batch_size))
        self.error_log = error_log
        self._rules_override = rules_override
        self._key_columns = list(key_columns) if key_columns else None
        self._key_mode = key_mode

    @classmethod
    def from_config(
        cls,
        cfg: ReconcileConfig,
        store: TableStore,
        *,
        session_id: str | None = None,
        error_log: ErrorLogBuffer | None = None,
    ) -> ImportService:
        session = ImportSession(store, cfg.target_table)
        if session_id:
            session.session_id = session_id
        override = None
        if cfg.rules:
            override = rule_set_from_mapping(cfg.rules, cfg.key_columns or (), cfg.key_mode)
        return cls(
            session,
            rules_table=cfg.rules_table,
            log_table=cfg.log_table,
            batch_size=cfg.batch_size,
            rules_override=override,
            key_columns=cfg.key_columns,
            key_mode=cfg.key_mode,
            error_log=error_log,
        )

    # ------------------------------------------------------ inspection
    def column_types(self) -> dict[str, ColumnType]:
        return self.introspector.column_types(self.table_id)

    def store_columns(self) -> list[str]:
        types = self.column_types()
        if types:
            return list(types)
        try:
            return self.store.fetch_table(self.table_id).column_names
        except StoreError:
            return []

    def match(self, header: Sequence[str]) -> ColumnMapping:
        return match_columns(header, self.store_columns())

    def load_rules(self) -> RuleSet:
        """Rules from config when given inline, otherwise from the rules table."""
        if self._rules_override is not None:
            return self._rules_override
        try:
            rules = self.rule_store.load_rules()
        except StoreError as e:
            raise PreconditionError(f"cannot read rules table {self.rule_store.table_id}: {e}") from e
        if self._key_columns:
            keys = order_key_columns((normalize_name(k), i + 1) for i, k in enumerate(self._key_columns))
            rules = replace(rules, key_columns=keys)
        if self._key_mode:
            rules = replace(rules, key_mode=KeyMode.parse(self._key_mode))
        return rules

    def ensure_rules(self) -> bool:
        """Create or migrate the rules table from the target table columns."""
        if self._rules_override is not None:
            return True
        return self.rule_store.ensure_rules_table(self.store_columns())

    def validate(self, grid: SheetGrid, mapping: ColumnMapping | None = None) -> ValidationReport:
        """Check a sheet before importing it; nothing is written."""
        errors: list[str] = []
        warnings: list[str] = []
        if grid.is_empty:
            errors.append(f"sheet '{grid.sheet_name}' is empty or only has headers")
            return ValidationReport(False, warnings, errors)

        types = self.column_types()
        mapping = mapping or match_columns(grid.header, list(types) or self.store_columns())
        if not mapping.matched:
            errors.append(f"no spreadsheet column matches a column of {self.table_id}")
            return ValidationReport(False, warnings, errors)

        try:
            rules = self.load_rules()
        except PreconditionError as e:
            errors.append(str(e))
            rules = None
        if rules is not None:
            if not rules.has_keys:
                errors.append("no unique key column defined")
            else:
                mapped = {normalize_name(c) for c in mapping.mapped_store_columns}
                absent = [k for k in rules.key_columns if k not in mapped]
                if len(absent) == len(rules.key_columns):
                    errors.append(f"key column(s) not present in the spreadsheet: {', '.join(absent)}")
                elif absent:
                    warnings.append(f"key column(s) not present in the spreadsheet: {', '.join(absent)}")

        formula = sorted(formula_columns(types) & mapping.mapped_store_columns)
        if formula:
            warnings.append(f"{len(formula)} formula column(s) excluded from the import: {', '.join(formula)}")

        invalid_dates = invalid_numbers = 0
        sample = grid.rows[:VALIDATION_SAMPLE_ROWS]
        for idx, name in enumerate(grid.header):
            target = mapping.columns.get(name)
            column_type = types.get(target) if target else None
            if column_type is None or column_type.is_formula:
                continue
            for row in sample:
                value = row[idx] if idx < len(row) else ""
                if is_empty(value) or is_number(value):
                    continue
                if column_type.kind is ColumnKind.DATE and normalize_date(value) is None:
                    invalid_dates += 1
                elif column_type.kind is ColumnKind.NUMERIC and isinstance(value, str):
                    try:
                        float(value.strip())
                    except ValueError:
                        invalid_numbers += 1
        if invalid_dates:
            warnings.append(f"{invalid_dates} date value(s) in an unrecognized format")
        if invalid_numbers:
            warnings.append(f"{invalid_numbers} non-numeric value(s) in numeric columns")

        unmatched = mapping.unmatched_incoming
        if unmatched:
            warnings.append(f"{len(unmatched)} column(s) without a match: {', '.join(unmatched)}")
        return ValidationReport(not errors, warnings, errors)

    # ---------------------------------------------------------- import
    def import_sheet(
        self,
        grid: SheetGrid,
        file_name: str,
        *,
        dry_run: bool = False,
        mapping: ColumnMapping | None = None,
        on_progress: ProgressCallback | None = None,
        write_log: bool = True,
        rules: RuleSet | None = None,
    ) -> ImportResult:
        if self.session.import_in_progress:
            raise PreconditionError("an import is already running in this session")
        if grid.is_empty:
            raise PreconditionError(f"sheet '{grid.sheet_name}' is empty or only has headers")

        rules = rules or self.load_rules()
        if not rules.has_keys:
            raise PreconditionError("no unique key column defined in the rules table")
        types = self.column_types()
        try:
            existing = self.store.fetch_table(self.table_id)
        except StoreError as e:
            raise PreconditionError(f"cannot read target table {self.table_id}: {e}") from e
        mapping = mapping or match_columns(grid.header, list(types) or existing.column_names)
        if not mapping.matched:
            raise PreconditionError(f"no spreadsheet column matches a column of {self.table_id}")

        engine = ReconciliationEngine(self.table_id, existing, types, rules, self.session.coercer)
        logger.info(
            f"importing {file_name}:{grid.sheet_name} into {self.table_id} "
            f"({len(grid.rows)} row(s), keys={'/'.join(rules.key_columns)} mode={rules.key_mode.value})"
        )

        start_time = datetime.now(UTC)
        accumulator = BatchStatsAccumulator()

        def collect(metrics: BatchMetrics) -> None:
            accumulator.add_batch_time(metrics.elapsed_seconds)

        applier = BatchApplier(self.store, self.batch_size, metrics_callback=collect)
        self.session.import_in_progress = True
        try:
            outcome = engine.reconcile(grid.header, grid.rows, mapping, on_progress)
            applied = applier.apply(outcome.mutations, dry_run=dry_run)
        finally:
            self.session.import_in_progress = False

        stats = outcome.stats
        resume = list(outcome.resume)
        self._account_failures(stats, resume, outcome.mutations, applied, file_name, grid.sheet_name)

        rollback = None
        if not dry_run:
            rollback = RollbackRecord.from_applied(self.table_id, applied.applied, applied.added_ids)

        end_time = datetime.now(UTC)
        total_batches, avg_batch, p95_batch = accumulator.get_stats()
        result = ImportResult(
            table_id=self.table_id,
            file_name=file_name,
            sheet_name=grid.sheet_name,
            stats=stats,
            dry_run=dry_run,
            start_time=start_time,
            end_time=end_time,
            elapsed_seconds=(end_time - start_time).total_seconds(),
            resume=resume,
            warnings=list(outcome.warnings),
            rollback=rollback,
            total_batches=total_batches,
            avg_batch_seconds=avg_batch,
            p95_batch_seconds=p95_batch,
        )
        if write_log:
            self._finish(result)
        if self.error_log is not None:
            self.error_log.flush()
        return result

    def import_workbook(
        self,
        grids: Sequence[SheetGrid],
        file_name: str,
        *,
        dry_run: bool = False,
        mappings: dict[str, ColumnMapping] | None = None,
        progress_factory: Callable[[str], ProgressCallback | None] | None = None,
    ) -> WorkbookResult:
        """Import several sheets into the target table, one after the other.

        Empty sheets are skipped, a sheet failing its preconditions is reported
        and the others still run. Each sheet gets a stats-only log entry; one
        combined entry carries the rollback data of the whole workbook.
        """
        outcome = WorkbookResult(file_name=file_name)
        rules = self.load_rules()
        for grid in grids:
            if grid.is_empty:
                logger.info(f"sheet '{grid.sheet_name}' is empty, skipped")
                outcome.skipped_sheets.append(grid.sheet_name)
                continue
            mapping = (mappings or {}).get(grid.sheet_name)
            on_progress = progress_factory(grid.sheet_name) if progress_factory else None
            try:
                result = self.import_sheet(
                    grid,
                    file_name,
                    dry_run=dry_run,
                    mapping=mapping,
                    on_progress=on_progress,
                    write_log=False,
                    rules=rules,
                )
            except PreconditionError as e:
                logger.error(f"sheet '{grid.sheet_name}': {e}")
                outcome.failed_sheets[grid.sheet_name] = str(e)
                if self.error_log is not None:
                    self.error_log.add_sheet_failure(file_name, grid.sheet_name, str(e))
                continue
            outcome.sheets.append(result)
            if not dry_run:
                self.import_log.write(ImportLogEntry.from_result(
                    result, self.session.session_id, include_rollback=False
                ))

        if outcome.sheets:
            outcome.combined = self._combine(outcome.sheets, file_name, dry_run)
            self._finish(outcome.combined)
        if self.error_log is not None:
            self.error_log.flush()
        return outcome

    def rollback_last(self, session_id: str | None = None) -> RollbackResult:
        return self.rollback_manager.rollback_last(session_id)

    # --------------------------------------------------------- helpers
    def _account_failures(
        self,
        stats: ImportStats,
        resume: list[str],
        mutations: Sequence,
        applied: ApplyResult,
        file_name: str,
        sheet_name: str,
    ) -> None:
        """Move mutations of rejected batches from added/updated to errors."""
        stats.errors = applied.error_count
        for failure in applied.failures:
            failed = mutations[failure.first - 1:failure.last]
            stats.added -= sum(1 for m in failed if m.kind is MutationKind.ADD)
            stats.updated -= sum(1 for m in failed if m.kind is MutationKind.UPDATE)
            resume.append(f"ERROR batch {failure.first}-{failure.last}: {failure.message}")
            if self.error_log is not None:
                self.error_log.add_batch_failure(file_name, sheet_name, failure)

    def _finish(self, result: ImportResult) -> None:
        """Write the audit entry and remember the rollback record (real runs only)."""
        if result.dry_run:
            return
        entry = ImportLogEntry.from_result(result, self.session.session_id)
        log_row_id = self.import_log.write(entry)
        self.rollback_manager.record_rollback(result, log_row_id)

    def _combine(self, results: Sequence[ImportResult], file_name: str, dry_run: bool) -> ImportResult:
        stats = ImportStats()
        resume: list[str] = []
        warnings: list[str] = []
        rollback: RollbackRecord | None = None
        for r in results:
            stats.merge(r.stats)
            resume.append(f"[{r.sheet_name}]")
            resume.extend(r.resume)
            warnings.extend(r.warnings)
            if r.rollback is not None:
                rollback = r.rollback if rollback is None else rollback.merge(r.rollback)
        batches = sum(r.total_batches for r in results)
        avg = (
            sum(r.avg_batch_seconds * r.total_batches for r in results) / batches if batches else 0.0
        )
        return ImportResult(
            table_id=self.table_id,
            file_name=file_name,
            sheet_name=", ".join(r.sheet_name for r in results),
            stats=stats,
            dry_run=dry_run,
            start_time=results[0].start_time,
            end_time=results[-1].end_time,
            elapsed_seconds=(results[-1].end_time - results[0].start_time).total_seconds(),
            resume=resume,
            warnings=warnings,
            rollback=rollback,
            total_batches=batches,
            avg_batch_seconds=avg,
            p95_batch_seconds=max((r.p95_batch_seconds for r in results), default=0.0),
        )
