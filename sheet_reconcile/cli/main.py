from __future__ import annotations

import argparse
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from ..excel.reader import SheetReadError, load_workbook_grids
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary, setup_logging
from ..models.config_models import ReconcileConfig
from ..models.import_result import ImportResult
from ..services.importer import ImportService
from ..services.progress import RowProgress
from ..services.reconciler import ReconcileError
from ..services.summary import render_rollback_line, render_summary_line
from ..store.base import StoreError, TableStore
from ..store.memory import MemoryStore
from ..store.postgres import PostgresStore

"""CLI entrypoint.

    sheet-reconcile [--config PATH] [--debug] import FILE [--sheet NAME ...] [--dry-run] [--session-id ID]
    sheet-reconcile [--config PATH] [--debug] rollback --session-id ID
    sheet-reconcile [--config PATH] [--debug] inspect FILE

Exit codes: 0 success, 2 partial failure (rejected batches or failed sheets),
1 fatal (config, store, unreadable file, precondition failure).
"""

__all__ = [
    "EXIT_SUCCESS_ALL",
    "EXIT_PARTIAL_FAILURE",
    "EXIT_FATAL",
    "main",
]

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env; its values win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


@contextmanager
def _open_store(cfg: ReconcileConfig, *, persist: bool) -> Iterator[TableStore]:
    """Open the configured store; the json snapshot is saved back when ``persist``."""
    if cfg.store.backend == "json":
        path = Path(cfg.store.path or "")
        store = MemoryStore.load(path)
        yield store
        if persist:
            store.save(path)
        return
    pg = PostgresStore.connect(cfg.store)
    try:
        yield pg
    finally:
        pg.close()


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="sheet-reconcile", description="Spreadsheet -> table reconciliation")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to the YAML config")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Reconcile a spreadsheet into the target table")
    imp.add_argument("file", type=Path)
    imp.add_argument("--sheet", action="append", dest="sheets", help="Sheet to import (repeatable)")
    imp.add_argument("--dry-run", action="store_true", help="Compute everything, write nothing")
    imp.add_argument("--session-id", help="Session id used to scope a later rollback")

    rb = sub.add_parser("rollback", help="Undo the last import of a session")
    rb.add_argument("--session-id", required=True)

    ins = sub.add_parser("inspect", help="Show headers, column mapping and validation report")
    ins.add_argument("file", type=Path)
    return p.parse_args(argv)


def _report(result: ImportResult, logger) -> None:
    for line in result.resume:
        logger.info(line)
    summary_line = render_summary_line(result)
    log_summary(summary_line[len("SUMMARY "):])


def _run_import(args: argparse.Namespace, cfg: ReconcileConfig, logger) -> int:
    try:
        grids = load_workbook_grids(args.file, args.sheets)
    except SheetReadError as e:
        logger.error(f"read: {e}")
        return EXIT_FATAL
    if not grids:
        logger.error(f"no sheet to import in {args.file.name}")
        return EXIT_FATAL

    error_log = ErrorLogBuffer()
    with _open_store(cfg, persist=not args.dry_run) as store:
        service = ImportService.from_config(cfg, store, session_id=args.session_id, error_log=error_log)
        logger.info(f"session_id={service.session.session_id}")
        if not args.dry_run:
            service.ensure_rules()

        if len(grids) == 1:
            grid = grids[0]
            report = service.validate(grid)
            for w in report.warnings:
                logger.warning(w)
            with RowProgress(grid.sheet_name) as progress:
                result = service.import_sheet(grid, args.file.name, dry_run=args.dry_run, on_progress=progress)
            _report(result, logger)
            failed = result.stats.errors > 0
        else:
            bars: list[RowProgress] = []

            def progress_for(sheet_name: str) -> RowProgress:
                if bars:
                    bars[-1].close()
                bars.append(RowProgress(sheet_name))
                return bars[-1]

            try:
                outcome = service.import_workbook(
                    grids, args.file.name, dry_run=args.dry_run, progress_factory=progress_for
                )
            finally:
                for bar in bars:
                    bar.close()
            for name, reason in outcome.failed_sheets.items():
                logger.error(f"sheet '{name}' not imported: {reason}")
            if outcome.combined is None:
                logger.error("no sheet could be imported")
                return EXIT_FATAL
            _report(outcome.combined, logger)
            failed = outcome.has_errors

    if failed:
        logger.warning(f"error details: {error_log.file_path}")
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def _run_rollback(args: argparse.Namespace, cfg: ReconcileConfig, logger) -> int:
    with _open_store(cfg, persist=True) as store:
        service = ImportService.from_config(cfg, store, session_id=args.session_id)
        result = service.rollback_last()
    for w in result.warnings:
        logger.warning(w)
    logger.info(result.message)
    log_summary(render_rollback_line(result)[len("SUMMARY "):])
    return EXIT_PARTIAL_FAILURE if result.errors else EXIT_SUCCESS_ALL


def _run_inspect(args: argparse.Namespace, cfg: ReconcileConfig, logger) -> int:
    try:
        grids = load_workbook_grids(args.file)
    except SheetReadError as e:
        logger.error(f"read: {e}")
        return EXIT_FATAL
    with _open_store(cfg, persist=False) as store:
        service = ImportService.from_config(cfg, store)
        for grid in grids:
            print(f"SHEET: {grid.sheet_name} cols={grid.header} rows={len(grid.rows)}")
            if grid.is_empty:
                print("  (empty)")
                continue
            mapping = service.match(grid.header)
            for incoming, target in mapping.columns.items():
                print(f"  {incoming} -> {target if target is not None else '(no match)'}")
            report = service.validate(grid, mapping)
            print(f"  valid={'true' if report.valid else 'false'}")
            for e in report.errors:
                print(f"  error: {e}")
            for w in report.warnings:
                print(f"  warning: {w}")
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    # argv=None reads sys.argv; an explicit [] stays empty (pytest args must not leak in)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    _load_env_file(Path(".env"), override=True)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    commands = {"import": _run_import, "rollback": _run_rollback, "inspect": _run_inspect}
    try:
        return commands[args.command](args, cfg, logger)
    except ReconcileError as e:
        logger.error(f"import not started: {e}")
        return EXIT_FATAL
    except StoreError as e:
        logger.error(f"store: {e}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
