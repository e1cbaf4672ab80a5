from __future__ import annotations

import logging

from sheet_reconcile.logging.init import (
    APP_LOGGER,
    SUMMARY_LEVEL,
    LabeledFormatter,
    get_logger,
    log_summary,
    reset_logging,
    setup_logging,
)


def _record(level: int, msg: str) -> logging.LogRecord:
    return logging.LogRecord("x", level, __file__, 1, msg, None, None)


def test_labeled_formatter():
    fmt = LabeledFormatter()
    assert fmt.format(_record(logging.INFO, "hello")) == "INFO hello"
    assert fmt.format(_record(logging.WARNING, "careful")) == "WARN careful"
    assert fmt.format(_record(SUMMARY_LEVEL, "table=T")) == "SUMMARY table=T"


def test_setup_is_idempotent():
    first = setup_logging()
    second = setup_logging()
    assert first is second
    assert len(first.handlers) == 1
    assert first.propagate is False


def test_module_loggers_reach_stdout(capsys):
    setup_logging()
    logging.getLogger(f"{APP_LOGGER}.services.importer").warning("column skipped")
    log_summary("table=T added=1")
    out = capsys.readouterr().out
    assert "WARN column skipped" in out
    assert "SUMMARY table=T added=1" in out


def test_debug_mode(capsys):
    logger = setup_logging(debug=True)
    logger.debug("details")
    assert "DEBUG details" in capsys.readouterr().out


def test_info_hides_debug(capsys):
    logger = get_logger()
    logger.debug("hidden")
    assert capsys.readouterr().out == ""


def test_reset_restores_propagation():
    logger = setup_logging()
    reset_logging()
    assert logger.propagate is True
    assert logger.handlers == []
