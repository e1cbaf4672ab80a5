from __future__ import annotations

from unittest.mock import patch

from sheet_reconcile.services.progress import RowProgress, is_tty_enabled


def test_is_tty_enabled_returns_stdout_isatty():
    with patch("sys.stdout.isatty", return_value=True):
        assert is_tty_enabled() is True
    with patch("sys.stdout.isatty", return_value=False):
        assert is_tty_enabled() is False


def test_disabled_progress_creates_no_bar():
    with patch("sheet_reconcile.services.progress.tqdm") as mock_tqdm:
        with RowProgress("Sheet1", enabled=False) as progress:
            progress(1, 10)
            progress(2, 10)
        mock_tqdm.assert_not_called()
    assert progress.current == 2


def test_enabled_progress_updates_one_bar():
    with patch("sheet_reconcile.services.progress.tqdm") as mock_tqdm:
        bar = mock_tqdm.return_value
        bar.n = 0
        progress = RowProgress("Sheet1", enabled=True)
        progress(1, 3)
        bar.n = 1
        progress(3, 3)
        progress.close()

    mock_tqdm.assert_called_once_with(
        total=3, desc="Sheet1", unit="row", leave=False, ncols=80, ascii=True
    )
    assert [c.args for c in bar.update.call_args_list] == [(1,), (2,)]
    bar.close.assert_called_once()
    assert progress.pbar is None


def test_defaults_to_tty_detection():
    with patch("sheet_reconcile.services.progress.is_tty_enabled", return_value=False):
        assert RowProgress().enabled is False
