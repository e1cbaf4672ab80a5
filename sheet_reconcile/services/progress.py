from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Row progress display with tqdm (TTY only).

The engine reports ``(current, total)`` once per row; RowProgress turns that
into a single progress bar per sheet. In non-TTY environments (CI, pipes) no
bar is created and the callbacks are no-ops.
"""

__all__ = [
    "RowProgress",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class RowProgress:
    """Progress bar fed by the reconciliation engine's on_progress callback."""

    def __init__(self, description: str = "Reconciling", *, enabled: bool | None = None) -> None:
        self.description = description
        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.pbar: TqdmType[Any] | None = None
        self.current = 0

    def __call__(self, current: int, total: int) -> None:
        self.current = current
        if not self.enabled:
            return
        if self.pbar is None:
            self.pbar = tqdm(
                total=total,
                desc=self.description,
                unit="row",
                leave=False,
                ncols=80,
                ascii=True,
            )
        self.pbar.update(current - self.pbar.n)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> RowProgress:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
