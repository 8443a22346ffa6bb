from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

from ..models.import_models import ImportBatchStatus

"""Progress display with tqdm (TTY only).

A single tqdm bar advanced from ImportBatchStatus snapshots. In non-TTY
environments (CI, redirected output) the bar is disabled to avoid ANSI
control sequence spam; the SUMMARY line is printed either way.
"""

__all__ = [
    "RowProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class RowProgressTracker:
    """Row-level progress bar fed by importer progress snapshots.

    Usable directly as ``ImportOptions.on_progress``::

        with RowProgressTracker(len(rows)) as progress:
            importer.run(rows, options_with(on_progress=progress))
    """

    def __init__(self, total_rows: int, *, description: str = "Importing rows") -> None:
        self.total_rows = total_rows
        self.description = description
        self.last_status: ImportBatchStatus | None = None

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def __call__(self, status: ImportBatchStatus) -> None:
        self.update(status)

    def update(self, status: ImportBatchStatus) -> None:
        """Advance the bar to ``status.processed`` (snapshots replace each other)."""
        previous = self.last_status.processed if self.last_status is not None else 0
        self.last_status = status
        if self.enabled and self.pbar is not None:
            delta = status.processed - previous
            if delta > 0:
                self.pbar.update(delta)
            self.pbar.set_postfix(
                ok=status.successful,
                skipped=status.skipped,
                failed=status.failed,
            )

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> RowProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
