# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Batch progress for the ``evaluate`` command.

Uses a ``rich`` progress bar for interactive terminals when available;
falls back to plain log lines when ``rich`` is not installed or stderr
is piped.
"""

from __future__ import annotations

import logging
import sys
from types import TracebackType

try:
    from rich.console import Console
    from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

    _HAS_RICH = True
except ImportError:
    _HAS_RICH = False

logger = logging.getLogger(__name__)


class BatchProgress:
    """Track how many URLs of a batch have been processed."""

    def __init__(self, total: int) -> None:
        self.total = total
        self.done = 0
        self._progress = None
        self._task_id = None

    def __enter__(self) -> BatchProgress:
        if _HAS_RICH and sys.stderr.isatty():
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                console=Console(stderr=True),
                transient=True,
            )
            self._progress.start()
            self._task_id = self._progress.add_task("Starting", total=self.total)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None

    def start(self, url: str) -> None:
        if self._progress is not None:
            self._progress.update(self._task_id, description=url[:60])

    def advance(self) -> None:
        self.done += 1
        if self._progress is not None:
            self._progress.advance(self._task_id)
        logger.info("Processed %d of %d URLs", self.done, self.total)
