"""CLI progress display for file transfers.

This module provides a Rich-based progress bar fed by the
``progress_callback(bytes_done, total_bytes)`` hooks of the transfer
orchestrator. The bar is drawn on stderr, and only when stderr is a
terminal, so command output on stdout stays clean.
"""

from typing import Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)


class TransferProgressDisplay:
    """Rich-based progress display for a single transfer."""

    def __init__(self, description: str, enabled: bool = True) -> None:
        """Initialize the progress display.

        Args:
            description: Label shown before the bar
            enabled: Set to False to disable the display entirely
        """
        self.description = description
        self._console = Console(stderr=True)
        self.enabled = enabled and self._console.is_terminal
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None

    def update(self, completed: int, total: int) -> None:
        """Progress callback: record bytes transferred so far."""
        if self._progress is None or self._task is None:
            return
        self._progress.update(self._task, completed=completed, total=total or None)

    def __enter__(self) -> "TransferProgressDisplay":
        """Enter context manager - start progress display."""
        if not self.enabled:
            return self

        self._progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=self._console,
            transient=True,
        )
        self._progress.__enter__()
        self._task = self._progress.add_task(self.description, total=None)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - stop progress display."""
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._task = None
