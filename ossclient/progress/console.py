"""Console progress bar using the Rich library.

Used by the CLI for uploads and downloads. A single bar can track one
streamed body directly, or aggregate several concurrent part uploads
through child observers handed out by ``part_observer``.
"""

from typing import Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from ossclient.progress.base import ProgressObserver


class _PartProgress(ProgressObserver):
    """Forwards the growth of one part's counter to the shared bar."""

    def __init__(self, parent: "ConsoleProgress"):
        self._parent = parent
        self._sent = 0

    def on_progress(self, sent: int, total: int) -> None:
        delta = sent - self._sent
        self._sent = sent
        self._parent.advance(delta)


class ConsoleProgress(ProgressObserver):
    """Rich-based transfer progress bar.

    Use as a context manager so the live display is stopped on every
    exit path:

        with ConsoleProgress("upload big.bin", total=size) as progress:
            await client.put_object_from_file(..., observer=progress)

    Args:
        description: Label shown left of the bar
        total: Expected number of bytes, or None if unknown
        console: Console to render on (defaults to stderr)
    """

    def __init__(
        self,
        description: str,
        total: Optional[int] = None,
        console: Optional[Console] = None,
    ):
        # Use legacy_windows=True for ASCII-safe output on Windows consoles
        self.console = console or Console(stderr=True, legacy_windows=True)
        self._progress = Progress(
            TextColumn("[bold cyan]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=self.console,
            transient=False,
        )
        self._task_id = self._progress.add_task(description, total=total)

    def on_progress(self, sent: int, total: int) -> None:
        """Set the bar to the cumulative count reported by the transfer."""
        self._progress.update(
            self._task_id,
            completed=sent,
            total=total or None,
        )

    def advance(self, delta: int) -> None:
        """Move the bar forward by ``delta`` bytes."""
        self._progress.advance(self._task_id, delta)

    def part_observer(self) -> ProgressObserver:
        """Create an observer for one part that adds into this bar."""
        return _PartProgress(self)

    def __enter__(self) -> "ConsoleProgress":
        self._progress.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self._progress.stop()
        return False  # Don't suppress exceptions
