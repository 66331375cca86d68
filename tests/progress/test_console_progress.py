"""Tests for progress observers.

Tests the Rich-based console progress bar and the plain observers.
"""

from io import StringIO

from rich.console import Console

from ossclient.progress import (
    CallbackProgress,
    ConsoleProgress,
    ProgressObserver,
)


def make_progress(total=None) -> ConsoleProgress:
    return ConsoleProgress("test", total=total, console=Console(file=StringIO(), width=80))


def completed(progress: ConsoleProgress) -> float:
    return progress._progress.tasks[0].completed


class TestConsoleProgress:
    """Tests for ConsoleProgress."""

    def test_inherits_from_observer(self):
        """ConsoleProgress should implement ProgressObserver."""
        assert isinstance(make_progress(), ProgressObserver)

    def test_on_progress_sets_completed(self):
        """Cumulative counts should set the bar position."""
        progress = make_progress(total=100)
        with progress:
            progress.on_progress(40, 100)
            progress.on_progress(100, 100)
        assert completed(progress) == 100

    def test_part_observers_add_up(self):
        """Part observers should each add their own growth to the bar."""
        progress = make_progress(total=300)
        first = progress.part_observer()
        second = progress.part_observer()

        with progress:
            first.on_progress(50, 100)
            second.on_progress(70, 200)
            first.on_progress(100, 100)
            second.on_progress(200, 200)

        assert completed(progress) == 300

    def test_renders_description(self):
        """The description should appear in the rendered output."""
        console = Console(file=StringIO(), width=80, force_terminal=True)
        progress = ConsoleProgress("upload big.bin", total=10, console=console)
        with progress:
            progress.on_progress(10, 10)
        assert "upload big.bin" in console.file.getvalue()


class TestPlainObservers:
    """Tests for CallbackProgress."""

    def test_callback(self):
        """CallbackProgress should forward to the callable."""
        calls = []
        CallbackProgress(lambda sent, total: calls.append((sent, total))).on_progress(1, 2)
        assert calls == [(1, 2)]

