"""Progress observers for streamed uploads and downloads."""

from .base import CallbackProgress, ProgressObserver
from .console import ConsoleProgress

__all__ = ["ProgressObserver", "CallbackProgress", "ConsoleProgress"]
