"""Progress observer interface for streamed transfers."""

from abc import ABC, abstractmethod
from typing import Callable


class ProgressObserver(ABC):
    """Receives per-chunk progress of a streamed transfer.

    ``on_progress`` runs synchronously on the task driving the transfer,
    once per chunk handed to the connection. Implementations must return
    quickly; a slow observer stalls the transfer.
    """

    @abstractmethod
    def on_progress(self, sent: int, total: int) -> None:
        """Called after each chunk with cumulative bytes and the total size.

        ``total`` is 0 when the size of the source is unknown.
        """
        pass


class CallbackProgress(ProgressObserver):
    """Adapts a plain ``(sent, total)`` callable to the observer interface."""

    def __init__(self, callback: Callable[[int, int], None]):
        self._callback = callback

    def on_progress(self, sent: int, total: int) -> None:
        self._callback(sent, total)

