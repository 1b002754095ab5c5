"""Cooperative cancellation for analysis runs."""

import threading


class AnalysisCancelled(Exception):
    """Raised when a caller cancels an analysis in progress."""


class CancellationToken:
    """Cancellation signal shared between a caller and running detectors.

    Detectors call :meth:`check` at the end of each scan segment, so a
    cancelled run stops at the next checkpoint instead of mid-write.
    A token created with a ``parent`` is also cancelled when the parent is.
    """

    def __init__(self, parent: "CancellationToken | None" = None) -> None:
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def check(self) -> None:
        """Raise AnalysisCancelled if cancellation was requested."""
        if self.cancelled:
            raise AnalysisCancelled("Analysis cancelled")


def checkpoint(cancel: CancellationToken | None) -> None:
    """Checkpoint for detectors that may run without a token."""
    if cancel is not None:
        cancel.check()
