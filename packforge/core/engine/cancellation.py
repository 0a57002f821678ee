"""
Cancellation — a single token threaded through a packaging run.

The token wraps a ``threading.Event``. Long-running steps (process
waits, notarization polling) check it between steps and unwind with
``OperationCancelled`` so resources are released on the way out.
"""

from __future__ import annotations

import threading


class OperationCancelled(Exception):
    """Raised inside a run when its cancellation token fires."""


class CancellationToken:
    """Cooperative cancellation signal shared by every step of a run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation was cancelled.")

    def wait(self, seconds: float) -> bool:
        """Sleep for ``seconds`` or until cancelled.

        Returns:
            True if the token was cancelled during the wait.
        """
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)

    @classmethod
    def none(cls) -> CancellationToken:
        """A token nobody will ever cancel."""
        return cls()
