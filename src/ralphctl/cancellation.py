"""Cooperative cancellation shared by the controller, runner and Ctrl+C handler."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class CancellationToken:
    """A one-way flag: once cancelled it stays cancelled.

    Safe to set from a signal handler or any thread; waiters blocked in
    :meth:`wait` wake immediately.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or *timeout* elapses; return the flag."""
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled})"


@contextmanager
def interrupt_handler(token: CancellationToken) -> Iterator[CancellationToken]:
    """Route SIGINT into *token* for the duration of the block.

    The previous handler is restored on exit. Signal handlers can only be
    installed from the main thread; elsewhere the token is yielded unwired.
    """
    if threading.current_thread() is not threading.main_thread():
        logger.debug("Not on the main thread; SIGINT will not cancel this loop")
        yield token
        return

    def _on_sigint(signum: int, frame: object) -> None:
        token.cancel()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)
