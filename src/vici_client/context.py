"""Cancellation context governing an event listener's lifetime."""

import logging
import threading
from collections.abc import Callable
from types import TracebackType
from typing import Self

logger = logging.getLogger(__name__)


class Context:
    """One-shot cancellation signal.

    Callbacks registered with ``add_callback`` run synchronously in the thread that
    calls ``cancel``, exactly once. Used as a context manager, it cancels on exit.
    """

    def __init__(self) -> None:
        """Initialize an uncancelled context."""
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        """Whether ``cancel`` has been called."""
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Cancel the context and run pending callbacks. Idempotent."""
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or the timeout elapses. Return True if cancelled."""
        return self._cancelled.wait(timeout)

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancellation; immediately if already cancelled."""
        with self._lock:
            if not self._cancelled.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        """Forget a callback registered with ``add_callback``. Missing callbacks are ignored."""
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None) -> None:
        self.cancel()
