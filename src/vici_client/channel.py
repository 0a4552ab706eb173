"""Bounded, closeable FIFO carrying events from the pump thread to consumers."""

import threading
from collections import deque
from typing import Generic, TypeVar

from vici_client.errors import ViciError


T = TypeVar("T")


class EventChannel(Generic[T]):
    """Single-producer, multi-consumer queue with a terminal error.

    Once closed, every ``get`` raises the close error. With ``discard=True`` closing drops
    buffered items; otherwise consumers receive them first.
    """

    def __init__(self, capacity: int) -> None:
        """Initialize an empty channel.

        Args:
            capacity: Maximum number of buffered items before ``put`` blocks.

        """
        if capacity < 1:
            msg = f"Channel capacity must be at least 1, got {capacity}"
            raise ValueError(msg)
        self._capacity = capacity
        self._items: deque[T] = deque()
        self._cond = threading.Condition()
        self._error: ViciError | None = None

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._error is not None

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def put(self, item: T, *, force: bool = False) -> bool:
        """Append an item, blocking while the channel is full.

        Args:
            item: Item to deliver.
            force: Append even when full, without blocking.

        Returns:
            False if the channel was closed before the item could be added.

        """
        with self._cond:
            if not force:
                while len(self._items) >= self._capacity and self._error is None:
                    self._cond.wait()
            if self._error is not None:
                return False
            self._items.append(item)
            self._cond.notify_all()
            return True

    def get(self, timeout: float | None = None) -> T:
        """Remove and return the oldest item.

        Raises:
            TimeoutError: Nothing arrived within ``timeout`` seconds.
            ViciError: The channel is closed and empty; the error it was closed with.

        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._items or self._error is not None, timeout):
                raise TimeoutError("No event received within the timeout")
            if self._items:
                item = self._items.popleft()
                self._cond.notify_all()
                return item
            raise self._error.with_traceback(None)  # type: ignore[union-attr]

    def close(self, error: ViciError, *, discard: bool = True) -> bool:
        """Close the channel with a terminal error and wake all waiters. Return False if already closed."""
        with self._cond:
            if self._error is not None:
                return False
            self._error = error
            if discard:
                self._items.clear()
            self._cond.notify_all()
            return True
