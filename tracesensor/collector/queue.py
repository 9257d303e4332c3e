from __future__ import annotations

import threading
from collections import deque
from typing import Generic, TypeVar

T = TypeVar("T")


class BoundedQueue(Generic[T]):
    """Fixed-capacity FIFO shared between producers and the delivery worker.

    ``put`` never blocks: when the queue is full the oldest item is evicted to
    make room for the new one.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._items: deque[T] = deque()
        self._capacity = capacity
        self._dropped = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def dropped(self) -> int:
        """Number of items evicted so far."""
        return self._dropped

    def put(self, item: T) -> bool:
        """Append ``item``. Returns False when an older item had to be evicted."""
        with self._lock:
            evicted = len(self._items) >= self._capacity
            if evicted:
                self._items.popleft()
                self._dropped += 1
            self._items.append(item)
        return not evicted

    def drain(self, max_items: int | None = None) -> list[T]:
        """Remove and return up to ``max_items`` items, oldest first."""
        with self._lock:
            if max_items is None or max_items >= len(self._items):
                items = list(self._items)
                self._items.clear()
                return items
            return [self._items.popleft() for _ in range(max_items)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
