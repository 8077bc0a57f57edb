from __future__ import annotations

import threading
from collections import deque
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class MessageQueue(Generic[T]):
    """Unbounded FIFO shared by many producer threads and one consumer.

    Capacity is not enforced here; producers apply their own high-water mark
    via `wait_until`. The condition is notified on every put, every successful
    poll, and on explicit `notify()` calls (scanner completion).
    """

    def __init__(self) -> None:
        self._items: deque[T] = deque()
        self._cond = threading.Condition()

    @property
    def size(self) -> int:
        with self._cond:
            return len(self._items)

    def __len__(self) -> int:
        return self.size

    def empty(self) -> bool:
        return self.size == 0

    def put(self, item: T) -> None:
        with self._cond:
            self._items.append(item)
            self._cond.notify_all()

    def poll(self) -> Optional[T]:
        """Pop the oldest item, or None when empty."""
        with self._cond:
            if not self._items:
                return None
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    def notify(self) -> None:
        """Wake every waiter so it re-evaluates its predicate."""
        with self._cond:
            self._cond.notify_all()

    def wait_until(self, predicate: Callable[[], bool], timeout: float | None = None) -> bool:
        """Block until `predicate()` is true or `timeout` elapses.

        The predicate runs while holding the queue lock, so it may read
        `size` (the lock is reentrant). Returns the last predicate value.
        """
        with self._cond:
            return self._cond.wait_for(predicate, timeout=timeout)
