"""Per-thread request guard: one in-flight turn per conversation thread."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class ThreadBusyGuard:
    """Reject a second concurrent turn for the same thread; other threads are never blocked."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._busy: set[str] = set()

    def try_acquire(self, thread_id: str) -> bool:
        with self._lock:
            if thread_id in self._busy:
                return False
            self._busy.add(thread_id)
            return True

    def release(self, thread_id: str) -> None:
        with self._lock:
            self._busy.discard(thread_id)

    def is_busy(self, thread_id: str) -> bool:
        with self._lock:
            return thread_id in self._busy

    @contextmanager
    def hold(self, thread_id: str) -> Iterator[bool]:
        """Yield whether the guard was acquired; release is guaranteed when it was."""

        acquired = self.try_acquire(thread_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(thread_id)
