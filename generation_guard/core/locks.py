"""
Per-key locking.

Compound operations on one identity (check-then-increment,
redeem-then-decrement) are serialized; different keys never contend.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class KeyedLock:
    """Registry of reentrant locks created on demand and dropped when idle."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self._waiters: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for `key` for the duration of the block."""
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            self._waiters[key] = self._waiters.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def active_keys(self) -> List[str]:
        """Keys currently held or waited on."""
        with self._guard:
            return list(self._locks)
