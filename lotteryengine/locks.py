"""Per-key mutexes shared by the sales service and the drawing engine."""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager


class KeyedLockRegistry:
    """Hand out one :class:`threading.Lock` per key.

    The registry serializes check-then-act sequences on the same lottery inside
    one process. Cross-process exclusivity comes from the conditional updates
    issued by the ledger and lifecycle manager.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}

    def lock_for(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self.lock_for(key)
        with lock:
            yield

    def discard(self, key: Hashable) -> None:
        """Forget the lock for ``key`` if nobody holds it."""
        with self._guard:
            lock = self._locks.get(key)
            if lock is not None and not lock.locked():
                del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


__all__ = ["KeyedLockRegistry"]
