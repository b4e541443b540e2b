import threading
from contextlib import contextmanager
from typing import Iterator


class KeyedLocks:
    """
    One lock per key (group id or user id).

    Operations on different keys never contend; only the short lookup of the
    lock itself is guarded by the registry lock. Locks are re-entrant so a
    holder may call another operation that takes the same key.
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)
