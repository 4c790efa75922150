from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List


class KeyedLocks:
    """
    One lock per key, created on first use and dropped when the last user lets go.

    Holding the lock of one key never blocks callers working on another key;
    the internal guard is only held while looking the lock up or releasing it.
    Each entry counts the callers holding or waiting for it, so a key seen once
    does not keep its lock forever.
    """

    def __init__(self, factory: Callable[[], Any] = threading.Lock) -> None:
        self._factory = factory
        self._guard = threading.Lock()
        # key -> [lock, users]
        self._locks: Dict[str, List[Any]] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: str) -> Any:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [self._factory(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._checkout(key)
        try:
            with lock:
                yield
        finally:
            self._checkin(key)

    @contextmanager
    def try_hold(self, key: str) -> Iterator[bool]:
        """Yield True if the lock was free and is now held, False otherwise."""
        lock = self._checkout(key)
        acquired = lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()
            self._checkin(key)
