"""
Per-key locks with bounded waits.

One lock per thread id serializes the writers that touch a thread's ordering
and aggregate fields (send, receipts, reports, retention purge). Locks for
different keys never block each other. A key's lock lives only while someone
holds or waits on it.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Generator, Hashable

from app.core.errors import OperationTimeout


class _SharedLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLockRegistry:
    def __init__(self, default_timeout: float = 5.0) -> None:
        self._default_timeout = default_timeout
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, _SharedLock] = {}

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            shared = self._locks.get(key)
            if shared is None:
                shared = self._locks[key] = _SharedLock()
            shared.users += 1
            return shared.lock

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            shared = self._locks[key]
            shared.users -= 1
            if shared.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(
        self, key: Hashable, timeout: float | None = None
    ) -> Generator[None, None, None]:
        """Hold the lock for key; raise OperationTimeout if it can't be had in time."""
        lock = self._checkout(key)
        wait = self._default_timeout if timeout is None else timeout
        try:
            if not lock.acquire(timeout=wait):
                raise OperationTimeout(
                    f"Timed out after {wait}s waiting for lock on {key}", entity_id=key
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def is_locked(self, key: Hashable) -> bool:
        with self._guard:
            shared = self._locks.get(key)
            return shared is not None and shared.lock.locked()

    def active_keys(self) -> int:
        """Keys currently held or waited on."""
        with self._guard:
            return len(self._locks)
