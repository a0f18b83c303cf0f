"""
Single-flight guard for the retention sweep.

Uses a Redis lock when REDIS_ENABLED is set so sweeps are exclusive across
workers; otherwise a process-wide lock is used.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol

import redis

from app.config import Settings

logger = logging.getLogger(__name__)

SWEEP_LOCK_KEY = "parley:retention:sweep"

_process_sweep_lock = threading.Lock()


class SweepLock(Protocol):
    def acquire(self) -> bool: ...

    def release(self) -> None: ...


class ProcessSweepLock:
    """Non-blocking lock shared by every sweep in this process."""

    def __init__(self, lock: Optional[threading.Lock] = None) -> None:
        self._lock = lock or _process_sweep_lock

    def acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()


class RedisSweepLock:
    """
    Redis lock with an expiry, so a crashed worker cannot block sweeps forever.
    """

    def __init__(self, redis_client: object, timeout_seconds: int) -> None:
        self._lock = redis_client.lock(
            SWEEP_LOCK_KEY, timeout=timeout_seconds, blocking=False
        )

    def acquire(self) -> bool:
        return bool(self._lock.acquire(blocking=False))

    def release(self) -> None:
        try:
            self._lock.release()
        except Exception as e:
            # Expired or taken over; the next sweep starts clean either way
            logger.warning("Retention sweep lock release failed: %s", e)


def build_sweep_lock(settings: Settings) -> SweepLock:
    if settings.redis_enabled:
        client = redis.Redis(host=settings.redis_host, port=settings.redis_port)
        return RedisSweepLock(client, settings.retention_sweep_lock_timeout_seconds)
    return ProcessSweepLock()
