"""Typing indicators: in-memory, lossy, expire after a short TTL."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Set, Tuple
from uuid import UUID

from app.utils.time import utcnow

Clock = Callable[[], datetime]


@dataclass
class PresenceEntry:
    user_id: str
    thread_id: UUID
    is_typing: bool
    last_activity: datetime


class PresenceTracker:
    """
    Last-write-wins store of PresenceEntry keyed by (user, thread).

    Nothing here is persisted; a restart simply forgets who was typing.
    """

    def __init__(self, ttl_seconds: float = 8.0, clock: Optional[Clock] = None) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or utcnow
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, UUID], PresenceEntry] = {}
        self._last_pruned: Optional[datetime] = None

    def set_typing(self, user_id: str, thread_id: UUID, is_typing: bool) -> PresenceEntry:
        now = self._clock()
        key = (user_id, thread_id)
        with self._lock:
            self._maybe_prune(now)
            current = self._entries.get(key)
            if current is not None and current.last_activity > now:
                return current
            entry = PresenceEntry(
                user_id=user_id,
                thread_id=thread_id,
                is_typing=is_typing,
                last_activity=now,
            )
            self._entries[key] = entry
            return entry

    def get(self, user_id: str, thread_id: UUID) -> Optional[PresenceEntry]:
        with self._lock:
            entry = self._entries.get((user_id, thread_id))
        if entry is None or self._expired(entry, self._clock()):
            return None
        return entry

    def list_typing(self, thread_id: UUID, caller_id: Optional[str] = None) -> Set[str]:
        """Users currently typing in thread_id, excluding the caller."""
        now = self._clock()
        with self._lock:
            self._maybe_prune(now)
            entries = list(self._entries.values())
        return {
            e.user_id
            for e in entries
            if e.thread_id == thread_id
            and e.is_typing
            and e.user_id != caller_id
            and not self._expired(e, now)
        }

    def prune(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        with self._lock:
            return self._prune(self._clock())

    def entry_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def _maybe_prune(self, now: datetime) -> None:
        # At most one full pass per TTL; callers hold self._lock
        if self._last_pruned is None or now - self._last_pruned >= self._ttl:
            self._prune(now)

    def _prune(self, now: datetime) -> int:
        self._last_pruned = now
        stale = [k for k, e in self._entries.items() if self._expired(e, now)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def _expired(self, entry: PresenceEntry, now: datetime) -> bool:
        return now - entry.last_activity > self._ttl
